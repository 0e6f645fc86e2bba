try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from app.core.errors import NotAuthenticated, TokenRefreshError
from app.models.oauth import OAuth1Credentials, StoredToken, TokenGrant, UserIdentity
from app.services.token_store import InMemoryTokenRepository
from app.services.x_tokens import XTokenService


class DummyOAuthClient:
    def __init__(self, *, fail: bool = False, rotate_refresh: bool = True) -> None:
        self.refresh_calls: list[str] = []
        self._fail = fail
        self._rotate_refresh = rotate_refresh

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        self.refresh_calls.append(refresh_token)
        await asyncio.sleep(0)
        if self._fail:
            raise TokenRefreshError("Failed to refresh access token; re-authentication required.")
        n = len(self.refresh_calls)
        return TokenGrant(
            access_token=f"at-{n}",
            refresh_token=f"rt-{n}" if self._rotate_refresh else None,
            expires_in=7200,
        )


def _stored(expires_at: datetime, **overrides) -> StoredToken:
    values = dict(
        user_id="42",
        access_token="at-0",
        refresh_token="rt-0",
        expires_at=expires_at,
        handle="ada",
    )
    values.update(overrides)
    return StoredToken(**values)


def _past() -> datetime:
    return datetime.now(timezone.utc) - timedelta(minutes=5)


def _future() -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=1)


@pytest.mark.anyio
async def test_missing_token_is_not_authenticated() -> None:
    service = XTokenService(InMemoryTokenRepository(), DummyOAuthClient())

    with pytest.raises(NotAuthenticated):
        await service.get_valid_token("nobody")


@pytest.mark.anyio
async def test_fresh_token_is_returned_without_refresh() -> None:
    repository = InMemoryTokenRepository()
    repository.save(_stored(_future()))
    oauth = DummyOAuthClient()

    token = await XTokenService(repository, oauth).get_valid_token("42")

    assert token.access_token == "at-0"
    assert oauth.refresh_calls == []


@pytest.mark.anyio
async def test_expired_token_is_refreshed_once_and_replaced() -> None:
    repository = InMemoryTokenRepository()
    pair = OAuth1Credentials(access_token="o1", access_token_secret="o1s")
    repository.save(_stored(_past(), oauth1a=pair))
    oauth = DummyOAuthClient()
    service = XTokenService(repository, oauth)

    token = await service.get_valid_token("42")
    again = await service.get_valid_token("42")

    assert oauth.refresh_calls == ["rt-0"]
    assert (token.access_token, token.refresh_token) == ("at-1", "rt-1")
    assert again.access_token == "at-1"
    stored = repository.get("42")
    assert (stored.access_token, stored.refresh_token) == ("at-1", "rt-1")
    assert stored.expires_at > datetime.now(timezone.utc)
    assert stored.oauth1a == pair
    assert stored.handle == "ada"


@pytest.mark.anyio
async def test_refresh_keeps_old_refresh_token_when_not_rotated() -> None:
    repository = InMemoryTokenRepository()
    repository.save(_stored(_past()))

    token = await XTokenService(repository, DummyOAuthClient(rotate_refresh=False)).get_valid_token("42")

    assert token.refresh_token == "rt-0"


@pytest.mark.anyio
async def test_concurrent_callers_share_one_refresh() -> None:
    repository = InMemoryTokenRepository()
    repository.save(_stored(_past()))
    oauth = DummyOAuthClient()
    service = XTokenService(repository, oauth)

    tokens = await asyncio.gather(*(service.get_valid_token("42") for _ in range(5)))

    assert oauth.refresh_calls == ["rt-0"]
    assert {token.access_token for token in tokens} == {"at-1"}


@pytest.mark.anyio
async def test_failed_refresh_leaves_record_untouched() -> None:
    repository = InMemoryTokenRepository()
    repository.save(_stored(_past()))

    with pytest.raises(TokenRefreshError):
        await XTokenService(repository, DummyOAuthClient(fail=True)).get_valid_token("42")

    assert repository.get("42").access_token == "at-0"


def test_save_grant_preserves_existing_oauth1a_pair() -> None:
    repository = InMemoryTokenRepository()
    pair = OAuth1Credentials(access_token="o1", access_token_secret="o1s")
    repository.save(_stored(_future(), oauth1a=pair))
    service = XTokenService(repository, DummyOAuthClient())

    token = service.save_grant(
        UserIdentity(id="42", display_name="Ada", handle="ada_l"),
        TokenGrant(access_token="at-new", refresh_token="rt-new", expires_in=7200, scope="tweet.read"),
    )

    assert token.oauth1a == pair
    assert token.handle == "ada_l"
    assert repository.get("42").access_token == "at-new"


def test_attach_oauth1a_requires_existing_session() -> None:
    service = XTokenService(InMemoryTokenRepository(), DummyOAuthClient())

    with pytest.raises(NotAuthenticated):
        service.attach_oauth1a("42", OAuth1Credentials(access_token="a", access_token_secret="b"))

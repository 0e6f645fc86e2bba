"""
Token persistence for connected X accounts and in-flight OAuth handshakes.

``TokenRepository`` is the seam between the OAuth/upload logic and storage:
the in-memory implementation suits a single process, the SQLite one keeps
tokens (encrypted) across restarts.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol

from app.clients.sqlite_store import SQLiteStore
from app.models.oauth import OAuth1Credentials, StoredToken
from app.services.token_cipher import TokenCipherService


class TokenRepository(Protocol):
    def save(self, token: StoredToken) -> None: ...

    def get(self, user_id: str) -> Optional[StoredToken]: ...

    def delete(self, user_id: str) -> bool: ...

    def list_user_ids(self) -> List[str]: ...


class InMemoryTokenRepository:
    """Process-local mapping guarded by a mutex. Records are copied in and out."""

    def __init__(self) -> None:
        self._tokens: Dict[str, StoredToken] = {}
        self._lock = threading.Lock()

    def save(self, token: StoredToken) -> None:
        with self._lock:
            self._tokens[token.user_id] = token.model_copy(deep=True)

    def get(self, user_id: str) -> Optional[StoredToken]:
        with self._lock:
            token = self._tokens.get(user_id)
        return token.model_copy(deep=True) if token else None

    def delete(self, user_id: str) -> bool:
        with self._lock:
            return self._tokens.pop(user_id, None) is not None

    def list_user_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._tokens)


class SQLiteTokenRepository:
    """Tokens stored as encrypted records in the shared key-value table."""

    _SORT_KEY = "oauth#x"

    def __init__(self, store: SQLiteStore, cipher: TokenCipherService) -> None:
        self._store = store
        self._cipher = cipher

    @staticmethod
    def _partition(user_id: str) -> str:
        return f"user#{user_id}"

    def save(self, token: StoredToken) -> None:
        record = {
            "pk": self._partition(token.user_id),
            "sk": self._SORT_KEY,
            "user_id": token.user_id,
            "provider": "x",
            "access_token_encrypted": self._cipher.encrypt(token.access_token),
            "refresh_token_encrypted": self._cipher.encrypt(token.refresh_token),
            "expires_at": token.expires_at.isoformat(),
            "scope": token.scope,
            "handle": token.handle,
            "created_at": token.created_at.isoformat(),
            "updated_at": token.updated_at.isoformat(),
        }
        if token.oauth1a is not None:
            record["oauth1a_token_encrypted"] = self._cipher.encrypt(token.oauth1a.access_token)
            record["oauth1a_secret_encrypted"] = self._cipher.encrypt(
                token.oauth1a.access_token_secret
            )
        self._store.put_item(record)

    def get(self, user_id: str) -> Optional[StoredToken]:
        record = self._store.get_item(
            partition_key=self._partition(user_id), sort_key=self._SORT_KEY
        )
        if not record:
            return None

        oauth1a = None
        if record.get("oauth1a_token_encrypted") and record.get("oauth1a_secret_encrypted"):
            oauth1a = OAuth1Credentials(
                access_token=self._cipher.decrypt(record["oauth1a_token_encrypted"]),
                access_token_secret=self._cipher.decrypt(record["oauth1a_secret_encrypted"]),
            )
        return StoredToken(
            user_id=record["user_id"],
            access_token=self._cipher.decrypt(record["access_token_encrypted"]),
            refresh_token=self._cipher.decrypt(record["refresh_token_encrypted"]),
            expires_at=datetime.fromisoformat(record["expires_at"]),
            scope=record.get("scope"),
            handle=record.get("handle"),
            oauth1a=oauth1a,
            created_at=datetime.fromisoformat(record["created_at"]),
            updated_at=datetime.fromisoformat(record["updated_at"]),
        )

    def delete(self, user_id: str) -> bool:
        return self._store.delete_item(
            partition_key=self._partition(user_id), sort_key=self._SORT_KEY
        )

    def list_user_ids(self) -> List[str]:
        prefix = self._partition("")
        return [
            pk[len(prefix):]
            for pk in self._store.list_partition_keys(sort_key=self._SORT_KEY)
        ]


@dataclass
class PendingAuthorization:
    """Secret held between redirect and callback of an OAuth round trip."""

    key: str
    secret: str
    user_id: Optional[str] = None
    created_at: float = field(default_factory=time.monotonic)


class PendingAuthorizationStore:
    """
    Single-use, TTL-bounded map for PKCE verifiers (keyed by ``state``) and
    OAuth 1.0a request-token secrets (keyed by ``oauth_token``).
    """

    def __init__(self, ttl_seconds: float = 600, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, PendingAuthorization] = {}
        self._lock = threading.Lock()

    def put(self, key: str, secret: str, *, user_id: Optional[str] = None) -> None:
        with self._lock:
            self._prune()
            self._entries[key] = PendingAuthorization(
                key=key, secret=secret, user_id=user_id, created_at=self._clock()
            )

    def consume(self, key: str) -> Optional[PendingAuthorization]:
        """Remove and return the entry; ``None`` if unknown or expired."""
        with self._lock:
            entry = self._entries.pop(key, None)
            self._prune()
        if entry is None or self._expired(entry):
            return None
        return entry

    def __len__(self) -> int:
        with self._lock:
            self._prune()
            return len(self._entries)

    def _expired(self, entry: PendingAuthorization) -> bool:
        return self._clock() - entry.created_at > self._ttl

    def _prune(self) -> None:
        for key in [k for k, entry in self._entries.items() if self._expired(entry)]:
            del self._entries[key]


__all__ = [
    "InMemoryTokenRepository",
    "PendingAuthorization",
    "PendingAuthorizationStore",
    "SQLiteTokenRepository",
    "TokenRepository",
]

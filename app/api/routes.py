"""
FastAPI routes for the publishing relay.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from app.core.errors import AuthorizationError, NotAuthenticated
from app.dependencies import (
    get_app_settings,
    get_publishing_service,
    get_x_auth_service,
)
from app.models.oauth import StoredToken
from app.schemas import (
    AuthorizationStartResponse,
    ConnectedAccount,
    ConnectedUsersResponse,
    CreatePostRequest,
    IdentityResponse,
    PostListResponse,
    PublishResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _wants_redirect(request: Request, redirect: bool) -> bool:
    accept_header = request.headers.get("accept", "")
    return redirect or "text/html" in accept_header.lower()


def _connected_account(token: StoredToken) -> ConnectedAccount:
    return ConnectedAccount(
        user_id=token.user_id,
        username=token.handle,
        expires_at=token.expires_at,
        media_upload_authorized=token.oauth1a is not None,
    )


def _frontend_success_url(settings: Any, platform: str, token: StoredToken) -> str | None:
    if not settings.frontend_base_url:
        return None
    query = urlencode(
        {"platform": platform, "username": token.handle or "", "userId": token.user_id}
    )
    return f"{str(settings.frontend_base_url).rstrip('/')}/success?{query}"


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/auth/x/login", status_code=HTTPStatus.OK)
async def start_x_oauth_flow(
    request: Request,
    response: Response,
    auth_service: Annotated[Any, Depends(get_x_auth_service)],
    settings: Annotated[Any, Depends(get_app_settings)],
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the X consent screen.",
    ),
) -> Any:
    """
    Kick off the PKCE flow. The verifier stays server side; the browser only
    carries ``state`` in a short-lived cookie.
    """
    authorization_url, state = auth_service.initiate_oauth2_login()

    if _wants_redirect(request, redirect):
        target: Response = RedirectResponse(
            url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT
        )
    else:
        target = response
    target.set_cookie(
        settings.oauth.state_cookie_name,
        state,
        max_age=settings.oauth.state_ttl_seconds,
        httponly=True,
        secure=settings.oauth.cookie_secure,
        samesite="lax",
    )
    if target is response:
        return AuthorizationStartResponse(authorization_url=authorization_url, state=state)
    return target


@router.get("/auth/x/callback", status_code=HTTPStatus.OK)
async def handle_x_oauth_callback(
    request: Request,
    auth_service: Annotated[Any, Depends(get_x_auth_service)],
    settings: Annotated[Any, Depends(get_app_settings)],
    code: str | None = Query(default=None, description="Authorization code returned by X."),
    state: str | None = Query(default=None, description="OAuth state token."),
    error: str | None = Query(default=None, description="Set by X when consent is denied."),
    redirect: bool = Query(
        default=False,
        description="When true, redirect browser clients instead of returning JSON.",
    ),
) -> Response:
    """Complete the OAuth2 exchange and persist the user's tokens."""
    if error:
        raise AuthorizationError(f"X authorization was not granted: {error}.")

    cookie_name = settings.oauth.state_cookie_name
    token = await auth_service.complete_oauth2_callback(
        code, state, cookie_state=request.cookies.get(cookie_name)
    )

    redirect_target = _frontend_success_url(settings, "x", token)
    if redirect_target and _wants_redirect(request, redirect):
        result: Response = RedirectResponse(
            url=redirect_target, status_code=HTTPStatus.TEMPORARY_REDIRECT
        )
    else:
        result = JSONResponse(content=_connected_account(token).model_dump(mode="json"))
    result.delete_cookie(cookie_name)
    return result


@router.get("/auth/x/login-media", status_code=HTTPStatus.OK)
async def start_x_media_oauth_flow(
    request: Request,
    auth_service: Annotated[Any, Depends(get_x_auth_service)],
    user_id: str = Query(..., description="X user id that completed the OAuth2 login."),
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the X consent screen.",
    ),
) -> Any:
    """Start the OAuth 1.0a leg that authorizes the legacy upload surface."""
    authorization_url = await auth_service.initiate_oauth1a_login(user_id)
    if _wants_redirect(request, redirect):
        return RedirectResponse(url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT)
    return AuthorizationStartResponse(authorization_url=authorization_url)


@router.get("/auth/x/callback-media", status_code=HTTPStatus.OK)
async def handle_x_media_oauth_callback(
    request: Request,
    auth_service: Annotated[Any, Depends(get_x_auth_service)],
    settings: Annotated[Any, Depends(get_app_settings)],
    oauth_token: str | None = Query(default=None),
    oauth_verifier: str | None = Query(default=None),
    denied: str | None = Query(default=None, description="Set by X when consent is denied."),
    redirect: bool = Query(default=False),
) -> Response:
    if denied:
        raise AuthorizationError("X media upload authorization was denied.")

    token = await auth_service.complete_oauth1a_callback(oauth_token, oauth_verifier)

    redirect_target = _frontend_success_url(settings, "x-media", token)
    if redirect_target and _wants_redirect(request, redirect):
        return RedirectResponse(url=redirect_target, status_code=HTTPStatus.TEMPORARY_REDIRECT)
    return JSONResponse(content=_connected_account(token).model_dump(mode="json"))


@router.get("/auth/x/users", response_model=ConnectedUsersResponse)
async def list_connected_users(
    auth_service: Annotated[Any, Depends(get_x_auth_service)],
) -> ConnectedUsersResponse:
    return ConnectedUsersResponse(user_ids=auth_service.list_user_ids())


@router.get("/auth/x/me/{user_id}", response_model=IdentityResponse)
async def get_x_identity(
    user_id: str,
    auth_service: Annotated[Any, Depends(get_x_auth_service)],
) -> IdentityResponse:
    identity = await auth_service.get_identity(user_id)
    return IdentityResponse(**identity.model_dump())


@router.delete("/auth/x/{user_id}", status_code=HTTPStatus.OK)
async def disconnect_x_account(
    user_id: str,
    auth_service: Annotated[Any, Depends(get_x_auth_service)],
) -> dict:
    if not auth_service.disconnect(user_id):
        raise NotAuthenticated(f"No X account connected for user {user_id}.")
    return {"status": "disconnected", "user_id": user_id}


@router.post("/posts", response_model=PublishResponse, status_code=HTTPStatus.CREATED)
async def create_post(
    payload: CreatePostRequest,
    publisher: Annotated[Any, Depends(get_publishing_service)],
) -> JSONResponse:
    """
    Publish to every selected platform. Responds 201 when at least one
    platform published; otherwise with the status of the first failure.
    """
    results = await publisher.create_post(
        payload.user_id, payload.text, payload.media_urls, platforms=payload.platforms
    )
    status_code = HTTPStatus.CREATED
    if not any(result.status == "published" for result in results):
        status_code = results[0].http_status
    body = PublishResponse(user_id=payload.user_id, results=results)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@router.get("/posts/{user_id}", response_model=PostListResponse)
async def list_posts(
    user_id: str,
    publisher: Annotated[Any, Depends(get_publishing_service)],
    max_results: int = Query(default=10, ge=1, le=100),
    platform: str = Query(default="x", description="Platform whose timeline to read."),
) -> PostListResponse:
    posts = await publisher.list_posts(user_id, max_results=max_results, platform=platform)
    return PostListResponse(user_id=user_id, posts=posts)


__all__ = ["router"]

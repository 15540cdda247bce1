"""
Connector API routes — OAuth connect/callback, list connections, disconnect.

Route prefix: /api/v1/integrations
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlencode

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, Response
from fastapi.responses import JSONResponse, RedirectResponse

from api.dependencies import enabled_provider, get_services
from auth.dependencies import get_current_user_id
from auth.jwt import create_token, verify_token
from core.rate_limiter import RateLimitPolicy
from core.services import IntegrationServices
from utils.errors import CSRFValidationError, OAuthExchangeError
from utils.validators import sanitize_string, validate_authorization_code, validate_state_format

logger = logging.getLogger(__name__)

router = APIRouter(tags=["integrations"])

OAUTH_OWNER_COOKIE = "oauth_owner"


def _dashboard_redirect(services: IntegrationServices, **params: str) -> RedirectResponse:
    url = f"{services.settings.frontend_base_url}/dashboard/integrations?{urlencode(params)}"
    return RedirectResponse(url, status_code=302)


def _auth_failed(services: IntegrationServices, provider: str, details: str) -> RedirectResponse:
    return _dashboard_redirect(services, error=f"{provider}_auth_failed", details=details)


def _set_owner_cookie(response: Response, services: IntegrationServices, user_id: str) -> None:
    ttl = services.settings.oauth_state_ttl_seconds
    response.set_cookie(
        OAUTH_OWNER_COOKIE,
        create_token(user_id, expires_in=ttl, secret=services.settings.jwt_secret),
        max_age=ttl,
        path="/",
        httponly=True,
        samesite="lax",
        secure=services.settings.oauth_redirect_base.startswith("https"),
    )


def _callback_user(
    services: IntegrationServices,
    provider: str,
    state: Optional[str],
    owner: Optional[str],
) -> str:
    """Return the user the state was issued to, or raise ``CSRFValidationError``.

    The state is consumed whenever it is well formed, even if the owner
    cookie is missing.
    """
    if not state or not validate_state_format(state):
        raise CSRFValidationError("Malformed OAuth state", provider=provider)
    user_id = None
    if owner:
        try:
            user_id = verify_token(owner, secret=services.settings.jwt_secret)
        except HTTPException:
            user_id = None
    if user_id is None:
        services.csrf.validate_state_token(state, "", provider)
        raise CSRFValidationError("Missing or invalid OAuth owner cookie", provider=provider)
    if not services.csrf.validate_state_token(state, user_id, provider):
        raise CSRFValidationError("OAuth state does not match this user and provider", provider=provider)
    return user_id


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers(services: IntegrationServices = Depends(get_services)) -> List[Dict[str, Any]]:
    """
    List the enabled providers.
    No auth required — used by the frontend to show available integrations.
    """
    return services.oauth.registry.list_providers()


@router.get("/connections")
async def list_connections(
    user_id: str = Depends(get_current_user_id),
    services: IntegrationServices = Depends(get_services),
) -> List[Dict[str, Any]]:
    """Connection flag for every enabled provider (no tokens exposed)."""
    connected = set(await services.vault.list_connected_providers(user_id))
    return [
        {
            "provider": p["provider"],
            "display_name": p["display_name"],
            "connected": p["provider"] in connected,
        }
        for p in services.oauth.registry.list_providers()
    ]


@router.get("/{provider}/connect", response_model=None)
async def connect(
    provider: str = Depends(enabled_provider),
    redirect: bool = Query(True),
    user_id: str = Depends(get_current_user_id),
    services: IntegrationServices = Depends(get_services),
) -> Union[RedirectResponse, JSONResponse]:
    """
    Start the OAuth flow: issue a single-use state token and send the
    browser to the provider's consent page.

    The browser also gets a short-lived signed cookie naming the user; the
    callback accepts the state only when it was issued to that same user.
    """
    services.rate_limiter.enforce(RateLimitPolicy.GENERAL, user_id)
    state = services.csrf.generate_state_token(user_id, provider)
    auth_url = services.oauth.get_authorization_url(provider, state)
    logger.info("OAuth connect started: user=%s provider=%s", user_id, provider)
    if redirect:
        response: Union[RedirectResponse, JSONResponse] = RedirectResponse(auth_url, status_code=307)
    else:
        response = JSONResponse({"auth_url": auth_url, "provider": provider})
    _set_owner_cookie(response, services, user_id)
    return response


@router.get("/{provider}/callback")
async def oauth_callback(
    provider: str = Depends(enabled_provider),
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    owner: Optional[str] = Cookie(None, alias=OAUTH_OWNER_COOKIE),
    services: IntegrationServices = Depends(get_services),
) -> RedirectResponse:
    """
    OAuth callback — the provider redirects here after consent.

    The state is validated (and consumed) against the owner cookie before
    the code is touched; any failure redirects to the dashboard with an
    explicit error.
    """
    response = await _complete_callback(services, provider, code, state, error, owner)
    response.delete_cookie(OAUTH_OWNER_COOKIE, path="/")
    return response


async def _complete_callback(
    services: IntegrationServices,
    provider: str,
    code: Optional[str],
    state: Optional[str],
    error: Optional[str],
    owner: Optional[str],
) -> RedirectResponse:
    # 1. Verify state against the browser that started the flow
    try:
        user_id: Optional[str] = _callback_user(services, provider, state, owner)
    except CSRFValidationError as exc:
        logger.warning("OAuth callback rejected for %s: %s", provider, exc.message)
        user_id = None

    if error:
        logger.warning("OAuth provider returned error for %s: %s", provider, error)
        return _auth_failed(services, provider, sanitize_string(error, 100))
    if user_id is None:
        return _auth_failed(services, provider, "invalid_state")
    if not code or not validate_authorization_code(code):
        return _auth_failed(services, provider, "invalid_code")

    # 2. Exchange code for tokens
    try:
        tokens = await services.oauth.exchange_code_for_tokens(provider, code)
    except OAuthExchangeError as exc:
        logger.error("OAuth callback failed for %s: %s", provider, exc.message)
        return _auth_failed(services, provider, "token_exchange_failed")

    # 3. Store credential and clear stale alerts
    await services.vault.store_token(user_id, provider, tokens)
    await services.notifications.clear_provider_notifications(user_id, provider)
    services.invalidate_caches(user_id, provider)

    logger.info("OAuth connected: user=%s provider=%s", user_id, provider)
    return _dashboard_redirect(services, success=f"{provider}_connected")


@router.post("/{provider}/disconnect")
async def disconnect(
    provider: str = Depends(enabled_provider),
    user_id: str = Depends(get_current_user_id),
    services: IntegrationServices = Depends(get_services),
) -> Dict[str, Any]:
    """Revoke at the provider (best effort) and delete the stored credential.

    Waits for a sync already running on the same integration.
    """
    revoked = await services.orchestrator.disconnect(user_id, provider)
    services.invalidate_caches(user_id, provider)
    return {"status": "disconnected", "provider": provider, "revoked": revoked}

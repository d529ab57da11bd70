"""Router for /api/v1/auth/google endpoints (user-delegated flow)."""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, RedirectResponse

from drive_upload.deps import get_user_tokens
from drive_upload.models.oauth import AuthStatusResponse, CallbackResponse, OAuthClientRequest
from drive_upload.services.token_manager import UserTokenManager

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/login")
async def login_endpoint(
    state: Optional[str] = None,
    tokens: UserTokenManager = Depends(get_user_tokens)
):
    """Redirect the browser to Google's consent screen."""
    return RedirectResponse(tokens.authorization_url(state=state), status_code=302)


@router.get("/callback")
async def callback_endpoint(
    code: Optional[str] = None,
    error: Optional[str] = None,
    tokens: UserTokenManager = Depends(get_user_tokens)
):
    """Exchange the authorization code Google redirected back with."""
    outcome = await asyncio.to_thread(tokens.complete_authorization, code, error)
    payload = CallbackResponse(success=outcome.success, error=outcome.error)

    return JSONResponse(
        status_code=200 if outcome.success else 400,
        content=payload.model_dump(by_alias=True, exclude_none=True)
    )


@router.get("/status", response_model=AuthStatusResponse)
async def status_endpoint(tokens: UserTokenManager = Depends(get_user_tokens)):
    return AuthStatusResponse(
        configured=tokens.is_configured(),
        authenticated=tokens.is_authenticated()
    )


@router.post("/logout")
async def logout_endpoint(tokens: UserTokenManager = Depends(get_user_tokens)):
    tokens.logout()
    return {"success": True}


@router.put("/config", response_model=AuthStatusResponse)
async def config_endpoint(
    request: OAuthClientRequest,
    tokens: UserTokenManager = Depends(get_user_tokens)
):
    """Save OAuth client credentials (administrator action)."""
    tokens.configure(request.client_id, request.client_secret, request.redirect_uri)

    return AuthStatusResponse(
        configured=tokens.is_configured(),
        authenticated=tokens.is_authenticated()
    )

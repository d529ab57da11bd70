"""Models for the /auth/google endpoints."""

from typing import Optional

from pydantic import Field

from drive_upload.models.upload import CamelModel


class OAuthClientRequest(CamelModel):
    """Client credentials saved by an administrator."""

    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1)
    redirect_uri: Optional[str] = None


class AuthStatusResponse(CamelModel):
    configured: bool
    authenticated: bool


class CallbackResponse(CamelModel):
    success: bool
    error: Optional[str] = None

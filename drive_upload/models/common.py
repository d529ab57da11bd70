"""Shared models: credential configuration, token state and upload results."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict

from drive_upload.errors import PermissionSetError, UploadError


class ServiceAccountConfig(BaseModel):
    """Google Cloud service account used by the server-side upload handler."""

    model_config = ConfigDict(frozen=True)

    service_account_email: str
    private_key: str
    project_id: str
    folder_id: str

    def is_complete(self) -> bool:
        return all([
            self.service_account_email,
            self.private_key,
            self.project_id,
            self.folder_id,
        ])


class OAuthClientConfig(BaseModel):
    """OAuth2 web client used for the user-delegated flow."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str
    redirect_uri: str

    def is_complete(self) -> bool:
        return all([self.client_id, self.client_secret, self.redirect_uri])


@dataclass
class TokenState:
    """
    Current access token of one Token Manager.

    refresh_token is always None for service accounts, which re-sign an
    assertion on expiry instead.
    """

    access_token: str
    expires_at: int  # epoch milliseconds
    refresh_token: Optional[str] = None

    def is_stale(self, now_ms: int, buffer_ms: int) -> bool:
        return now_ms >= self.expires_at - buffer_ms

    def to_dict(self) -> Dict[str, Any]:
        """Serialized shape kept in the key-value store."""
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresAt": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenState":
        return cls(
            access_token=data["accessToken"],
            refresh_token=data.get("refreshToken"),
            expires_at=int(data.get("expiresAt", 0)),
        )


class UploadErrorCode(str, Enum):
    """Why an upload did not fully succeed."""

    UPLOAD_FAILED = "upload_failed"
    PERMISSION_FAILED = "permission_failed"


class UploadResult(BaseModel):
    """Outcome of one upload call. Never stored."""

    success: bool
    file_id: Optional[str] = None
    public_url: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[UploadErrorCode] = None

    @property
    def is_partial(self) -> bool:
        """File exists on Drive but is not public yet."""
        return self.error_code == UploadErrorCode.PERMISSION_FAILED

    @classmethod
    def ok(cls, file_id: str, public_url: str) -> "UploadResult":
        return cls(success=True, file_id=file_id, public_url=public_url)

    @classmethod
    def upload_failed(cls, error: str) -> "UploadResult":
        return cls(success=False, error=error, error_code=UploadErrorCode.UPLOAD_FAILED)

    @classmethod
    def permission_failed(cls, file_id: str, error: str) -> "UploadResult":
        return cls(
            success=False,
            file_id=file_id,
            error=error,
            error_code=UploadErrorCode.PERMISSION_FAILED,
        )

    def raise_for_error(self) -> None:
        """Raise UploadError or PermissionSetError for a failed result."""
        if self.success:
            return
        if self.is_partial:
            raise PermissionSetError(self.error or "Failed to set permissions", file_id=self.file_id)
        raise UploadError(self.error or "Upload failed")

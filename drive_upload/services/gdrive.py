"""Google Drive service layer: authenticated upload, public sharing, delete."""

import io
import json
import logging
import uuid
from pathlib import PurePath
from typing import Callable, Optional

import httplib2
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build, Resource
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from drive_upload.models.common import UploadResult
from drive_upload.services.token_manager import TokenManager, epoch_millis

logger = logging.getLogger(__name__)

UPLOAD_FIELDS = "id,webViewLink,webContentLink"

# Direct-content URL; the /view URL needs a browser session.
# Unofficial pattern, but existing stored records depend on it.
PUBLIC_URL_PATTERN = "https://lh3.googleusercontent.com/d/{file_id}"

DriveFactory = Callable[[str], Resource]


def public_url_for(file_id: str) -> str:
    """Derive the stable public URL of a Drive object."""
    return PUBLIC_URL_PATTERN.format(file_id=file_id)


def create_drive_client(access_token: str, timeout: float = 30.0) -> Resource:
    """
    Create Google Drive API client bound to an access token.

    Args:
        access_token: Bearer token from a TokenManager
        timeout: Socket timeout in seconds for every Drive call

    Returns:
        Google Drive API v3 Resource
    """
    creds = Credentials(token=access_token)

    # Renewal belongs to the TokenManager, so a 401 is returned as-is
    http = AuthorizedHttp(
        creds,
        http=httplib2.Http(timeout=timeout),
        refresh_status_codes=(),
    )

    return build("drive", "v3", http=http, cache_discovery=False)


def provider_message(error: HttpError) -> str:
    """Extract error.message from a Drive error body, falling back to the reason."""
    content = error.content
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    try:
        body = json.loads(content)
    except (TypeError, ValueError):
        body = None

    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        message = body["error"].get("message")
        if message:
            return message
    return getattr(error, "reason", None) or f"HTTP {error.resp.status}"


def unique_file_name(file_name: str, prefix: str, now_ms: int) -> str:
    """
    Build a collision-resistant Drive file name.

    Args:
        file_name: Original name; directory parts are dropped
        prefix: Application prefix
        now_ms: Current time in epoch milliseconds

    Returns:
        "<prefix>_<millis>_<random>_<name>"
    """
    base_name = PurePath(file_name.replace("\\", "/")).name or "upload"
    return f"{prefix}_{now_ms}_{uuid.uuid4().hex[:8]}_{base_name}"


class DriveUploader:
    """
    Uploads bytes under one TokenManager's credentials and makes them public.

    Service-account uploads go into folder_id; user uploads (folder_id None)
    land in the root of the user's own Drive.
    """

    def __init__(
        self,
        token_manager: TokenManager,
        folder_id: Optional[str] = None,
        name_prefix: str = "pizzart",
        drive_factory: Optional[DriveFactory] = None,
        url_builder: Callable[[str], str] = public_url_for,
        timeout: float = 30.0,
        clock: Callable[[], int] = epoch_millis,
    ):
        self.token_manager = token_manager
        self.folder_id = folder_id
        self.name_prefix = name_prefix
        self.drive_factory = drive_factory or (lambda token: create_drive_client(token, timeout))
        self.url_builder = url_builder
        self.clock = clock

    def _drive(self) -> Resource:
        # Token check and any renewal finish before a Drive call is issued
        access_token = self.token_manager.get_access_token()
        return self.drive_factory(access_token)

    def upload_bytes(self, content: bytes, file_name: str, mime_type: str) -> UploadResult:
        """
        Upload file bytes and share them publicly.

        Args:
            content: Raw file bytes
            file_name: Display name; a unique prefix is added
            mime_type: MIME type of the content

        Returns:
            UploadResult; failed uploads and failed sharing are reported
            in the result, not raised

        Raises:
            NotConfiguredError: If credentials are incomplete
            NotAuthenticatedError: If the user flow has no refresh token
            KeyImportError, SigningError, TokenExchangeError,
            ReauthenticationRequiredError: From token acquisition
        """
        self.token_manager.ensure_ready()
        drive = self._drive()

        metadata = {"name": unique_file_name(file_name, self.name_prefix, self.clock())}
        if self.folder_id:
            metadata["parents"] = [self.folder_id]

        media = MediaIoBaseUpload(io.BytesIO(content), mimetype=mime_type, resumable=False)

        logger.info(f"Uploading {metadata['name']} ({len(content)} bytes, {mime_type})")

        try:
            created = drive.files().create(
                body=metadata,
                media_body=media,
                fields=UPLOAD_FIELDS
            ).execute()
        except HttpError as e:
            message = provider_message(e)
            logger.error(f"Drive upload failed ({e.resp.status}): {message}")
            return UploadResult.upload_failed(message)
        except (httplib2.HttpLib2Error, OSError) as e:
            logger.error(f"Drive upload failed: {e}")
            return UploadResult.upload_failed(f"Upload failed: {e}")

        file_id = created.get("id")
        if not file_id:
            return UploadResult.upload_failed("Drive response did not include a file id")

        logger.info(f"Uploaded file: {file_id}")

        return self._share_publicly(drive, file_id)

    def publish(self, file_id: str) -> UploadResult:
        """Retry only the sharing step for a file left private by a partial failure."""
        self.token_manager.ensure_ready()
        return self._share_publicly(self._drive(), file_id)

    def _share_publicly(self, drive: Resource, file_id: str) -> UploadResult:
        try:
            drive.permissions().create(
                fileId=file_id,
                body={"role": "reader", "type": "anyone"}
            ).execute()
        except HttpError as e:
            message = provider_message(e)
            logger.error(f"Setting public permission on {file_id} failed ({e.resp.status}): {message}")
            return UploadResult.permission_failed(file_id, message)
        except (httplib2.HttpLib2Error, OSError) as e:
            logger.error(f"Setting public permission on {file_id} failed: {e}")
            return UploadResult.permission_failed(file_id, f"Failed to set permissions: {e}")

        public_url = self.url_builder(file_id)

        logger.info(f"File {file_id} is public: {public_url}")

        return UploadResult.ok(file_id, public_url)

    def delete_file(self, file_id: str) -> bool:
        """
        Delete a file from Drive.

        Returns:
            True if deleted; False if not authenticated or Drive refused
        """
        if not (self.token_manager.is_configured() and self.token_manager.is_authenticated()):
            return False

        drive = self._drive()
        try:
            drive.files().delete(fileId=file_id).execute()
        except HttpError as e:
            logger.error(f"Deleting {file_id} failed ({e.resp.status}): {provider_message(e)}")
            return False
        except (httplib2.HttpLib2Error, OSError) as e:
            logger.error(f"Deleting {file_id} failed: {e}")
            return False

        logger.info(f"Deleted file: {file_id}")
        return True

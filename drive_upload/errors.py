"""Exception taxonomy for credential, token and upload failures."""

from typing import Optional


class DriveUploadError(Exception):
    """Base class for every error raised by this package."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ConfigurationError(DriveUploadError):
    """Credentials are missing or malformed. Fix the configuration, do not retry."""


class NotConfiguredError(ConfigurationError):
    """A required credential field is empty."""


class KeyImportError(ConfigurationError):
    """The service-account private key could not be loaded as a PKCS8 RSA key."""


class SigningError(ConfigurationError):
    """The RSA sign operation failed for an otherwise loaded key."""


class TokenExchangeError(DriveUploadError):
    """The token endpoint rejected a code, assertion or refresh token."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, cause=cause)
        self.status_code = status_code
        self.body = body


class NotAuthenticatedError(DriveUploadError):
    """An authenticated operation was attempted before authorization completed."""


class ReauthenticationRequiredError(DriveUploadError):
    """The stored refresh token is no longer accepted; the user must log in again."""


class UploadError(DriveUploadError):
    """The provider rejected the upload itself."""


class PermissionSetError(DriveUploadError):
    """The file uploaded but could not be made public."""

    def __init__(self, message: str, *, file_id: str, cause: Optional[BaseException] = None):
        super().__init__(message, cause=cause)
        self.file_id = file_id

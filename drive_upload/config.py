"""
Application configuration using Pydantic Settings.
Values come from environment variables or a local .env file.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from drive_upload.models.common import OAuthClientConfig, ServiceAccountConfig


class Settings(BaseSettings):
    """Settings for the upload service and both credential flows."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service account (server-side upload handler)
    google_service_account_email: str = ""
    google_private_key: str = ""
    google_project_id: str = ""
    google_drive_folder_id: str = ""

    # OAuth client (user-delegated flow)
    google_oauth_client_id: str = ""
    google_oauth_client_secret: str = ""
    google_oauth_redirect_uri: str = "http://localhost:8000/api/v1/auth/google/callback"

    # JSON file backing the key-value store; in-memory when unset
    token_store_path: Optional[str] = None

    http_timeout_seconds: float = 30.0
    token_refresh_buffer_seconds: int = 300
    upload_name_prefix: str = "pizzart"

    log_level: str = "INFO"
    cors_allow_origins: str = "*"

    @property
    def allowed_origins(self) -> List[str]:
        """Parse comma-separated origins into a list"""
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]

    def service_account_config(self) -> ServiceAccountConfig:
        return ServiceAccountConfig(
            service_account_email=self.google_service_account_email,
            # Keys pasted into env vars usually carry escaped newlines
            private_key=self.google_private_key.replace("\\n", "\n"),
            project_id=self.google_project_id,
            folder_id=self.google_drive_folder_id,
        )

    def oauth_client_config(self) -> OAuthClientConfig:
        return OAuthClientConfig(
            client_id=self.google_oauth_client_id,
            client_secret=self.google_oauth_client_secret,
            redirect_uri=self.google_oauth_redirect_uri,
        )

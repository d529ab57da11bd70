"""Construction of per-credential components and their FastAPI dependencies."""

import logging
from dataclasses import dataclass
from typing import Optional

import requests
from fastapi import Depends, Request

from drive_upload.config import Settings
from drive_upload.services.gdrive import DriveFactory, DriveUploader
from drive_upload.services.token_manager import (
    Clock,
    ServiceAccountTokenManager,
    UserTokenManager,
    epoch_millis,
)
from drive_upload.utils.kv_store import InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """One token manager and one uploader per credential set."""

    settings: Settings
    store: KeyValueStore
    service_tokens: ServiceAccountTokenManager
    user_tokens: UserTokenManager
    service_uploader: DriveUploader
    user_uploader: DriveUploader


def build_services(
    settings: Settings,
    store: Optional[KeyValueStore] = None,
    session: Optional[requests.Session] = None,
    drive_factory: Optional[DriveFactory] = None,
    clock: Clock = epoch_millis,
) -> Services:
    """
    Wire token managers and uploaders for both credential flows.

    Args:
        settings: Loaded settings
        store: Key-value collaborator (built from settings if None)
        session: HTTP session for the token endpoint
        drive_factory: Builds a Drive client from an access token
        clock: Epoch-milliseconds clock

    Returns:
        Services bundle
    """
    if store is None:
        if settings.token_store_path:
            store = JsonFileKeyValueStore(settings.token_store_path)
        else:
            logger.warning("TOKEN_STORE_PATH not set; user tokens will not survive a restart")
            store = InMemoryKeyValueStore()

    session = session or requests.Session()
    common = dict(
        session=session,
        clock=clock,
        refresh_buffer_ms=settings.token_refresh_buffer_seconds * 1000,
        timeout=settings.http_timeout_seconds,
    )

    service_tokens = ServiceAccountTokenManager(settings.service_account_config(), **common)
    user_tokens = UserTokenManager(store, settings.oauth_client_config(), **common)

    if not service_tokens.is_configured():
        logger.warning("Service account credentials incomplete; /upload-to-drive will fail")

    uploader_options = dict(
        name_prefix=settings.upload_name_prefix,
        drive_factory=drive_factory,
        timeout=settings.http_timeout_seconds,
        clock=clock,
    )

    return Services(
        settings=settings,
        store=store,
        service_tokens=service_tokens,
        user_tokens=user_tokens,
        service_uploader=DriveUploader(
            service_tokens,
            folder_id=settings.google_drive_folder_id,
            **uploader_options
        ),
        user_uploader=DriveUploader(user_tokens, **uploader_options),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_service_uploader(services: Services = Depends(get_services)) -> DriveUploader:
    return services.service_uploader


def get_user_uploader(services: Services = Depends(get_services)) -> DriveUploader:
    return services.user_uploader


def get_user_tokens(services: Services = Depends(get_services)) -> UserTokenManager:
    return services.user_tokens

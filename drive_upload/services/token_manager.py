"""
Token managers for the two credential flows.

A manager owns exactly one TokenState and hands out a currently valid
access token, renewing it first when it is stale:

- ServiceAccountTokenManager signs a fresh JWT-bearer assertion on every
  renewal (no refresh token involved).
- UserTokenManager runs the authorization-code grant once, then renews
  with the stored refresh token.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import requests

from drive_upload.errors import (
    NotAuthenticatedError,
    NotConfiguredError,
    ReauthenticationRequiredError,
    TokenExchangeError,
)
from drive_upload.models.common import OAuthClientConfig, ServiceAccountConfig, TokenState
from drive_upload.services.signer import DRIVE_SCOPE, TOKEN_URI, build_assertion
from drive_upload.utils.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"

# Per-file access only; the user flow never needs the whole Drive
DRIVE_FILE_SCOPE = "https://www.googleapis.com/auth/drive.file"

DEFAULT_REFRESH_BUFFER_MS = 5 * 60 * 1000
DEFAULT_EXPIRES_IN_SECONDS = 3600

# Key-value store keys
TOKENS_KEY = "gdrive_oauth_tokens"
CLIENT_ID_KEY = "gdrive_oauth_client_id"
CLIENT_SECRET_KEY = "gdrive_oauth_client_secret"

Clock = Callable[[], int]


def epoch_millis() -> int:
    return int(time.time() * 1000)


class TokenManager(ABC):
    """Tracks one access token and renews it before it goes stale."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        clock: Clock = epoch_millis,
        refresh_buffer_ms: int = DEFAULT_REFRESH_BUFFER_MS,
        timeout: float = 30.0,
        token_uri: str = TOKEN_URI,
    ):
        self.session = session or requests.Session()
        self.clock = clock
        self.refresh_buffer_ms = refresh_buffer_ms
        self.timeout = timeout
        self.token_uri = token_uri
        self._state: Optional[TokenState] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> Optional[TokenState]:
        return self._state

    @abstractmethod
    def is_configured(self) -> bool:
        """True when every required credential field is non-empty."""

    @abstractmethod
    def is_authenticated(self) -> bool:
        """True when a token can be obtained without user interaction."""

    @abstractmethod
    def _renew(self) -> TokenState:
        """Obtain a fresh token from the provider."""

    def ensure_ready(self) -> None:
        """
        Check preconditions for any authenticated call.

        Raises:
            NotConfiguredError: If credentials are incomplete
            NotAuthenticatedError: If authorization has not completed
        """
        if not self.is_configured():
            raise NotConfiguredError("Google Drive credentials are not configured")
        if not self.is_authenticated():
            raise NotAuthenticatedError("Not authenticated. Please login with Google first.")

    def get_access_token(self) -> str:
        """
        Return a valid access token, renewing it first if stale.

        A fresh token is returned without any network call.
        """
        self.ensure_ready()

        state = self._state
        if state is not None and not state.is_stale(self.clock(), self.refresh_buffer_ms):
            return state.access_token

        with self._lock:
            # Another caller may have renewed while we waited
            state = self._state
            if state is not None and not state.is_stale(self.clock(), self.refresh_buffer_ms):
                return state.access_token

            logger.info("Access token missing or stale, renewing")
            self._state = self._renew()
            return self._state.access_token

    def refresh(self) -> TokenState:
        """Renew unconditionally and return the new state."""
        self.ensure_ready()
        with self._lock:
            self._state = self._renew()
            return self._state

    def _post_token(self, form: Dict[str, str]) -> Dict[str, Any]:
        """
        POST a form-encoded grant to the token endpoint.

        Raises:
            TokenExchangeError: On transport failure or non-2xx response
        """
        grant_type = form.get("grant_type")
        try:
            response = self.session.post(
                self.token_uri,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise TokenExchangeError(f"Token endpoint unreachable: {e}", cause=e) from e

        if not response.ok:
            logger.error(
                f"Token exchange ({grant_type}) failed: {response.status_code} {response.text}"
            )
            raise TokenExchangeError(
                f"Token exchange failed: {_provider_error(response)}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TokenExchangeError(
                "Token endpoint returned invalid JSON",
                status_code=response.status_code,
                body=response.text,
                cause=e,
            ) from e

        if not data.get("access_token"):
            raise TokenExchangeError(
                "Token endpoint response has no access_token",
                status_code=response.status_code,
                body=response.text,
            )
        return data

    def _expires_at(self, data: Dict[str, Any]) -> int:
        expires_in = int(data.get("expires_in") or DEFAULT_EXPIRES_IN_SECONDS)
        return self.clock() + expires_in * 1000


def _provider_error(response: requests.Response) -> str:
    """Best-effort 'error: description' from an OAuth error body."""
    try:
        body = response.json()
    except ValueError:
        return response.reason or str(response.status_code)
    if not isinstance(body, dict):
        return str(body)
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("message") or str(error)
    description = body.get("error_description")
    if error and description:
        return f"{error}: {description}"
    return str(error or description or response.status_code)


class ServiceAccountTokenManager(TokenManager):
    """Access tokens for a service account via the JWT-bearer grant."""

    def __init__(self, config: ServiceAccountConfig, scope: str = DRIVE_SCOPE, **kwargs):
        super().__init__(**kwargs)
        self.config = config
        self.scope = scope

    def is_configured(self) -> bool:
        return self.config.is_complete()

    def is_authenticated(self) -> bool:
        return self.is_configured()

    def _renew(self) -> TokenState:
        assertion = build_assertion(
            self.config.service_account_email,
            self.config.private_key,
            scope=self.scope,
            audience=self.token_uri,
            now=self.clock() // 1000,
        )
        data = self._post_token({"grant_type": JWT_BEARER_GRANT, "assertion": assertion})

        logger.info(f"Obtained access token for {self.config.service_account_email}")

        return TokenState(access_token=data["access_token"], expires_at=self._expires_at(data))


@dataclass
class AuthorizationOutcome:
    """Result of handling the OAuth redirect callback."""

    success: bool
    error: Optional[str] = None


class UserTokenManager(TokenManager):
    """
    Access tokens for an end user via authorization code + refresh token.

    Client id/secret saved in the store by an administrator override the
    ones passed in; token state is loaded from and saved to the store.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[OAuthClientConfig] = None,
        scope: str = DRIVE_FILE_SCOPE,
        auth_uri: str = AUTH_URI,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.store = store
        self.scope = scope
        self.auth_uri = auth_uri
        self.config = self._resolve_config(config)
        self._used_codes = set()
        self._state = self._load_state()

    def _resolve_config(self, config: Optional[OAuthClientConfig]) -> OAuthClientConfig:
        client_id = self.store.get(CLIENT_ID_KEY) or (config.client_id if config else "")
        client_secret = self.store.get(CLIENT_SECRET_KEY) or (config.client_secret if config else "")
        redirect_uri = config.redirect_uri if config else ""
        return OAuthClientConfig(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
        )

    def _load_state(self) -> Optional[TokenState]:
        raw = self.store.get(TOKENS_KEY)
        if not raw:
            return None
        try:
            return TokenState.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable stored tokens: {e}")
            return None

    def _save_state(self) -> None:
        if self._state is not None:
            self.store.set(TOKENS_KEY, json.dumps(self._state.to_dict()))

    def configure(self, client_id: str, client_secret: str, redirect_uri: Optional[str] = None) -> None:
        """Persist new client credentials; they apply from the next token call."""
        self.store.set(CLIENT_ID_KEY, client_id)
        self.store.set(CLIENT_SECRET_KEY, client_secret)
        self.config = OAuthClientConfig(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri or self.config.redirect_uri,
        )
        logger.info("OAuth client credentials updated")

    def is_configured(self) -> bool:
        return self.config.is_complete()

    def is_authenticated(self) -> bool:
        return self._state is not None and bool(self._state.refresh_token)

    def authorization_url(self, state: Optional[str] = None) -> str:
        """
        Build the consent screen URL. No network call is made.

        access_type=offline is what makes Google issue a refresh token, and
        prompt=consent forces a new one even for users who already agreed.
        """
        if not self.config.client_id or not self.config.redirect_uri:
            raise NotConfiguredError("OAuth not configured")

        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "scope": self.scope,
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{self.auth_uri}?{urlencode(params)}"

    def exchange_code(self, code: str) -> TokenState:
        """
        Exchange an authorization code for access and refresh tokens.

        Raises:
            NotConfiguredError: If client credentials are incomplete
            TokenExchangeError: If the code is empty, already used here, or
                rejected by the provider, or if no refresh token is
                available after the exchange
        """
        if not self.is_configured():
            raise NotConfiguredError("OAuth not configured")
        if not code:
            raise TokenExchangeError("Authorization code is missing")
        if code in self._used_codes:
            raise TokenExchangeError("Authorization code has already been used")

        data = self._post_token({
            "code": code,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "redirect_uri": self.config.redirect_uri,
            "grant_type": "authorization_code",
        })
        self._used_codes.add(code)

        refresh_token = data.get("refresh_token")
        if not refresh_token:
            refresh_token = self._state.refresh_token if self._state else None
            if not refresh_token:
                raise TokenExchangeError(
                    "Google did not return a refresh token; revoke the app's access and login again"
                )
            logger.warning("Token response carried no refresh token; keeping the previous one")

        with self._lock:
            self._state = TokenState(
                access_token=data["access_token"],
                refresh_token=refresh_token,
                expires_at=self._expires_at(data),
            )
            self._save_state()

        logger.info("Google Drive authorization completed")
        return self._state

    def complete_authorization(self, code: Optional[str], error: Optional[str] = None) -> AuthorizationOutcome:
        """
        Handle the redirect callback without raising for expected failures.

        Configuration errors still raise; they are not the user's to fix.
        """
        if error:
            logger.info(f"User did not grant access: {error}")
            return AuthorizationOutcome(success=False, error=f"Access denied: {error}")
        if not code:
            return AuthorizationOutcome(success=False, error="Authorization code not found")

        try:
            self.exchange_code(code)
        except TokenExchangeError as e:
            return AuthorizationOutcome(success=False, error=e.message)
        return AuthorizationOutcome(success=True)

    def _renew(self) -> TokenState:
        state = self._state
        if state is None or not state.refresh_token:
            raise NotAuthenticatedError("Not authenticated. Please login with Google first.")

        try:
            data = self._post_token({
                "refresh_token": state.refresh_token,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "grant_type": "refresh_token",
            })
        except TokenExchangeError as e:
            if e.status_code in (400, 401):
                # invalid_grant: consent revoked or client deleted
                self.logout()
                raise ReauthenticationRequiredError(
                    "Google Drive access was revoked. Please login again.", cause=e
                ) from e
            raise

        state.access_token = data["access_token"]
        state.expires_at = self._expires_at(data)
        if data.get("refresh_token"):
            state.refresh_token = data["refresh_token"]
        self._state = state
        self._save_state()

        logger.info("Access token refreshed")
        return state

    def logout(self) -> None:
        """Forget tokens in memory and in the store."""
        self._state = None
        self.store.delete(TOKENS_KEY)
        logger.info("Logged out from Google Drive")

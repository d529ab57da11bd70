"""Tests for the service-account and user-delegated token managers."""
import json
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from drive_upload.errors import (
    KeyImportError,
    NotAuthenticatedError,
    NotConfiguredError,
    ReauthenticationRequiredError,
    TokenExchangeError,
)
from drive_upload.models.common import OAuthClientConfig, ServiceAccountConfig, TokenState
from drive_upload.services.signer import decode_claims, decode_header
from drive_upload.services.token_manager import (
    CLIENT_ID_KEY,
    CLIENT_SECRET_KEY,
    JWT_BEARER_GRANT,
    TOKENS_KEY,
    ServiceAccountTokenManager,
    UserTokenManager,
)

BUFFER_MS = 300_000


def posted_form(session, call_index: int = -1) -> dict:
    return session.post.call_args_list[call_index].kwargs["data"]


class TestServiceAccountTokenManager:
    """Tests for the JWT-bearer flow."""

    @pytest.fixture
    def manager(self, service_account_config, session, clock):
        return ServiceAccountTokenManager(service_account_config, session=session, clock=clock)

    def test_first_call_exchanges_signed_assertion(self, manager, session, token_response, clock):
        session.post.return_value = token_response("AT1", 3600)

        assert manager.get_access_token() == "AT1"

        form = posted_form(session)
        assert form["grant_type"] == JWT_BEARER_GRANT
        assert decode_header(form["assertion"])["alg"] == "RS256"
        assert decode_claims(form["assertion"])["iat"] == clock.now // 1000
        assert session.post.call_args.args[0] == "https://oauth2.googleapis.com/token"
        assert session.post.call_args.kwargs["timeout"] == 30.0

    def test_expiry_from_expires_in(self, manager, session, token_response, clock):
        session.post.return_value = token_response("AT1", 3600)
        manager.get_access_token()
        assert manager.state.expires_at == clock.now + 3_600_000
        assert manager.state.refresh_token is None

    def test_fresh_token_makes_no_network_call(self, manager, session, token_response, clock):
        session.post.return_value = token_response("AT1", 3600)
        manager.get_access_token()
        clock.advance(3_600_000 - BUFFER_MS - 1)

        assert manager.get_access_token() == "AT1"
        assert session.post.call_count == 1

    def test_stale_token_is_resigned(self, manager, session, token_response, clock):
        session.post.side_effect = [token_response("AT1", 3600), token_response("AT2", 3600)]
        manager.get_access_token()
        first_assertion = posted_form(session, 0)["assertion"]
        clock.advance(3_600_000 - BUFFER_MS)

        assert manager.get_access_token() == "AT2"
        assert session.post.call_count == 2
        assert posted_form(session, 1)["assertion"] != first_assertion
        assert manager.state.expires_at > clock.now

    def test_rejected_assertion_raises_token_exchange_error(self, manager, session, make_response):
        session.post.return_value = make_response(
            400, {"error": "invalid_grant", "error_description": "Invalid JWT Signature."}
        )

        with pytest.raises(TokenExchangeError) as exc_info:
            manager.get_access_token()

        assert exc_info.value.status_code == 400
        assert "invalid_grant" in exc_info.value.body
        assert "Invalid JWT Signature." in exc_info.value.message
        assert session.post.call_count == 1

    def test_network_failure_raises_token_exchange_error(self, manager, session):
        session.post.side_effect = requests.exceptions.ConnectTimeout("timed out")

        with pytest.raises(TokenExchangeError) as exc_info:
            manager.get_access_token()
        assert exc_info.value.status_code is None

    def test_response_without_access_token(self, manager, session, make_response):
        session.post.return_value = make_response(200, {"expires_in": 3600})
        with pytest.raises(TokenExchangeError, match="no access_token"):
            manager.get_access_token()

    def test_fake_key_fails_before_network(self, service_account_config, fake_private_key, session, clock):
        config = service_account_config.model_copy(update={"private_key": fake_private_key})
        manager = ServiceAccountTokenManager(config, session=session, clock=clock)

        with pytest.raises(KeyImportError):
            manager.get_access_token()
        session.post.assert_not_called()

    def test_incomplete_config_raises_not_configured(self, session, clock):
        config = ServiceAccountConfig(
            service_account_email="", private_key="", project_id="", folder_id=""
        )
        manager = ServiceAccountTokenManager(config, session=session, clock=clock)

        assert manager.is_configured() is False
        with pytest.raises(NotConfiguredError):
            manager.get_access_token()
        session.post.assert_not_called()


class TestUserAuthorization:
    """Tests for initiating the flow and exchanging the code."""

    @pytest.fixture
    def manager(self, store, oauth_config, session, clock):
        return UserTokenManager(store, oauth_config, session=session, clock=clock)

    def test_authorization_url(self, manager, oauth_config):
        url = urlparse(manager.authorization_url())
        params = {k: v[0] for k, v in parse_qs(url.query).items()}

        assert f"{url.scheme}://{url.netloc}{url.path}" == "https://accounts.google.com/o/oauth2/v2/auth"
        assert params == {
            "client_id": oauth_config.client_id,
            "redirect_uri": oauth_config.redirect_uri,
            "response_type": "code",
            "scope": "https://www.googleapis.com/auth/drive.file",
            "access_type": "offline",
            "prompt": "consent",
        }

    def test_authorization_url_with_state(self, manager):
        params = parse_qs(urlparse(manager.authorization_url(state="abc")).query)
        assert params["state"] == ["abc"]

    def test_authorization_url_requires_client_id(self, store, session):
        manager = UserTokenManager(store, None, session=session)
        with pytest.raises(NotConfiguredError):
            manager.authorization_url()

    def test_exchange_code_stores_and_persists(self, manager, store, session, token_response, clock):
        session.post.return_value = token_response("AT1", 3600, refresh_token="RT1")

        state = manager.exchange_code("CODE1")

        assert state == TokenState(access_token="AT1", refresh_token="RT1", expires_at=clock.now + 3_600_000)
        assert manager.is_authenticated()
        assert json.loads(store.get(TOKENS_KEY)) == {
            "accessToken": "AT1",
            "refreshToken": "RT1",
            "expiresAt": clock.now + 3_600_000,
        }
        form = posted_form(session)
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "CODE1"
        assert form["client_secret"] == "shh"
        assert form["redirect_uri"] == "https://pizzart.example/auth/callback"

    def test_code_replay_fails(self, manager, session, token_response):
        session.post.return_value = token_response("AT1", 3600, refresh_token="RT1")
        manager.exchange_code("CODE1")

        with pytest.raises(TokenExchangeError, match="already been used"):
            manager.exchange_code("CODE1")
        assert session.post.call_count == 1

    def test_rejected_code_raises(self, manager, session, make_response):
        session.post.return_value = make_response(
            400, {"error": "invalid_grant", "error_description": "Malformed auth code."}
        )

        with pytest.raises(TokenExchangeError) as exc_info:
            manager.exchange_code("BAD")
        assert exc_info.value.status_code == 400
        assert not manager.is_authenticated()

    def test_exchange_without_refresh_token_fails(self, manager, store, session, token_response):
        session.post.return_value = token_response("AT1", 3600)

        with pytest.raises(TokenExchangeError, match="refresh token"):
            manager.exchange_code("CODE1")
        assert not manager.is_authenticated()
        assert store.get(TOKENS_KEY) is None

    def test_exchange_without_refresh_token_keeps_previous(self, manager, session, token_response):
        session.post.return_value = token_response("AT1", 3600, refresh_token="RT1")
        manager.exchange_code("CODE1")

        session.post.return_value = token_response("AT2", 3600)
        state = manager.exchange_code("CODE2")

        assert state.access_token == "AT2"
        assert state.refresh_token == "RT1"

    def test_exchange_requires_configuration(self, store, session):
        manager = UserTokenManager(store, None, session=session)
        with pytest.raises(NotConfiguredError):
            manager.exchange_code("CODE1")
        session.post.assert_not_called()

    def test_complete_authorization_success(self, manager, session, token_response):
        session.post.return_value = token_response("AT1", 3600, refresh_token="RT1")
        outcome = manager.complete_authorization("CODE1")
        assert outcome.success is True
        assert outcome.error is None

    def test_complete_authorization_reports_failure(self, manager, session, make_response):
        session.post.return_value = make_response(400, {"error": "invalid_grant"})
        outcome = manager.complete_authorization("CODE1")
        assert outcome.success is False
        assert "invalid_grant" in outcome.error

    def test_complete_authorization_without_refresh_token(self, manager, session, token_response):
        session.post.return_value = token_response("AT1", 3600)
        outcome = manager.complete_authorization("CODE1")
        assert outcome.success is False
        assert "refresh token" in outcome.error
        assert not manager.is_authenticated()

    def test_complete_authorization_denied(self, manager, session):
        outcome = manager.complete_authorization(None, error="access_denied")
        assert outcome.success is False
        assert "access_denied" in outcome.error
        session.post.assert_not_called()

    def test_complete_authorization_missing_code(self, manager, session):
        outcome = manager.complete_authorization("")
        assert outcome.success is False
        session.post.assert_not_called()


class TestUserRefresh:
    """Tests for refresh-token renewal."""

    @pytest.fixture
    def manager(self, authenticated_store, oauth_config, session, clock):
        return UserTokenManager(authenticated_store, oauth_config, session=session, clock=clock)

    def test_loads_state_from_store(self, manager):
        assert manager.is_authenticated()
        assert manager.state.refresh_token == "RT0"

    def test_fresh_token_is_returned_without_network(self, manager, session):
        assert manager.get_access_token() == "AT0"
        session.post.assert_not_called()

    def test_stale_token_is_refreshed_in_place(self, manager, session, token_response, clock, authenticated_store):
        state_before = manager.state
        clock.advance(3_600_000 - BUFFER_MS)
        session.post.return_value = token_response("AT1", 3600)

        assert manager.get_access_token() == "AT1"

        assert manager.state is state_before
        assert manager.state.refresh_token == "RT0"
        assert manager.state.expires_at == clock.now + 3_600_000
        assert json.loads(authenticated_store.get(TOKENS_KEY))["accessToken"] == "AT1"
        form = posted_form(session)
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "RT0"

    def test_refresh_twice_keeps_refresh_token(self, manager, session, token_response, clock):
        session.post.side_effect = [token_response("AT1", 3600), token_response("AT2", 3600)]

        first = manager.refresh().expires_at
        clock.advance(1000)
        second = manager.refresh().expires_at

        assert second >= first
        assert manager.state.refresh_token == "RT0"
        assert session.post.call_count == 2

    def test_rotated_refresh_token_replaces_stored(self, manager, session, token_response):
        session.post.return_value = token_response("AT1", 3600, refresh_token="RT1")
        manager.refresh()
        assert manager.state.refresh_token == "RT1"

    def test_revoked_refresh_token_requires_reauthentication(
        self, manager, session, make_response, clock, authenticated_store
    ):
        clock.advance(3_600_000)
        session.post.return_value = make_response(
            400, {"error": "invalid_grant", "error_description": "Token has been expired or revoked."}
        )

        with pytest.raises(ReauthenticationRequiredError):
            manager.get_access_token()

        assert manager.state is None
        assert manager.is_authenticated() is False
        assert authenticated_store.get(TOKENS_KEY) is None
        with pytest.raises(NotAuthenticatedError):
            manager.get_access_token()
        assert session.post.call_count == 1

    def test_server_error_is_not_reauthentication(self, manager, session, make_response, clock):
        clock.advance(3_600_000)
        session.post.return_value = make_response(503, {"error": "backendError"})

        with pytest.raises(TokenExchangeError) as exc_info:
            manager.get_access_token()

        assert not isinstance(exc_info.value, ReauthenticationRequiredError)
        assert exc_info.value.status_code == 503
        assert manager.is_authenticated()

    def test_no_refresh_token_raises_without_network(self, store, oauth_config, session, clock):
        manager = UserTokenManager(store, oauth_config, session=session, clock=clock)

        with pytest.raises(NotAuthenticatedError):
            manager.get_access_token()
        session.post.assert_not_called()

    def test_logout_clears_memory_and_store(self, manager, authenticated_store):
        manager.logout()
        assert manager.state is None
        assert authenticated_store.get(TOKENS_KEY) is None


class TestUserConfiguration:
    """Tests for client credentials held in the store."""

    def test_stored_credentials_override_settings(self, store, oauth_config, session):
        store.set(CLIENT_ID_KEY, "admin-client")
        store.set(CLIENT_SECRET_KEY, "admin-secret")

        manager = UserTokenManager(store, oauth_config, session=session)

        assert manager.config.client_id == "admin-client"
        assert manager.config.client_secret == "admin-secret"
        assert manager.config.redirect_uri == oauth_config.redirect_uri

    def test_configure_persists(self, store, session):
        manager = UserTokenManager(
            store,
            OAuthClientConfig(client_id="", client_secret="", redirect_uri="https://pizzart.example/cb"),
            session=session,
        )
        assert not manager.is_configured()

        manager.configure("new-client", "new-secret")

        assert manager.is_configured()
        assert store.get(CLIENT_ID_KEY) == "new-client"
        assert store.get(CLIENT_SECRET_KEY) == "new-secret"

    def test_unreadable_stored_tokens_are_ignored(self, store, oauth_config, session):
        store.set(TOKENS_KEY, "{not json")
        manager = UserTokenManager(store, oauth_config, session=session)
        assert manager.state is None
        assert not manager.is_authenticated()

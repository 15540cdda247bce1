"""
Tests for provider connectors and the OAuth coordinator, with provider
endpoints served by httpx.MockTransport.
"""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from connectors.oauth import OAuthCoordinator
from connectors.registry import ConnectorRegistry
from utils.errors import OAuthExchangeError, ReauthRequiredError, ValidationError

GH_TOKEN = "https://github.com/login/oauth/access_token"
GOOGLE_TOKEN = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE = "https://oauth2.googleapis.com/revoke"
SLACK_TOKEN = "https://slack.com/api/oauth.v2.access"
NOTION_TOKEN = "https://api.notion.com/v1/oauth/token"


@pytest.fixture
def oauth(test_settings, provider_api) -> OAuthCoordinator:
    registry = ConnectorRegistry(test_settings, transport=provider_api.transport)
    registry.discover()
    return OAuthCoordinator(registry)


def _query(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


class TestAuthorizationUrl:
    def test_common_parameters(self, oauth):
        url = oauth.get_authorization_url("github", "s" * 64)
        assert url.startswith("https://github.com/login/oauth/authorize?")
        q = _query(url)
        assert q["client_id"] == "gh-id"
        assert q["redirect_uri"] == "http://api.test/api/v1/integrations/github/callback"
        assert q["response_type"] == "code"
        assert q["state"] == "s" * 64
        assert q["scope"] == "repo read:user read:org"

    def test_google_requests_offline_consent(self, oauth):
        q = _query(oauth.get_authorization_url("calendar", "st"))
        assert q["access_type"] == "offline"
        assert q["prompt"] == "consent"
        assert "calendar.readonly" in q["scope"]

    def test_slack_uses_user_scope(self, oauth):
        q = _query(oauth.get_authorization_url("slack", "st"))
        assert "scope" not in q
        assert q["user_scope"].split(",")[0] == "channels:history"

    def test_notion_owner_user(self, oauth):
        q = _query(oauth.get_authorization_url("notion", "st"))
        assert q["owner"] == "user"

    def test_unknown_provider(self, oauth):
        with pytest.raises(ValidationError):
            oauth.get_authorization_url("dropbox", "st")


class TestCodeExchange:
    @pytest.mark.asyncio
    async def test_github_exchange(self, oauth, provider_api):
        provider_api.add("POST", GH_TOKEN, json_body={"access_token": "gho_1", "scope": "repo", "token_type": "bearer"})
        tokens = await oauth.exchange_code_for_tokens("github", "the-code")

        assert tokens.access_token == "gho_1"
        assert tokens.refresh_token is None
        assert tokens.expires_at is None
        form = provider_api.form(provider_api.requests[0])
        assert form["code"] == "the-code"
        assert form["client_secret"] == "gh-secret"
        assert "grant_type" not in form

    @pytest.mark.asyncio
    async def test_google_exchange_sets_expiry(self, oauth, provider_api):
        provider_api.add(
            "POST", GOOGLE_TOKEN,
            json_body={"access_token": "ya29", "refresh_token": "1//r", "expires_in": 3599, "scope": "cal"},
        )
        tokens = await oauth.exchange_code_for_tokens("calendar", "c")
        assert tokens.refresh_token == "1//r"
        assert tokens.expires_at is not None
        assert provider_api.form(provider_api.requests[0])["grant_type"] == "authorization_code"

    @pytest.mark.asyncio
    async def test_notion_uses_basic_auth_json(self, oauth, provider_api):
        provider_api.add("POST", NOTION_TOKEN, json_body={"access_token": "secret_n", "workspace_id": "w"})
        tokens = await oauth.exchange_code_for_tokens("notion", "c")
        request = provider_api.requests[0]
        assert tokens.access_token == "secret_n"
        assert request.headers["Authorization"].startswith("Basic ")
        assert provider_api.json(request)["grant_type"] == "authorization_code"

    @pytest.mark.asyncio
    async def test_slack_user_token(self, oauth, provider_api):
        provider_api.add(
            "POST", SLACK_TOKEN,
            json_body={"ok": True, "access_token": "xoxb-bot", "authed_user": {"access_token": "xoxp-user", "scope": "channels:read"}},
        )
        tokens = await oauth.exchange_code_for_tokens("slack", "c")
        assert tokens.access_token == "xoxp-user"

    @pytest.mark.asyncio
    async def test_http_error_carries_status_and_body(self, oauth, provider_api):
        provider_api.add("POST", GOOGLE_TOKEN, status=400, json_body={"error": "invalid_grant"})
        with pytest.raises(OAuthExchangeError) as exc_info:
            await oauth.exchange_code_for_tokens("calendar", "bad")
        assert exc_info.value.status == 400
        assert "invalid_grant" in exc_info.value.body
        assert len(provider_api.requests) == 1

    @pytest.mark.asyncio
    async def test_error_in_success_body(self, oauth, provider_api):
        provider_api.add(
            "POST", GH_TOKEN,
            json_body={"error": "bad_verification_code", "error_description": "The code is incorrect"},
        )
        with pytest.raises(OAuthExchangeError, match="The code is incorrect"):
            await oauth.exchange_code_for_tokens("github", "bad")

    @pytest.mark.asyncio
    async def test_slack_not_ok(self, oauth, provider_api):
        provider_api.add("POST", SLACK_TOKEN, json_body={"ok": False, "error": "invalid_code"})
        with pytest.raises(OAuthExchangeError, match="invalid_code"):
            await oauth.exchange_code_for_tokens("slack", "bad")

    @pytest.mark.asyncio
    async def test_network_failure(self, oauth, provider_api):
        def boom(request):
            raise httpx.ConnectError("unreachable", request=request)

        provider_api.add("POST", GH_TOKEN, boom)
        with pytest.raises(OAuthExchangeError) as exc_info:
            await oauth.exchange_code_for_tokens("github", "c")
        assert exc_info.value.status is None


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_unsupported(self, oauth, provider_api):
        with pytest.raises(ReauthRequiredError):
            await oauth.refresh_access_token("github", "r")
        assert provider_api.requests == []

    @pytest.mark.asyncio
    async def test_refresh_without_token(self, oauth):
        with pytest.raises(ReauthRequiredError):
            await oauth.refresh_access_token("calendar", None)

    @pytest.mark.asyncio
    async def test_refresh_keeps_previous_refresh_token(self, oauth, provider_api):
        provider_api.add("POST", GOOGLE_TOKEN, json_body={"access_token": "new", "expires_in": 3600})
        tokens = await oauth.refresh_access_token("calendar", "old-refresh")
        assert tokens.access_token == "new"
        assert tokens.refresh_token == "old-refresh"
        form = provider_api.form(provider_api.requests[0])
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "old-refresh"

    @pytest.mark.asyncio
    async def test_refresh_rotation(self, oauth, provider_api):
        provider_api.add("POST", GOOGLE_TOKEN, json_body={"access_token": "new", "refresh_token": "rotated", "expires_in": 60})
        tokens = await oauth.refresh_access_token("calendar", "old")
        assert tokens.refresh_token == "rotated"

    @pytest.mark.asyncio
    async def test_refresh_rejected(self, oauth, provider_api):
        provider_api.add("POST", GOOGLE_TOKEN, status=400, json_body={"error": "invalid_grant"})
        with pytest.raises(OAuthExchangeError):
            await oauth.refresh_access_token("calendar", "revoked")


class TestRevoke:
    @pytest.mark.asyncio
    async def test_github_revoke(self, oauth, provider_api):
        provider_api.add("DELETE", "https://api.github.com/applications/gh-id/token", status=204)
        assert await oauth.revoke_token("github", "gho_1") is True
        request = provider_api.requests[0]
        assert request.headers["Authorization"].startswith("Basic ")
        assert provider_api.json(request) == {"access_token": "gho_1"}

    @pytest.mark.asyncio
    async def test_google_revoke(self, oauth, provider_api):
        provider_api.add("POST", GOOGLE_REVOKE, status=200)
        assert await oauth.revoke_token("calendar", "ya29") is True

    @pytest.mark.asyncio
    async def test_notion_has_no_revocation(self, oauth, provider_api):
        assert await oauth.revoke_token("notion", "t") is False
        assert provider_api.requests == []

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self, oauth, provider_api):
        def boom(request):
            raise httpx.ConnectError("down", request=request)

        provider_api.add("POST", GOOGLE_REVOKE, boom)
        assert await oauth.revoke_token("calendar", "t") is False

    @pytest.mark.asyncio
    async def test_rejection_reports_false(self, oauth, provider_api):
        provider_api.add("POST", "https://slack.com/api/auth.revoke", json_body={"ok": False, "error": "invalid_auth"})
        assert await oauth.revoke_token("slack", "t") is False

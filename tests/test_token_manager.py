"""
Tests for the credential vault.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from database.models import Credential, ProviderConnection
from utils.errors import DecryptionError
from utils.schemas import OAuthTokens


def _tokens(access="access-1", refresh="refresh-1", expires_in=3600):
    return OAuthTokens(
        access_token=access,
        refresh_token=refresh,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        scope="repo read:user",
    )


class TestCredentialVault:
    @pytest.mark.asyncio
    async def test_store_then_get(self, services, user_id):
        tokens = _tokens()
        await services.vault.store_token(user_id, "github", tokens)

        loaded = await services.vault.get_token(user_id, "github")
        assert loaded.access_token == "access-1"
        assert loaded.refresh_token == "refresh-1"
        assert loaded.scope == "repo read:user"
        assert abs((loaded.expires_at - tokens.expires_at).total_seconds()) < 1

    @pytest.mark.asyncio
    async def test_tokens_are_encrypted_at_rest(self, services, session_factory, user_id):
        await services.vault.store_token(user_id, "github", _tokens())
        async with session_factory() as session:
            row = (await session.execute(select(Credential))).scalar_one()
        assert row.access_token != "access-1"
        assert "access-1" not in row.access_token
        assert "refresh-1" not in row.refresh_token

    @pytest.mark.asyncio
    async def test_store_is_an_upsert(self, services, session_factory, user_id):
        await services.vault.store_token(user_id, "github", _tokens("a1"))
        await services.vault.store_token(user_id, "github", _tokens("a2", refresh=None))

        async with session_factory() as session:
            count = (await session.execute(select(func.count()).select_from(Credential))).scalar_one()
        assert count == 1
        loaded = await services.vault.get_token(user_id, "github")
        assert loaded.access_token == "a2"
        assert loaded.refresh_token is None

    @pytest.mark.asyncio
    async def test_update_rewrites_existing(self, services, user_id):
        await services.vault.store_token(user_id, "calendar", _tokens("old"))
        assert await services.vault.update_token(user_id, "calendar", _tokens("new", refresh="r2")) is True
        loaded = await services.vault.get_token(user_id, "calendar")
        assert loaded.access_token == "new"
        assert loaded.refresh_token == "r2"

    @pytest.mark.asyncio
    async def test_update_never_inserts_or_reconnects(self, services, session_factory, user_id):
        await services.vault.store_token(user_id, "calendar", _tokens())
        await services.vault.delete_token(user_id, "calendar")

        assert await services.vault.update_token(user_id, "calendar", _tokens("late")) is False

        async with session_factory() as session:
            count = (await session.execute(select(func.count()).select_from(Credential))).scalar_one()
        assert count == 0
        assert await services.vault.is_connected(user_id, "calendar") is False

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, services, user_id):
        assert await services.vault.get_token(user_id, "slack") is None

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, services, user_id):
        await services.vault.store_token(user_id, "notion", _tokens())
        assert await services.vault.delete_token(user_id, "notion") is True
        assert await services.vault.delete_token(user_id, "notion") is False
        assert await services.vault.get_token(user_id, "notion") is None
        assert await services.vault.is_connected(user_id, "notion") is False

    @pytest.mark.asyncio
    async def test_connection_tracking(self, services, user_id):
        await services.vault.store_token(user_id, "github", _tokens())
        await services.vault.store_token(user_id, "slack", _tokens())

        assert await services.vault.is_connected(user_id, "github")
        assert await services.vault.list_connected_providers(user_id) == ["github", "slack"]

        await services.vault.delete_token(user_id, "github")
        assert await services.vault.list_connected_providers(user_id) == ["slack"]

        await services.vault.store_token(user_id, "github", _tokens())
        assert await services.vault.is_connected(user_id, "github")

    @pytest.mark.asyncio
    async def test_list_users_with_connections(self, services):
        alice, bob = "00000000-0000-0000-0000-00000000000a", "00000000-0000-0000-0000-00000000000b"
        await services.vault.store_token(alice, "github", _tokens())
        await services.vault.store_token(bob, "github", _tokens())
        await services.vault.store_token(bob, "notion", _tokens())
        await services.vault.delete_token(alice, "github")

        assert await services.vault.list_users_with_connections(["github"]) == [(bob, "github")]
        assert await services.vault.list_users_with_connections(["github", "notion"]) == [
            (bob, "github"),
            (bob, "notion"),
        ]
        assert await services.vault.list_users_with_connections([]) == []

    @pytest.mark.asyncio
    async def test_ciphertext_moved_between_rows_fails(self, services, session_factory, user_id):
        await services.vault.store_token(user_id, "github", _tokens("gh-token"))
        await services.vault.store_token(user_id, "slack", _tokens("slack-token"))

        async with session_factory() as session:
            rows = {r.provider: r for r in (await session.execute(select(Credential))).scalars()}
            rows["slack"].access_token = rows["github"].access_token
            await session.commit()

        with pytest.raises(DecryptionError):
            await services.vault.get_token(user_id, "slack")

    @pytest.mark.asyncio
    async def test_delete_clears_last_sync(self, services, session_factory, user_id):
        await services.vault.store_token(user_id, "github", _tokens())
        async with session_factory() as session:
            conn = (await session.execute(select(ProviderConnection))).scalar_one()
            conn.last_sync_at = datetime.now(timezone.utc)
            await session.commit()

        await services.vault.delete_token(user_id, "github")
        async with session_factory() as session:
            conn = (await session.execute(select(ProviderConnection))).scalar_one()
        assert conn.connected is False
        assert conn.last_sync_at is None

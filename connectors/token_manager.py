"""
Credential vault — store / load / delete per-user OAuth credentials.

This is the single interface the rest of the service uses for credentials.
Tokens are encrypted with ``TokenCipher`` before they reach the database and
decrypted only on the way out; plaintext never lands in a row.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.encryption import TokenCipher
from database.helpers import to_uuid, as_utc, ensure_user_exists, get_connection
from database.models import Credential, ProviderConnection
from utils.schemas import OAuthTokens

logger = logging.getLogger(__name__)


class CredentialVault:
    def __init__(self, cipher: TokenCipher, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._cipher = cipher
        self._session_factory = session_factory

    # ── internals ──────────────────────────────────────────────────────

    def _encrypt(self, value: str, user_id: str, provider: str, field: str) -> str:
        return self._cipher.encrypt(value, user_id=str(user_id), provider=provider, field=field)

    def _decrypt(self, value: str, user_id: str, provider: str, field: str) -> str:
        return self._cipher.decrypt(value, user_id=str(user_id), provider=provider, field=field)

    @staticmethod
    async def _find(session: AsyncSession, user_id: str, provider: str) -> Optional[Credential]:
        result = await session.execute(
            select(Credential).where(
                Credential.user_id == to_uuid(user_id),
                Credential.provider == provider,
            )
        )
        return result.scalar_one_or_none()

    def _apply(self, cred: Credential, user_id: str, provider: str, tokens: OAuthTokens) -> None:
        uid = str(to_uuid(user_id))
        cred.access_token = self._encrypt(tokens.access_token, uid, provider, "access_token")
        cred.refresh_token = (
            self._encrypt(tokens.refresh_token, uid, provider, "refresh_token")
            if tokens.refresh_token
            else None
        )
        cred.expires_at = tokens.expires_at
        cred.scope = tokens.scope
        cred.token_type = tokens.token_type
        cred.updated_at = datetime.now(timezone.utc)

    # ── public API ─────────────────────────────────────────────────────

    async def store_token(
        self,
        user_id: str,
        provider: str,
        tokens: OAuthTokens,
        *,
        db_session: Optional[AsyncSession] = None,
    ) -> None:
        """
        Encrypt and upsert the single credential row for (user, provider).

        Also marks the provider connection as connected.  Safe to repeat.
        """
        own_session = db_session is None
        session = db_session or self._session_factory()
        try:
            await ensure_user_exists(session, user_id)
            cred = await self._find(session, user_id, provider)
            if cred is None:
                cred = Credential(user_id=to_uuid(user_id), provider=provider)
                session.add(cred)
            self._apply(cred, user_id, provider, tokens)

            conn = await get_connection(session, user_id, provider)
            if conn is None:
                session.add(ProviderConnection(user_id=to_uuid(user_id), provider=provider, connected=True))
            elif not conn.connected:
                conn.connected = True
                conn.connected_at = datetime.now(timezone.utc)

            if own_session:
                await session.commit()
            else:
                await session.flush()
            logger.info("Stored %s credential for user %s", provider, user_id)
        except Exception:
            if own_session:
                await session.rollback()
            raise
        finally:
            if own_session:
                await session.close()

    async def update_token(self, user_id: str, provider: str, tokens: OAuthTokens) -> bool:
        """Rewrite an existing credential in place after a refresh.

        Never inserts a row or touches the connection flag; returns False
        when the credential has been deleted in the meantime.
        """
        async with self._session_factory() as session:
            cred = await self._find(session, user_id, provider)
            if cred is None:
                logger.info("Dropped refreshed %s token for user %s: credential gone", provider, user_id)
                return False
            self._apply(cred, user_id, provider, tokens)
            await session.commit()
            logger.info("Updated %s credential for user %s", provider, user_id)
            return True

    async def get_token(
        self,
        user_id: str,
        provider: str,
        *,
        db_session: Optional[AsyncSession] = None,
    ) -> Optional[OAuthTokens]:
        """Return decrypted tokens, or None when no credential exists.

        Raises ``DecryptionError`` if a stored value fails authentication.
        """
        own_session = db_session is None
        session = db_session or self._session_factory()
        try:
            cred = await self._find(session, user_id, provider)
            if cred is None:
                return None
            uid = str(cred.user_id)
            return OAuthTokens(
                access_token=self._decrypt(cred.access_token, uid, provider, "access_token"),
                refresh_token=(
                    self._decrypt(cred.refresh_token, uid, provider, "refresh_token")
                    if cred.refresh_token
                    else None
                ),
                expires_at=as_utc(cred.expires_at),
                scope=cred.scope or "",
                token_type=cred.token_type or "Bearer",
            )
        finally:
            if own_session:
                await session.close()

    async def delete_token(
        self,
        user_id: str,
        provider: str,
        *,
        db_session: Optional[AsyncSession] = None,
    ) -> bool:
        """Delete the credential and mark the connection disconnected.

        Idempotent; returns whether a credential existed.
        """
        own_session = db_session is None
        session = db_session or self._session_factory()
        try:
            cred = await self._find(session, user_id, provider)
            if cred is not None:
                await session.delete(cred)
            conn = await get_connection(session, user_id, provider)
            if conn is not None:
                conn.connected = False
                conn.last_sync_at = None
            if own_session:
                await session.commit()
            else:
                await session.flush()
            if cred is not None:
                logger.info("Deleted %s credential for user %s", provider, user_id)
            return cred is not None
        except Exception:
            if own_session:
                await session.rollback()
            raise
        finally:
            if own_session:
                await session.close()

    async def is_connected(self, user_id: str, provider: str) -> bool:
        async with self._session_factory() as session:
            conn = await get_connection(session, user_id, provider)
            return bool(conn and conn.connected)

    async def list_connected_providers(self, user_id: str) -> List[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProviderConnection.provider).where(
                    ProviderConnection.user_id == to_uuid(user_id),
                    ProviderConnection.connected.is_(True),
                )
            )
            return sorted(result.scalars().all())

    async def list_users_with_connections(self, providers: Iterable[str]) -> List[Tuple[str, str]]:
        """Return (user_id, provider) pairs eligible for a scheduled sync."""
        providers = list(providers)
        if not providers:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProviderConnection.user_id, ProviderConnection.provider)
                .join(
                    Credential,
                    (Credential.user_id == ProviderConnection.user_id)
                    & (Credential.provider == ProviderConnection.provider),
                )
                .where(
                    ProviderConnection.connected.is_(True),
                    ProviderConnection.provider.in_(providers),
                )
                .order_by(ProviderConnection.user_id, ProviderConnection.provider)
            )
            return [(str(uid), provider) for uid, provider in result.all()]

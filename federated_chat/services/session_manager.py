"""
Federated credential sessions: sign-in, callback completion and refresh.

States per owner::

    NoSession -> PendingAuthorization -> Authenticated -> Expired -> Authenticated

``PendingAuthorization`` falls back to ``NoSession`` when the state entry's TTL
passes. Session records are written only after the whole trust exchange has
succeeded.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

from federated_chat.clients.oidc import OIDCEndpoints, TokenSet, scopes_for_provider
from federated_chat.clients.stores import SessionStore
from federated_chat.core.config import OIDCSettings, SessionSettings
from federated_chat.core.exceptions import SessionExpired
from federated_chat.models import (
    OAuthStateEntry,
    Session,
    SessionCredentials,
    StoredSessionRecord,
    TemporaryCredentials,
    utcnow,
)
from federated_chat.services.encryption import EncryptionProvider

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    async def discover_endpoints(self, issuer_url: str) -> OIDCEndpoints:
        ...

    def build_authorization_url(
        self,
        endpoints: OIDCEndpoints,
        client_id: str,
        redirect_url: str,
        state: str,
        scopes: str,
    ) -> str:
        ...

    async def exchange_code_for_tokens(
        self,
        endpoints: OIDCEndpoints,
        code: str,
        client_id: str,
        client_secret: str,
        redirect_url: str,
    ) -> TokenSet:
        ...

    async def refresh_tokens(
        self,
        endpoints: OIDCEndpoints,
        refresh_token: str,
        client_id: str,
        client_secret: str,
        *,
        retain_previous: bool = True,
    ) -> TokenSet:
        ...


class TokenExchanger(Protocol):
    async def exchange(self, id_token: str) -> TemporaryCredentials:
        ...


class ClientSecretSource(Protocol):
    async def get_client_secret(self) -> str:
        ...


class SessionManager:
    """Owns the OAuth flow and the encrypted credential session of each owner."""

    def __init__(
        self,
        *,
        store: SessionStore,
        identity_provider: IdentityProvider,
        token_exchange: TokenExchanger,
        encryption: EncryptionProvider,
        client_secrets: ClientSecretSource,
        oidc_settings: OIDCSettings,
        session_settings: SessionSettings,
        key_id: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._idp = identity_provider
        self._exchange = token_exchange
        self._encryption = encryption
        self._secrets = client_secrets
        self._oidc = oidc_settings
        self._skew = timedelta(seconds=session_settings.expiry_skew_seconds)
        self._record_ttl = session_settings.record_ttl_seconds
        self._key_id = key_id
        self._clock = clock

    @property
    def scopes(self) -> str:
        return self._oidc.scopes or scopes_for_provider(self._oidc.idp_name)

    async def start_session(self, owner_id: str) -> str:
        """Persist a fresh state entry and return the provider sign-in URL."""
        state = secrets.token_hex(16)
        now = self._clock()
        entry = OAuthStateEntry(
            state=state,
            owner_id=owner_id,
            created_at=now,
            ttl=int(now.timestamp()) + self._oidc.state_ttl_seconds,
        )
        await asyncio.to_thread(self._store.put_state_entry, entry)
        logger.info("Started sign-in for owner %s", owner_id)

        endpoints = await self._idp.discover_endpoints(self._oidc.issuer_url)
        return self._idp.build_authorization_url(
            endpoints,
            self._oidc.client_id,
            str(self._oidc.redirect_url),
            state,
            self.scopes,
        )

    async def finish_session(self, code: str, state: str) -> None:
        """Complete the callback: consume the state, exchange, persist the session."""
        entry = await asyncio.to_thread(self._store.get_and_consume_state_entry, state)
        owner_id = entry.owner_id

        client_secret = await self._secrets.get_client_secret()
        endpoints = await self._idp.discover_endpoints(self._oidc.issuer_url)
        try:
            tokens = await self._idp.exchange_code_for_tokens(
                endpoints,
                code,
                self._oidc.client_id,
                client_secret,
                str(self._oidc.redirect_url),
            )
            credentials = await self._exchange.exchange(tokens.id_token)
        except Exception:
            logger.error("Sign-in exchange failed for owner %s", owner_id)
            raise

        session = self._build_session(owner_id, credentials, tokens.refresh_token)
        await self._save(session)
        logger.info("Session established for owner %s", owner_id)

    async def get_session_credentials(self, owner_id: str) -> SessionCredentials:
        """Return usable credentials, refreshing an expired session when possible."""
        session = await self._load(owner_id)
        if not session.has_expired(self._clock()):
            return session.credentials()

        if session.refresh_token is None:
            logger.info("Session expired without refresh token for owner %s", owner_id)
            raise SessionExpired(f"Session expired for owner {owner_id}.")

        logger.info("Refreshing session for owner %s", owner_id)
        client_secret = await self._secrets.get_client_secret()
        endpoints = await self._idp.discover_endpoints(self._oidc.issuer_url)
        try:
            tokens = await self._idp.refresh_tokens(
                endpoints,
                session.refresh_token,
                self._oidc.client_id,
                client_secret,
                retain_previous=self._oidc.retain_refresh_token,
            )
            credentials = await self._exchange.exchange(tokens.id_token)
        except Exception:
            logger.error("Session refresh failed for owner %s", owner_id)
            raise

        refreshed = self._build_session(owner_id, credentials, tokens.refresh_token)
        await self._save(refreshed)
        return refreshed.credentials()

    def _build_session(
        self,
        owner_id: str,
        credentials: TemporaryCredentials,
        refresh_token: Optional[str],
    ) -> Session:
        return Session(
            owner_id=owner_id,
            access_key_id=credentials.access_key_id,
            secret_access_key=credentials.secret_access_key,
            session_token=credentials.session_token,
            expiration=credentials.expiration - self._skew,
            refresh_token=refresh_token,
        )

    async def _save(self, session: Session) -> None:
        encrypted = await asyncio.to_thread(
            self._encryption.encrypt,
            session.to_json().encode("utf-8"),
            self._key_id,
            session.owner_id,
        )
        now = self._clock()
        record = StoredSessionRecord(
            owner_id=session.owner_id,
            encrypted_creds=encrypted,
            expiration=session.expiration,
            timestamp=now,
            ttl=int(now.timestamp()) + self._record_ttl,
        )
        await asyncio.to_thread(self._store.put_session, record)

    async def _load(self, owner_id: str) -> Session:
        record = await asyncio.to_thread(self._store.get_session, owner_id)
        plaintext = await asyncio.to_thread(
            self._encryption.decrypt, record.encrypted_creds, self._key_id, owner_id
        )
        return Session.from_json(plaintext)


__all__ = ["SessionManager"]

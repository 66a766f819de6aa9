# Token refresh gate - hands out a valid login, refreshing it when expired.
# Created: 2026-10-07

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from datetime import timedelta
from typing import TYPE_CHECKING

from melodex.auth.credential_store import CredentialStore
from melodex.auth.errors import ExchangeError, NotLoggedInError, RefreshFailedError
from melodex.auth.exchanger import TokenExchanger
from melodex.auth.models import LoginRecord, utc_now
from melodex.auth.providers import PROVIDERS, ProviderConfig, get_provider

if TYPE_CHECKING:
    from melodex.config import OAuthClientConfig

logger = logging.getLogger(__name__)


class TokenRefreshGate:
    """Transparent refresh in front of the credential store.

    Refresh-token rotation: some providers return a new refresh token on
    every refresh, others keep the original. When the response carries no
    ``refresh_token`` the stored one is kept; when it carries one, it
    replaces the stored one.

    A failed refresh is not retried here. Callers should start a full
    reauthorization through ``AuthorizationStateMachine.start()``.

    Args:
        leeway: Treat tokens expiring within this window as already expired.
    """

    def __init__(
        self,
        store: CredentialStore,
        client_configs: Mapping[str, OAuthClientConfig],
        providers: Mapping[str, ProviderConfig] | None = None,
        exchanger: TokenExchanger | None = None,
        leeway: timedelta = timedelta(0),
    ):
        self.store = store
        self._client_configs = dict(client_configs)
        self._providers = dict(providers) if providers is not None else dict(PROVIDERS)
        self._exchanger = exchanger or TokenExchanger()
        self.leeway = leeway
        self._refresh_locks: dict[str, asyncio.Lock] = {}

    async def ensure_valid(self, platform: str) -> LoginRecord:
        """Return a LoginRecord whose access token has not expired.

        Concurrent calls for the same platform share one refresh: the later
        callers wait and then find the refreshed record in the store.

        Raises:
            NotLoggedInError: nothing stored for ``platform``, or it was
                logged out while the refresh was in flight.
            RefreshFailedError: the token was expired and could not be refreshed.
            StorageError: the credential file could not be read or written.
        """
        provider = get_provider(platform, self._providers)
        async with self._refresh_locks.setdefault(platform, asyncio.Lock()):
            record = self.store.get(platform)
            if record is None:
                raise NotLoggedInError(platform)

            if utc_now() + self.leeway < record.expiry_time:
                return record
            return await self._refresh(provider, record)

    async def _refresh(self, provider: ProviderConfig, record: LoginRecord) -> LoginRecord:
        platform = provider.name
        logger.info("Access token for %s expired at %s, refreshing", platform, record.expiry_time)
        if not record.refresh_token:
            raise RefreshFailedError(platform, "no refresh token stored")
        client = self._client_configs.get(platform)
        if client is None:
            raise RefreshFailedError(platform, "no client credentials configured")

        try:
            tokens = await self._exchanger.exchange_refresh(
                provider.token_url,
                client.client_id,
                client.client_secret,
                record.refresh_token,
                client_auth=provider.client_auth,
            )
        except ExchangeError as e:
            logger.warning("Token refresh failed for %s: %s", platform, e)
            raise RefreshFailedError(platform, str(e)) from e

        refreshed = record.with_tokens(tokens)
        stored = self.store.replace_if_unchanged(record, refreshed)
        if stored is None:
            logger.info("Logged out of %s during refresh, discarding new tokens", platform)
            raise NotLoggedInError(platform)
        if stored is not refreshed:
            logger.info("Login for %s changed during refresh, keeping the newer one", platform)
            return stored
        logger.info("Refreshed access token for %s", platform)
        return refreshed

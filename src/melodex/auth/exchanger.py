# Token Exchanger - authorization-code and refresh grants against a token endpoint.
# Created: 2026-10-05
#
# Every request is raced against a hard timeout (30 s by default) and the
# outcome is classified into TokenResponse or one ExchangeError subclass.

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from melodex.auth.errors import (
    ExchangeRejectedError,
    ExchangeTimedOutError,
    ExchangeTransportError,
    MalformedTokenResponseError,
)
from melodex.auth.models import TokenResponse, utc_now
from melodex.auth.providers import ClientAuthMethod

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
_MAX_ERROR_BODY = 2000


class TokenExchanger:
    """Talks to a provider's token endpoint (and profile endpoint).

    Args:
        timeout: Default per-request budget in seconds.
        transport: Optional httpx transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def exchange_code(
        self,
        token_endpoint: str,
        client_id: str,
        client_secret: str,
        code: str,
        redirect_uri: str,
        timeout: float | None = None,
        client_auth: ClientAuthMethod = ClientAuthMethod.BASIC,
    ) -> TokenResponse:
        """Exchange an authorization code for access + refresh tokens."""
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        }
        return await self._token_request(
            token_endpoint, client_id, client_secret, form, timeout, client_auth
        )

    async def exchange_refresh(
        self,
        token_endpoint: str,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        timeout: float | None = None,
        client_auth: ClientAuthMethod = ClientAuthMethod.BASIC,
    ) -> TokenResponse:
        """Get a new access token from a refresh token.

        ``TokenResponse.refresh_token`` is None when the provider did not
        issue a new refresh token; callers decide whether to keep the old one.
        """
        form = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        return await self._token_request(
            token_endpoint, client_id, client_secret, form, timeout, client_auth
        )

    async def fetch_profile(
        self, profile_url: str, access_token: str, timeout: float | None = None
    ) -> dict[str, Any]:
        """GET the signed-in user's profile as JSON."""
        budget = timeout if timeout is not None else self.timeout
        response = await self._send(
            "GET",
            profile_url,
            budget,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        data = self._json_body(response)
        if not isinstance(data, dict):
            raise MalformedTokenResponseError("Profile response is not a JSON object")
        return data

    # ------------------------------------------------------------------

    async def _token_request(
        self,
        token_endpoint: str,
        client_id: str,
        client_secret: str,
        form: dict[str, str],
        timeout: float | None,
        client_auth: ClientAuthMethod,
    ) -> TokenResponse:
        budget = timeout if timeout is not None else self.timeout
        auth: httpx.BasicAuth | None = None
        if client_auth is ClientAuthMethod.BASIC:
            auth = httpx.BasicAuth(client_id, client_secret)
        else:
            form = {**form, "client_id": client_id, "client_secret": client_secret}

        response = await self._send(
            "POST",
            token_endpoint,
            budget,
            data=form,
            auth=auth,
            headers={"Accept": "application/json"},
        )
        received_at = utc_now()
        data = self._json_body(response)
        try:
            tokens = TokenResponse.from_json(data, received_at=received_at)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            raise MalformedTokenResponseError(
                f"Token response is missing or has an invalid field: {e}"
            ) from e

        logger.debug(
            "%s grant succeeded at %s (expires %s)",
            form["grant_type"],
            token_endpoint,
            tokens.expiry_time.isoformat(),
        )
        return tokens

    async def _send(self, method: str, url: str, timeout: float, **kwargs: Any) -> httpx.Response:
        try:
            async with self._client(timeout) as client:
                response = await asyncio.wait_for(
                    client.request(method, url, **kwargs), timeout=timeout
                )
        except (TimeoutError, httpx.TimeoutException) as e:
            raise ExchangeTimedOutError(timeout) from e
        except httpx.HTTPError as e:
            raise ExchangeTransportError(f"Request to {url} failed: {e}") from e

        if not response.is_success:
            body = response.text[:_MAX_ERROR_BODY]
            logger.warning("%s %s returned %d: %s", method, url, response.status_code, body)
            raise ExchangeRejectedError(response.status_code, body)
        return response

    @staticmethod
    def _json_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedTokenResponseError(
                f"Response from {response.request.url} is not valid JSON"
            ) from e

# Authorization URL builder.
# Created: 2026-10-02

from __future__ import annotations

import secrets
import urllib.parse
from collections.abc import Mapping


def new_state_token() -> str:
    """Fresh, unguessable anti-forgery ``state`` value for one attempt."""
    return secrets.token_urlsafe(32)


def build_authorization_url(
    base_authorize_url: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
    extra_params: Mapping[str, str] | None = None,
) -> str:
    """Build the browser URL for the provider's authorization endpoint.

    Args:
        base_authorize_url: Provider authorize endpoint, may already carry a query.
        client_id: OAuth client ID.
        redirect_uri: Loopback redirect URI for this attempt.
        scope: Space-separated scopes.
        state: Anti-forgery token, validated again on the callback.
        extra_params: Provider-specific extras (e.g. ``show_dialog``). They
            cannot override the standard parameters.

    Returns:
        The full authorization URL.
    """
    if not state:
        raise ValueError("state must be a non-empty anti-forgery token")

    params: dict[str, str] = dict(extra_params or {})
    params.update(
        {
            "client_id": client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "scope": scope,
            "state": state,
        }
    )

    parts = urllib.parse.urlsplit(base_authorize_url)
    existing = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
    query = urllib.parse.urlencode(existing + list(params.items()), quote_via=urllib.parse.quote)
    return urllib.parse.urlunsplit(parts._replace(query=query))

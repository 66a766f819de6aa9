"""Loopback OAuth2 sign-in for melodex.

Usage:
    from melodex.auth import AuthorizationStateMachine, CredentialStore, TokenRefreshGate
    from melodex.config import load_client_configs

    configs = load_client_configs()
    store = CredentialStore()
    engine = AuthorizationStateMachine(store, configs)
    status = await engine.start("spotify")

    gate = TokenRefreshGate(store, configs)
    login = await gate.ensure_valid("spotify")
"""

from melodex.auth.credential_store import CredentialStore
from melodex.auth.models import AuthState, AuthStatus, LoginRecord, TokenResponse
from melodex.auth.providers import OSU, PROVIDERS, SPOTIFY, ProviderConfig
from melodex.auth.refresh import TokenRefreshGate
from melodex.auth.state_machine import AuthorizationStateMachine

__all__ = [
    "AuthState",
    "AuthStatus",
    "AuthorizationStateMachine",
    "CredentialStore",
    "LoginRecord",
    "OSU",
    "PROVIDERS",
    "ProviderConfig",
    "SPOTIFY",
    "TokenRefreshGate",
    "TokenResponse",
]

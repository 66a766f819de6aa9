# Auth errors - typed failures raised at each I/O and parsing boundary.
# Created: 2026-10-02
#
# The state machine renders any of these into Failed(str(exc)); everything
# else in the package raises them instead of returning sentinels.

from __future__ import annotations

from collections.abc import Sequence


class AuthEngineError(Exception):
    """Base exception for all authorization engine errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigError(AuthEngineError):
    """Missing, unreadable or invalid client configuration."""


class BrowserLaunchError(AuthEngineError):
    """The browser collaborator could not open the authorization URL."""


# ---------------------------------------------------------------------------
# Loopback listener
# ---------------------------------------------------------------------------


class BindError(AuthEngineError):
    """The loopback listener could not be bound."""


class NoPortAvailableError(BindError):
    def __init__(self, ports: Sequence[int]) -> None:
        self.ports = tuple(ports)
        listed = ", ".join(str(p) for p in self.ports) or "none given"
        super().__init__(f"No loopback port available (tried {listed})")


# ---------------------------------------------------------------------------
# Browser callback
# ---------------------------------------------------------------------------


class CallbackError(AuthEngineError):
    """The browser redirect did not yield a usable authorization code."""


class CallbackTimedOutError(CallbackError):
    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            f"Authorization timeout: no browser callback within {timeout:g}s, please try again"
        )


class CallbackCancelledError(CallbackError):
    def __init__(self) -> None:
        super().__init__("Authorization cancelled: the callback listener was closed")


class MalformedRequestError(CallbackError):
    """The callback connection did not carry a parseable HTTP request line."""


class StateMismatchError(CallbackError):
    def __init__(self) -> None:
        super().__init__("Callback state did not match this authorization attempt")


class AuthorizationDeniedError(CallbackError):
    def __init__(self, error: str, description: str = "") -> None:
        self.error = error
        self.description = description
        detail = f"{error}: {description}" if description else error
        super().__init__(f"Authorization denied by provider ({detail})")


class MissingCodeError(CallbackError):
    def __init__(self) -> None:
        super().__init__("Callback URL carried no authorization code")


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------


class ExchangeError(AuthEngineError):
    """A request to the provider's token or profile endpoint failed."""


class ExchangeTransportError(ExchangeError):
    """Network-level failure (DNS, connection refused, TLS, ...)."""


class ExchangeRejectedError(ExchangeError):
    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self.body = body
        super().__init__(f"Provider rejected the request (HTTP {status}): {body}")


class ExchangeTimedOutError(ExchangeError):
    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Token request timed out after {timeout:g}s")


class MalformedTokenResponseError(ExchangeError):
    """2xx response whose body is not the expected JSON shape."""


# ---------------------------------------------------------------------------
# Persistence / login state
# ---------------------------------------------------------------------------


class StorageError(AuthEngineError):
    """Reading or writing the credential file failed."""


class AuthError(AuthEngineError):
    """A caller needed a valid login and none could be produced."""


class NotLoggedInError(AuthError):
    def __init__(self, platform: str) -> None:
        self.platform = platform
        super().__init__(f"Not logged in to {platform}")


class RefreshFailedError(AuthError):
    def __init__(self, platform: str, reason: str) -> None:
        self.platform = platform
        self.reason = reason
        super().__init__(f"Token refresh for {platform} failed: {reason}")

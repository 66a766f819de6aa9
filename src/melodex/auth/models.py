# Auth data models.
# Created: 2026-10-02

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    return datetime.now(UTC)


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass
class LoginRecord:
    """Persisted credentials for one platform.

    ``expiry_time`` is always an absolute UTC timestamp.
    """

    platform: str
    access_token: str
    refresh_token: str
    expiry_time: datetime
    avatar_url: str | None = None
    user_name: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utc_now()) >= self.expiry_time

    def with_tokens(self, tokens: TokenResponse) -> LoginRecord:
        """Copy with refreshed tokens; keeps the old refresh token if none was issued."""
        return replace(
            self,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or self.refresh_token,
            expiry_time=tokens.expiry_time,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "platform": self.platform,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expiry_time": self.expiry_time.isoformat(),
            "avatar_url": self.avatar_url,
            "user_name": self.user_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], platform: str | None = None) -> LoginRecord:
        """Create from dictionary. ``platform`` fills in records written without one."""
        if not isinstance(data, dict):
            raise TypeError(f"login record must be a JSON object, not {type(data).__name__}")
        return cls(
            platform=data.get("platform") or platform or "",
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or "",
            expiry_time=_parse_timestamp(data["expiry_time"]),
            avatar_url=data.get("avatar_url"),
            user_name=data.get("user_name"),
        )


# Mapping platform name -> LoginRecord, as persisted in login_info.json.
CredentialMap = dict[str, LoginRecord]


# Ten years; anything larger is not a real token lifetime.
MAX_EXPIRES_IN = 10 * 365 * 24 * 3600


def _expires_in(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise TypeError(f"expires_in must be a number, not {type(value).__name__}")
    seconds = float(value)
    if not math.isfinite(seconds) or not 0 <= seconds <= MAX_EXPIRES_IN:
        raise ValueError(f"expires_in out of range: {value!r}")
    return seconds


@dataclass(frozen=True)
class TokenResponse:
    """Parsed token endpoint response with an absolute expiry."""

    access_token: str
    expiry_time: datetime
    refresh_token: str | None = None  # None: provider did not rotate
    token_type: str = "Bearer"
    scope: str | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any], received_at: datetime | None = None) -> TokenResponse:
        """Build from the endpoint JSON; ``expires_in`` is relative to receipt time.

        Raises KeyError/TypeError/ValueError on a malformed body.
        """
        expires_in = _expires_in(data["expires_in"])
        base = received_at or utc_now()
        access_token = data["access_token"]
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("access_token must be a non-empty string")
        return cls(
            access_token=access_token,
            expiry_time=base + timedelta(seconds=expires_in),
            refresh_token=data.get("refresh_token") or None,
            token_type=data.get("token_type") or "Bearer",
            scope=data.get("scope"),
        )


class AuthState(str, Enum):
    NOT_STARTED = "not_started"
    WAITING_FOR_BROWSER = "waiting_for_browser"
    PROCESSING = "processing"
    TOKEN_OBTAINED = "token_obtained"
    COMPLETED = "completed"
    FAILED = "failed"


_IN_PROGRESS = {AuthState.WAITING_FOR_BROWSER, AuthState.PROCESSING, AuthState.TOKEN_OBTAINED}


@dataclass(frozen=True)
class AuthStatus:
    """Current authorization status for a platform; ``reason`` is set only when failed."""

    state: AuthState
    reason: str | None = None

    @classmethod
    def failed(cls, reason: str) -> AuthStatus:
        return cls(AuthState.FAILED, reason)

    @property
    def in_progress(self) -> bool:
        return self.state in _IN_PROGRESS

    def __str__(self) -> str:
        if self.state is AuthState.FAILED:
            return f"failed: {self.reason}"
        return self.state.value.replace("_", " ")


NOT_STARTED = AuthStatus(AuthState.NOT_STARTED)
WAITING_FOR_BROWSER = AuthStatus(AuthState.WAITING_FOR_BROWSER)
PROCESSING = AuthStatus(AuthState.PROCESSING)
TOKEN_OBTAINED = AuthStatus(AuthState.TOKEN_OBTAINED)
COMPLETED = AuthStatus(AuthState.COMPLETED)


@dataclass
class AuthorizationSession:
    """One authorization attempt for one platform. Never persisted."""

    platform: str
    status: AuthStatus = NOT_STARTED
    started_at: datetime | None = None
    bound_port: int | None = None
    failure_logged: bool = False
    history: list[AuthState] = field(default_factory=list)

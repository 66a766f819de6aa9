# OAuth provider declarations - endpoints, scopes, ports and profile shape.
# Created: 2026-10-02
#
# Adding a provider means adding a ProviderConfig here; the state machine,
# exchanger and refresh gate are provider-agnostic.

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ClientAuthMethod(str, Enum):
    BASIC = "basic"  # HTTP Basic header
    FORM = "form"  # client_id/client_secret in the form body


@dataclass(frozen=True)
class UserProfile:
    user_name: str | None = None
    avatar_url: str | None = None


def _spotify_profile(data: dict[str, Any]) -> UserProfile:
    images = data.get("images") or []
    avatar = images[0].get("url") if images and isinstance(images[0], dict) else None
    return UserProfile(user_name=data.get("display_name") or data.get("id"), avatar_url=avatar)


def _osu_profile(data: dict[str, Any]) -> UserProfile:
    return UserProfile(user_name=data.get("username"), avatar_url=data.get("avatar_url"))


@dataclass(frozen=True)
class ProviderConfig:
    """Everything that differs between OAuth providers."""

    name: str
    display_name: str
    authorize_url: str
    token_url: str
    profile_url: str
    scope: str
    ports: tuple[int, ...]
    client_auth: ClientAuthMethod = ClientAuthMethod.BASIC
    extra_params: Mapping[str, str] = field(default_factory=dict)
    parse_profile: Callable[[dict[str, Any]], UserProfile] = _osu_profile
    redirect_host: str = "127.0.0.1"
    callback_path: str = "/callback"

    def redirect_uri(self, port: int) -> str:
        return f"http://{self.redirect_host}:{port}{self.callback_path}"


SPOTIFY = ProviderConfig(
    name="spotify",
    display_name="Spotify",
    authorize_url="https://accounts.spotify.com/authorize",
    token_url="https://accounts.spotify.com/api/token",
    profile_url="https://api.spotify.com/v1/me",
    scope="user-read-currently-playing",
    ports=(8888, 8889, 8890, 8891, 8892),
    client_auth=ClientAuthMethod.BASIC,
    extra_params={"show_dialog": "true"},
    parse_profile=_spotify_profile,
)

OSU = ProviderConfig(
    name="osu",
    display_name="osu!",
    authorize_url="https://osu.ppy.sh/oauth/authorize",
    token_url="https://osu.ppy.sh/oauth/token",
    profile_url="https://osu.ppy.sh/api/v2/me",
    scope="public identify",
    ports=(8080, 8081, 8082, 8083, 8084),
    client_auth=ClientAuthMethod.FORM,
    parse_profile=_osu_profile,
)

PROVIDERS: dict[str, ProviderConfig] = {p.name: p for p in (SPOTIFY, OSU)}


def get_provider(platform: str, providers: Mapping[str, ProviderConfig] | None = None) -> ProviderConfig:
    config = (providers if providers is not None else PROVIDERS).get(platform)
    if config is None:
        raise ValueError(f"Unknown OAuth provider: {platform}")
    return config

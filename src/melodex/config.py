"""Configuration for melodex.

Created: 2026-10-02

Two things live here:

- ``get_config_dir()`` - the per-user application-data directory that holds
  ``login_info.json`` (override with ``MELODEX_HOME``).
- ``load_client_configs()`` - reads ``config.json`` with the OAuth client
  credentials for each platform and validates them with pydantic. Every
  failing field is reported on its own line so the user can fix them all
  in one pass.
"""

from __future__ import annotations

import json
import logging
import os
import platform
import re
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from melodex.auth.errors import ConfigError

logger = logging.getLogger(__name__)

APP_NAME = "melodex"
DEFAULT_CONFIG_FILE = Path("config.json")

_SPOTIFY_CREDENTIAL = re.compile(r"^[0-9a-f]{32}$")


def get_config_dir() -> Path:
    """Per-user application-data directory (not created here)."""
    override = os.environ.get("MELODEX_HOME")
    if override:
        return Path(override).expanduser()

    system = platform.system()
    if system == "Windows":
        base = os.environ.get("APPDATA")
        return (Path(base) if base else Path.home() / "AppData" / "Roaming") / APP_NAME
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / APP_NAME
    xdg = os.environ.get("XDG_DATA_HOME")
    return (Path(xdg) if xdg else Path.home() / ".local" / "share") / APP_NAME


# ---------------------------------------------------------------------------
# config.json
# ---------------------------------------------------------------------------


class OAuthClientConfig(BaseModel):
    """Client credentials for one provider. Loaded once, never mutated."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    client_id: str
    client_secret: str


class SpotifyClientConfig(OAuthClientConfig):
    @field_validator("client_id", "client_secret")
    @classmethod
    def _lowercase_hex_32(cls, value: str) -> str:
        if len(value) != 32:
            raise ValueError(f"must be exactly 32 characters long (got {len(value)})")
        if not _SPOTIFY_CREDENTIAL.match(value):
            raise ValueError("must contain only lowercase hexadecimal characters (0-9, a-f)")
        return value


class OsuClientConfig(OAuthClientConfig):
    @field_validator("client_id")
    @classmethod
    def _numeric_id(cls, value: str) -> str:
        if not value.isdigit() or len(value) < 5:
            raise ValueError("must be numeric and at least 5 digits long")
        return value

    @field_validator("client_secret")
    @classmethod
    def _long_secret(cls, value: str) -> str:
        if len(value) < 40:
            raise ValueError(f"must be at least 40 characters long (got {len(value)})")
        return value


class ClientConfigFile(BaseModel):
    """Shape of config.json."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    spotify: SpotifyClientConfig
    osu: OsuClientConfig

    def as_mapping(self) -> dict[str, OAuthClientConfig]:
        return {"spotify": self.spotify, "osu": self.osu}


def _format_validation_error(source: str, exc: ValidationError) -> str:
    lines = [f"Invalid client configuration in {source}:"]
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "<root>"
        message = err["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, ") :]
        lines.append(f"  - {field}: {message}")
    return "\n".join(lines)


def parse_client_configs(data: object, source: str = "config.json") -> dict[str, OAuthClientConfig]:
    """Validate an already-decoded config object.

    Raises:
        ConfigError: with one line per failing field.
    """
    try:
        parsed = ClientConfigFile.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(_format_validation_error(source, exc)) from exc
    return parsed.as_mapping()


def load_client_configs(path: Path | None = None) -> dict[str, OAuthClientConfig]:
    """Load and validate ``config.json``.

    Args:
        path: Config file location. Defaults to ``config.json`` in the
            working directory, falling back to the application-data directory.

    Returns:
        Mapping platform name -> validated client credentials.
    """
    if path is None:
        path = DEFAULT_CONFIG_FILE
        if not path.exists():
            path = get_config_dir() / DEFAULT_CONFIG_FILE.name

    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file {path} is not valid JSON: {exc}") from exc

    configs = parse_client_configs(data, source=str(path))
    logger.debug("Loaded client configuration for %s from %s", ", ".join(configs), path)
    return configs

# Credential Store - file-based login persistence at <config dir>/login_info.json.
# Created: 2026-10-03
#
# The whole platform -> LoginRecord map lives in one JSON file. Writes are
# whole-file: serialize fully, write a temp file, then os.replace() it over
# the old one, so a failed save never leaves a half-written file behind.

from __future__ import annotations

import json
import logging
import os
import stat
import threading
from pathlib import Path

from melodex.auth.errors import StorageError
from melodex.auth.models import CredentialMap, LoginRecord

logger = logging.getLogger(__name__)

CREDENTIALS_FILENAME = "login_info.json"


def get_credentials_path() -> Path:
    from melodex.config import get_config_dir

    return get_config_dir() / CREDENTIALS_FILENAME


class CredentialStore:
    """Persists the CredentialMap.

    ``save``/``load`` are plain whole-file operations. ``upsert``/``remove``
    do a read-modify-write under ``self.lock`` so concurrent callers in this
    process cannot lose each other's updates.

    The file is chmod 0600 (owner-only read/write) where the OS allows it.
    """

    def __init__(self, path: Path | None = None):
        self._path = path
        self.lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path if self._path is not None else get_credentials_path()

    def load(self) -> CredentialMap:
        """Read the persisted map. A missing file is an empty map (first run)."""
        path = self.path
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StorageError(f"Cannot read {path}: {e}") from e

        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("top-level JSON value is not an object")
            return {
                platform: LoginRecord.from_dict(entry, platform=platform)
                for platform, entry in data.items()
            }
        except (ValueError, KeyError, TypeError) as e:
            raise StorageError(f"Corrupt credential file {path}: {e}") from e

    def save(self, credentials: CredentialMap) -> None:
        """Overwrite the persisted map with ``credentials``."""
        path = self.path
        try:
            payload = json.dumps(
                {platform: record.to_dict() for platform, record in credentials.items()},
                indent=2,
                ensure_ascii=False,
            )
        except (TypeError, ValueError) as e:
            raise StorageError(f"Cannot serialize credentials: {e}") from e

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create directory {path.parent}: {e}") from e

        temp_path = path.with_name(path.name + ".tmp")
        try:
            fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(temp_path, stat.S_IRUSR | stat.S_IWUSR)
            os.replace(temp_path, path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)
            raise StorageError(f"Cannot write {path}: {e}") from e

        logger.debug("Saved credentials for %s", ", ".join(sorted(credentials)) or "no platforms")

    def get(self, platform: str) -> LoginRecord | None:
        return self.load().get(platform)

    def upsert(self, record: LoginRecord) -> None:
        """Merge one record into the persisted map."""
        with self.lock:
            credentials = self.load()
            credentials[record.platform] = record
            self.save(credentials)
        logger.info("Saved login for %s", record.platform)

    def replace_if_unchanged(self, expected: LoginRecord, record: LoginRecord) -> LoginRecord | None:
        """Write ``record`` only if the stored entry still equals ``expected``.

        Returns whatever is stored for the platform afterwards: ``record`` on
        success, a newer login, or None after a logout.
        """
        with self.lock:
            credentials = self.load()
            current = credentials.get(record.platform)
            if current != expected:
                return current
            credentials[record.platform] = record
            self.save(credentials)
        logger.info("Saved login for %s", record.platform)
        return record

    def remove(self, platform: str) -> bool:
        """Drop a platform's entry (logout). Returns True if one existed."""
        with self.lock:
            credentials = self.load()
            if platform not in credentials:
                return False
            del credentials[platform]
            self.save(credentials)
        logger.info("Removed login for %s", platform)
        return True

    def list_platforms(self) -> list[str]:
        return sorted(self.load())

"""
auth/enforcement.py -- Process-wide switch that turns authentication on or off.

The setting lives in a small JSON file, independent of the users table:

    {"authenticationEnabled": true, "updatedAt": "...", "updatedBy": "admin"}

Read policy (fail open):
  - File absent: nothing was ever configured. Log it at INFO, write the
    default, and report enabled=True.
  - File present but unreadable, not UTF-8, or invalid: log it at ERROR as
    corruption and report enabled=True. Enforcement stays on; refusing every
    request here would be a global lockout nobody can review.
  The two cases log at different levels: one is normal first run,
  the other needs an operator.

Write policy (fail loud):
  write() replaces the file atomically (temp file + os.replace in the same
  directory) and raises PersistenceFailure on any OS error. A caller that
  believes enforcement is off while it is on -- or the reverse -- is a
  security problem, so a failed write is never swallowed.

Caching:
  read() sits on the hot path of every request. The result is cached for
  cache_seconds (bounded staleness); write() refreshes the cache at once so
  changes made through this process are visible immediately. Changes made by
  another process (the CLI) become visible after at most cache_seconds.

Layer rule: no imports from api/ or main.py.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from auth.errors import PersistenceFailure

logger = logging.getLogger("authgate.enforcement")
audit = logging.getLogger("authgate.audit")


class EnforcementSetting(BaseModel):
    """The persisted record. Field aliases match the on-disk JSON keys."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    enabled: bool = Field(alias="authenticationEnabled")
    updated_at: str | None = Field(default=None, alias="updatedAt")
    updated_by: str | None = Field(default=None, alias="updatedBy")

    def to_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True), indent=2)


_DEFAULT = EnforcementSetting(enabled=True)


class EnforcementToggle:
    """Cached reader / atomic writer for the enforcement setting.

    Usage:
        toggle = EnforcementToggle(Path("config/auth-config.json"))
        if toggle.read().enabled: ...
        toggle.write(False, updated_by="admin")
    """

    def __init__(self, path: Path | str, cache_seconds: float = 5.0) -> None:
        self.path = Path(path)
        self.cache_seconds = cache_seconds
        self._lock = threading.Lock()
        self._cached: EnforcementSetting | None = None
        self._cached_at = 0.0

    def read(self) -> EnforcementSetting:
        """Return the current setting, from cache when younger than cache_seconds."""
        with self._lock:
            if self._cached is not None and time.monotonic() - self._cached_at < self.cache_seconds:
                return self._cached
            setting = self._load()
            self._cached = setting
            self._cached_at = time.monotonic()
            return setting

    def is_enabled(self) -> bool:
        return self.read().enabled

    def invalidate(self) -> None:
        """Drop the cached value so the next read() goes to disk."""
        with self._lock:
            self._cached = None

    def write(self, enabled: bool, updated_by: str) -> EnforcementSetting:
        """Persist a new setting atomically. Raises PersistenceFailure if it cannot be written."""
        setting = EnforcementSetting(
            enabled=enabled,
            updated_at=datetime.now(timezone.utc).isoformat(),
            updated_by=updated_by,
        )
        with self._lock:
            try:
                self._write_atomic(setting)
            except OSError as exc:
                logger.error("Could not persist enforcement setting to %s: %s", self.path, exc)
                raise PersistenceFailure(f"Could not write {self.path}") from exc
            self._cached = setting
            self._cached_at = time.monotonic()

        if enabled:
            audit.info("Authentication ENABLED by %s at %s", updated_by, setting.updated_at)
        else:
            audit.warning("Authentication DISABLED by %s at %s", updated_by, setting.updated_at)
        return setting

    # ------------------------------------------------------------------
    # Internals (called with the lock held)
    # ------------------------------------------------------------------

    def _load(self) -> EnforcementSetting:
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            logger.info("No enforcement setting at %s; using default (enabled)", self.path)
            try:
                self._write_atomic(_DEFAULT)
            except OSError as exc:
                logger.warning("Could not write default enforcement setting to %s: %s", self.path, exc)
            return _DEFAULT
        except OSError as exc:
            logger.error(
                "Enforcement setting at %s exists but is unreadable (%s); failing open to enabled",
                self.path,
                exc,
            )
            return _DEFAULT

        try:
            raw = data.decode("utf-8")
        except UnicodeDecodeError:
            logger.error(
                "Enforcement setting at %s is corrupt (not valid UTF-8); failing open to enabled",
                self.path,
            )
            return _DEFAULT

        try:
            return EnforcementSetting.model_validate_json(raw)
        except ValidationError as exc:
            logger.error(
                "Enforcement setting at %s is corrupt (%d errors); failing open to enabled",
                self.path,
                exc.error_count(),
            )
            return _DEFAULT

    def _write_atomic(self, setting: EnforcementSetting) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(setting.to_json())
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

"""Test account storage for SprintStress.

Accounts live in a JSON array file::

    [{"username": "...", "password": "...", "registered": true}, ...]

The registration action appends to it; persona bootstrap reads it. Writers
are serialized through a process-wide lock and every write replaces the
file atomically, so concurrent registrations never lose an entry.
Duplicate usernames are tolerated.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

from sprintstress.config import StressConfigError

logger = logging.getLogger("sprintstress.credentials")

_WRITE_LOCK = threading.Lock()


@dataclasses.dataclass(frozen=True)
class Credential:
    """A game account usable by a persona."""

    username: str
    password: str
    registered: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Credential:
        return cls(
            username=str(data.get("username", "")),
            password=str(data.get("password", "")),
            registered=bool(data.get("registered", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"username": self.username, "password": self.password, "registered": self.registered}


def mask_password(password: str) -> str:
    """Mask a password for display. Shows only the first character."""
    if len(password) <= 2:
        return "***"
    return f"{password[0]}***"


class CredentialStore:
    """Append-only account list backed by a JSON file."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[Credential]:
        """Read every stored account. A missing file is an empty store."""
        if not self._path.exists():
            return []
        return [Credential.from_dict(item) for item in self._read_raw()]

    def registered(self) -> list[Credential]:
        return [c for c in self.load() if c.registered]

    def append(self, credential: Credential) -> int:
        """Add an account and return the new total."""
        with _WRITE_LOCK:
            items = self._read_raw() if self._path.exists() else []
            items.append(credential.to_dict())
            self._write_raw(items)
            total = len(items)
        logger.info("Stored credential %s (total: %d)", credential.username, total)
        return total

    def pick(self, index: int) -> Credential:
        """Return the ``index``-th registered account.

        Falls back to the first registered account when ``index`` is out of
        range, so a short pool still yields a runnable persona.
        """
        pool = self.registered()
        if not pool:
            raise StressConfigError(
                f"No registered users in {self._path}\n\n"
                "To fix: sprintstress register --count 5"
            )
        if 0 <= index < len(pool):
            return pool[index]
        logger.warning(
            "No registered user at index %d (pool size %d); falling back to %s",
            index, len(pool), pool[0].username,
        )
        return pool[0]

    # -- File IO -------------------------------------------------------------

    def _read_raw(self) -> list[dict[str, Any]]:
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise StressConfigError(f"Credentials file is not valid JSON: {self._path}\n\n{exc}") from exc
        if not isinstance(data, list):
            raise StressConfigError(f"Credentials file must contain a JSON array: {self._path}")
        return [item for item in data if isinstance(item, dict)]

    def _write_raw(self, items: list[dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".users-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(items, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self._path)
        except Exception:
            Path(tmp_name).unlink(missing_ok=True)
            raise

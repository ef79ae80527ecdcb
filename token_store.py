"""Durable client-side storage for the access/refresh token pair.

Entries behave like browser cookies: an entry written with a max-age
survives restarts until it expires, an entry written without one is
session-scoped and only visible to the session that wrote it.
"""

import json
import logging
import os
import time
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path

logger = logging.getLogger("subscription_tracker.token_store")

ACCESS_TOKEN_KEY = "auth_token"
REFRESH_TOKEN_KEY = "refresh_token"


@dataclass
class StoredToken:
    """One stored value plus its lifetime"""
    value: str
    max_age: int | None = None
    expires_at: float | None = None
    session_id: str | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class TokenStore:
    """Base store; subclasses provide _read() and _write()."""

    def __init__(self, session_id: str | None = None, clock=time.time):
        self.session_id = session_id or uuid.uuid4().hex
        self._clock = clock

    def _read(self) -> dict[str, StoredToken]:
        raise NotImplementedError

    def _write(self, entries: dict[str, StoredToken]) -> None:
        raise NotImplementedError

    def _visible(self, entry: StoredToken) -> bool:
        if entry.is_expired(self._clock()):
            return False
        # Session-scoped entries die with the session that wrote them
        return entry.max_age is not None or entry.session_id == self.session_id

    def get_entry(self, key: str) -> StoredToken | None:
        entry = self._read().get(key)
        if entry is None or not self._visible(entry):
            return None
        return entry

    def get(self, key: str) -> str | None:
        entry = self.get_entry(key)
        return entry.value if entry else None

    def set(self, key: str, value: str, max_age: int | None = None) -> None:
        entries = self._read()
        entries[key] = StoredToken(
            value=value,
            max_age=max_age,
            expires_at=self._clock() + max_age if max_age is not None else None,
            session_id=self.session_id,
        )
        self._write(entries)

    def delete(self, key: str) -> None:
        entries = self._read()
        if entries.pop(key, None) is not None:
            self._write(entries)

    def clear(self) -> None:
        self._write({})


class MemoryTokenStore(TokenStore):
    """Process-local store, mostly for tests and short-lived scripts."""

    def __init__(self, session_id: str | None = None, clock=time.time):
        super().__init__(session_id, clock)
        self._entries: dict[str, StoredToken] = {}

    def _read(self) -> dict[str, StoredToken]:
        return dict(self._entries)

    def _write(self, entries: dict[str, StoredToken]) -> None:
        self._entries = dict(entries)


class FileTokenStore(TokenStore):
    """
    JSON file store shared by every client pointed at the same path.

    The file is re-read whenever its modification time changes, so a token
    cleared or replaced by another process shows up on the next read.
    Writes replace the file atomically; the last writer wins.
    """

    def __init__(self, path: str | Path, session_id: str | None = None, clock=time.time):
        super().__init__(session_id, clock)
        self.path = Path(path)
        self._cache: dict[str, StoredToken] = {}
        self._stamp: tuple[int, int] | None = None

    def _file_stamp(self) -> tuple[int, int] | None:
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return None
        return stat.st_mtime_ns, stat.st_size

    def _read(self) -> dict[str, StoredToken]:
        stamp = self._file_stamp()
        if stamp != self._stamp:
            self._cache = self._load() if stamp is not None else {}
            self._stamp = stamp
        return dict(self._cache)

    def _load(self) -> dict[str, StoredToken]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return {key: StoredToken(**value) for key, value in raw.items()}
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable token store {self.path}: {e}")
            return {}

    def _write(self, entries: dict[str, StoredToken]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f".{self.path.name}.{uuid.uuid4().hex}.tmp")
        tmp_path.write_text(
            json.dumps({key: asdict(entry) for key, entry in entries.items()}),
            encoding="utf-8",
        )
        os.replace(tmp_path, self.path)
        self._cache = dict(entries)
        self._stamp = self._file_stamp()

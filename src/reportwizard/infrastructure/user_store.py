from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass
class UserRecord:
    email: str
    password_hash: str
    created_at: str
    hubspot_token: str = ""
    current_state: Optional[Dict[str, Any]] = None


class UserStore(Protocol):
    def get(self, email: str) -> Optional[UserRecord]: ...
    def create(self, email: str, password_hash: str) -> UserRecord: ...
    def set_hubspot_token(self, email: str, token: str) -> UserRecord: ...
    def save_state(self, email: str, state: Optional[Dict[str, Any]]) -> None: ...
    def get_state(self, email: str) -> Optional[Dict[str, Any]]: ...
    def list_emails(self) -> List[str]: ...
    def lock(self, email: str) -> RLock: ...


class InMemoryUserStore:
    """Credential store and session-state persistence keyed by lowercase email."""

    def __init__(self) -> None:
        self._users: Dict[str, UserRecord] = {}
        self._lock = RLock()
        self._user_locks: Dict[str, RLock] = {}

    def _now_iso(self) -> str:
        return datetime.now(UTC).isoformat().replace("+00:00", "Z")

    def _require(self, email: str) -> UserRecord:
        rec = self._users.get(email.lower())
        if rec is None:
            raise KeyError(email)
        return rec

    def _persist(self) -> None:
        """Hook for durable subclasses."""

    def get(self, email: str) -> Optional[UserRecord]:
        with self._lock:
            return self._users.get(email.lower())

    def create(self, email: str, password_hash: str) -> UserRecord:
        email_l = email.lower()
        with self._lock:
            if email_l in self._users:
                raise ValueError("User already exists")
            rec = UserRecord(email=email_l, password_hash=password_hash, created_at=self._now_iso())
            self._users[email_l] = rec
            self._persist()
            return rec

    def set_hubspot_token(self, email: str, token: str) -> UserRecord:
        with self._lock:
            rec = self._require(email)
            rec.hubspot_token = token
            self._persist()
            return rec

    def save_state(self, email: str, state: Optional[Dict[str, Any]]) -> None:
        with self._lock:
            rec = self._require(email)
            rec.current_state = json.loads(json.dumps(state)) if state is not None else None
            self._persist()

    def get_state(self, email: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            rec = self._users.get(email.lower())
            if rec is None or rec.current_state is None:
                return None
            return json.loads(json.dumps(rec.current_state))

    def list_emails(self) -> List[str]:
        with self._lock:
            return sorted(self._users)

    def lock(self, email: str) -> RLock:
        """Per-user lock serializing pipeline mutations for that user."""
        with self._lock:
            return self._user_locks.setdefault(email.lower(), RLock())


class FileUserStore(InMemoryUserStore):
    """JSON file-backed store for development persistence.

    Structure: a single JSON object mapping email -> user record.
    """

    def __init__(self, file_path: Optional[str] = None) -> None:
        super().__init__()
        root = Path(__file__).resolve().parents[3]
        default_path = root / "run" / "users.json"
        self._path = Path(file_path or os.getenv("RW_USERS_FILE", str(default_path)))
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.exception("Could not read user store at %s; starting empty", self._path)
            return
        for email, rec in (data or {}).items():
            try:
                self._users[email] = UserRecord(**rec)
            except TypeError:
                logger.warning("Skipping malformed user record for %s", email)

    def _persist(self) -> None:
        obj = {email: asdict(rec) for email, rec in self._users.items()}
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps(obj, indent=2), encoding="utf-8")
        tmp.replace(self._path)


_store: Optional[UserStore] = None


def get_user_store() -> UserStore:
    global _store
    if _store is None:
        impl = os.getenv("RW_USER_STORE_IMPL", "memory").lower()
        _store = FileUserStore() if impl == "file" else InMemoryUserStore()
    return _store


def reset_user_store() -> None:
    """Drop the cached store (useful for tests)."""
    global _store
    _store = None


from __future__ import annotations

"""Fixed-window attempt counters guarding the signup and login endpoints."""

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Dict, Tuple


@dataclass(frozen=True)
class AttemptRule:
    name: str
    limit_env: str
    window_env: str
    default_limit: int
    default_window_seconds: int
    message: str

    def limit(self) -> int:
        return _env_int(self.limit_env, self.default_limit)

    def window(self) -> timedelta:
        return timedelta(seconds=_env_int(self.window_env, self.default_window_seconds))


SIGNUP_RULE = AttemptRule(
    name="signup",
    limit_env="RW_SIGNUP_LIMIT",
    window_env="RW_SIGNUP_WINDOW_SEC",
    default_limit=5,
    default_window_seconds=3600,
    message="Too many signup attempts. Please try again later.",
)

LOGIN_RULE = AttemptRule(
    name="login",
    limit_env="RW_LOGIN_LIMIT",
    window_env="RW_LOGIN_WINDOW_SEC",
    default_limit=10,
    default_window_seconds=900,
    message="Too many login attempts. Please try again later.",
)


@dataclass
class _Window:
    count: int
    ends_at: datetime


_WINDOWS: Dict[Tuple[str, str], _Window] = {}
_LOCK = Lock()


class RateLimitExceeded(Exception):
    def __init__(self, rule: AttemptRule, retry_after_seconds: int) -> None:
        super().__init__(rule.message)
        self.rule = rule
        self.retry_after_seconds = retry_after_seconds


def record_attempt(rule: AttemptRule, identifier: str) -> None:
    """Count one attempt by ``identifier`` against ``rule``.

    Raises:
        RateLimitExceeded when the window already holds ``rule.limit()`` attempts.
    """
    if _rate_limiting_disabled():
        return
    now = datetime.now(timezone.utc)
    key = (rule.name, identifier)
    with _LOCK:
        window = _WINDOWS.get(key)
        if window is None or window.ends_at <= now:
            _WINDOWS[key] = _Window(count=1, ends_at=now + rule.window())
            return
        if window.count >= rule.limit():
            raise RateLimitExceeded(rule, max(int((window.ends_at - now).total_seconds()), 1))
        window.count += 1


def _env_int(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, ""))
    except ValueError:
        return default
    return value if value > 0 else default


def _rate_limiting_disabled() -> bool:
    flag = os.getenv("RW_RATE_LIMIT_DISABLED")
    if flag is not None:
        return flag.lower() in {"1", "true", "yes", "on"}
    # Test clients share one address; counters would leak between tests.
    return bool(os.getenv("PYTEST_CURRENT_TEST"))


def reset_rate_limits() -> None:
    with _LOCK:
        _WINDOWS.clear()

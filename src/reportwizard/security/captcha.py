from __future__ import annotations

"""In-memory SVG text captcha used by the signup form."""

import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from html import escape
from typing import Dict, Optional, Tuple

CAPTCHA_COOKIE = "rw_captcha"
CAPTCHA_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnpqrstuvwxyz23456789"
CAPTCHA_LENGTH = int(os.getenv("RW_CAPTCHA_LENGTH", "5"))
CAPTCHA_EXP_MINUTES = int(os.getenv("RW_CAPTCHA_EXPIRES_MIN", "10"))


@dataclass
class CaptchaEntry:
    answer: str
    expires_at: datetime


CAPTCHA_STORE: Dict[str, CaptchaEntry] = {}


def _rand(lo: int, hi: int) -> int:
    return lo + secrets.randbelow(hi - lo + 1)


def render_svg(text: str, width: int = 150, height: int = 50) -> str:
    parts = [
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}" viewBox="0 0 {width} {height}">',
        '<rect width="100%" height="100%" fill="#f4f6fb"/>',
    ]
    for _ in range(4):
        parts.append(
            f'<path d="M{_rand(0, 20)} {_rand(5, height - 5)} C{_rand(30, 70)} {_rand(0, height)}, '
            f'{_rand(80, 120)} {_rand(0, height)}, {_rand(width - 20, width)} {_rand(5, height - 5)}" '
            f'stroke="#9aa5b1" fill="none" stroke-width="1"/>'
        )
    step = (width - 20) // max(len(text), 1)
    for idx, ch in enumerate(text):
        x = 12 + idx * step
        y = _rand(30, 40)
        parts.append(
            f'<text x="{x}" y="{y}" font-family="monospace" font-size="{_rand(24, 30)}" fill="#1f2933" '
            f'transform="rotate({_rand(-20, 20)} {x} {y})">{escape(ch)}</text>'
        )
    parts.append("</svg>")
    return "".join(parts)


def issue_captcha() -> Tuple[str, str]:
    """Return ``(captcha_id, svg)``; the answer stays server side."""
    _purge_expired()
    answer = "".join(secrets.choice(CAPTCHA_ALPHABET) for _ in range(CAPTCHA_LENGTH))
    captcha_id = secrets.token_urlsafe(16)
    CAPTCHA_STORE[captcha_id] = CaptchaEntry(
        answer=answer,
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=CAPTCHA_EXP_MINUTES),
    )
    return captcha_id, render_svg(answer)


def verify_captcha(captcha_id: Optional[str], answer: Optional[str]) -> bool:
    """Check ``answer`` case-insensitively. Each captcha can be checked once."""
    if not captcha_id or not answer:
        return False
    entry = CAPTCHA_STORE.pop(captcha_id, None)
    if entry is None or entry.expires_at < datetime.now(timezone.utc):
        return False
    return secrets.compare_digest(entry.answer.lower(), answer.strip().lower())


def _purge_expired() -> None:
    now = datetime.now(timezone.utc)
    for key in [k for k, v in CAPTCHA_STORE.items() if v.expires_at < now]:
        CAPTCHA_STORE.pop(key, None)

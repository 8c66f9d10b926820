"""Unsigned JWT bearer tokens for tests."""

from __future__ import annotations

import base64
import json
from typing import Any


def _encode(data: dict[str, Any]) -> str:
    raw = json.dumps(data).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def make_access_token(claims: dict[str, Any]) -> str:
    """Build a JWT-shaped token carrying the given claims (no real signature)."""
    return f"{_encode({'alg': 'none', 'typ': 'JWT'})}.{_encode(claims)}.signature"

from __future__ import annotations

import os
from typing import Any

import bcrypt

ROLE_SCOUT = "scout"
ROLE_PRODUCER = "producer"

_users: dict[str, dict[str, Any]] = {}


def _hash_password(plain: str) -> str:
    return bcrypt.hashpw(plain.encode(), bcrypt.gensalt()).decode()


def _verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode(), hashed.encode())


def _seed_users() -> None:
    """Pre-seed the demo crew accounts on import."""
    _users["scout"] = {
        "password_hash": _hash_password(os.getenv("SCOUT_DEMO_PASSWORD", "scout123")),
        "role": ROLE_SCOUT,
    }
    _users["producer"] = {
        "password_hash": _hash_password(os.getenv("PRODUCER_DEMO_PASSWORD", "producer123")),
        "role": ROLE_PRODUCER,
    }


def authenticate(username: str, password: str) -> dict[str, Any] | None:
    """Verify credentials. Returns ``{username, role}`` or ``None``."""
    record = _users.get(username)
    if record and _verify_password(password, record["password_hash"]):
        return {"username": username, "role": record["role"]}
    return None


_seed_users()

from __future__ import annotations

from fastapi import HTTPException, Request

from .users import ROLE_PRODUCER


def require_user(request: Request) -> dict:
    """Raise 401 if nobody is logged in."""
    user = request.session.get("user")
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def require_producer(request: Request) -> dict:
    """Raise 401 if not logged in, 403 if the user cannot manage the cache."""
    user = require_user(request)
    if user.get("role") != ROLE_PRODUCER:
        raise HTTPException(status_code=403, detail="Producer access required")
    return user

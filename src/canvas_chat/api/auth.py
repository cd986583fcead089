"""Caller identity as supplied by the upstream authentication layer."""

from typing import Optional

from fastapi import Header

USER_HEADER = "X-User-Id"


async def get_caller_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """Returns the authenticated user id, or None when the request carries none.

    Rejection happens in the chat service so that every operation refuses an
    anonymous caller before touching the store.
    """
    if x_user_id is None:
        return None
    return x_user_id.strip() or None


def caller_key(headers, fallback: str) -> str:
    """Rate limiting key for a request: the caller id, or ``fallback`` if anonymous."""
    user_id = (headers.get(USER_HEADER) or "").strip()
    return f"user:{user_id}" if user_id else f"ip:{fallback}"

"""Shared FastAPI dependencies."""

from fastapi import Header, HTTPException


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Identity of the caller, as resolved by the upstream auth layer.

    The gateway authenticates the request and forwards the user id in the
    X-User-Id header.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()

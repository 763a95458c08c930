"""
Shared FastAPI dependencies for the reference collaborator.
"""
from fastapi import Header

DEFAULT_USER_ID = "anonymous"


def get_current_user_id(
    x_user_id: str = Header(default=DEFAULT_USER_ID, alias="X-User-Id"),
) -> str:
    """
    Identify the caller.

    Authentication is handled upstream; the gateway forwards the user id in
    the X-User-Id header.
    """
    return x_user_id or DEFAULT_USER_ID

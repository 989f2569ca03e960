"""Caller identity for the approval callback."""

from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

# Set by the fronting chat server after it authenticates the user
user_id_header = APIKeyHeader(name="X-User-ID", auto_error=False)


async def get_current_user_id(user_id: Optional[str] = Security(user_id_header)) -> str:
    """
    Return the authenticated user id.

    Raises:
        HTTPException: If the identity header is missing
    """
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User identity required. Provide X-User-ID header.",
        )
    return user_id

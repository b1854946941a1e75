"""
Authentication dependencies for the assessment API.

Token validation happens upstream; this dependency only extracts the caller
id from an already-verified bearer token.
"""

import logging
from fastapi import Header, HTTPException, status
from typing import Optional

logger = logging.getLogger(__name__)


async def get_current_user_id(authorization: Optional[str] = Header(None)) -> str:
    """
    Get the current user ID from the authorization header.

    Args:
        authorization: Authorization header value (``Bearer <user id>``)

    Returns:
        User ID string

    Raises:
        HTTPException: If the header is missing or malformed
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header"
        )

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format"
        )

    if scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication scheme"
        )

    logger.debug(f"Resolved caller {token}")
    return token

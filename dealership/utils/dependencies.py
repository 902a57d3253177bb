"""
Dependency injection functions for FastAPI routes.

These functions can be used with Depends() to inject dependencies
into route handlers.
"""
from fastapi import Depends, HTTPException, status, Header
from sqlalchemy.orm import Session
from typing import Optional
from dealership.database import get_db
from dealership.models.models import User, Role
from dealership.utils.auth import decode_token


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db)
) -> User:
    """
    Get current user from Authorization header.

    This dependency validates the JWT token and returns the current user.
    Used in routes that require authentication.

    Expected Authorization header format: "Bearer <token>"

    Raises:
        HTTPException: 401 if token is missing or malformed, 403 if it is
        invalid or expired, 401 if the user no longer exists
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Parse Bearer token
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header format. Expected: 'Bearer <token>'",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_data = decode_token(parts[1])
    if token_data is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired token",
        )

    user = db.get(User, token_data.subject_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """Allow the request only for admin accounts."""
    if current_user.role != Role.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges are required for this operation",
        )
    return current_user


def require_buyer(current_user: User = Depends(get_current_user)) -> User:
    """Allow the request only for regular (buyer) accounts."""
    if current_user.role != Role.USER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This operation is only available to users",
        )
    return current_user

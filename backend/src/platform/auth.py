"""
Bearer-token authentication and organization resolution.

CRITICAL SECURITY REQUIREMENTS:
- organization_id is ALWAYS resolved server-side from the token subject
  through the users table, NEVER from the request body or query
- A missing, expired or invalid token returns 401
- A valid token whose user has no active membership returns 403

Tokens are HS256 JWTs signed with AUTH_JWT_SECRET. The audience is
checked when AUTH_JWT_AUDIENCE is set.
"""

import os
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from src.database.session import get_db_session
from src.models.user import User

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    """Authenticated principal, already bound to one organization."""
    user_id: str
    auth_user_id: str
    organization_id: str
    email: Optional[str] = None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a bearer token.

    Raises:
        HTTPException: 401 on any token problem, 503 if auth is unconfigured
    """
    secret = os.getenv("AUTH_JWT_SECRET")
    if not secret:
        logger.error("AUTH_JWT_SECRET is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication not configured",
        )

    audience = os.getenv("AUTH_JWT_AUDIENCE") or None
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            audience=audience,
            options={"require": ["sub", "exp"], "verify_aud": audience is not None},
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except jwt.InvalidTokenError as e:
        logger.info("Rejected bearer token", extra={"error_type": type(e).__name__})
        raise _unauthorized("Invalid authentication token")


def resolve_auth_context(db: Session, claims: Dict[str, Any]) -> AuthContext:
    """Map token claims to an AuthContext; 403 when the user has no organization."""
    user = db.query(User).filter(
        User.auth_user_id == claims["sub"],
        User.is_active.is_(True),
    ).first()
    if user is None:
        logger.warning("Authenticated user has no organization", extra={"auth_user_id": claims["sub"]})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No organization found for the authenticated user",
        )
    return AuthContext(
        user_id=user.id,
        auth_user_id=user.auth_user_id,
        organization_id=user.organization_id,
        email=user.email,
    )


async def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    db: Session = Depends(get_db_session),
) -> AuthContext:
    """FastAPI dependency: authenticated principal for the request."""
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Authentication required")
    claims = decode_token(credentials.credentials)
    return resolve_auth_context(db, claims)

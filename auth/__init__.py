"""Authentication of externally issued identity tokens.

Users are registered and signed in by an upstream identity service which
issues HS256 (or configured algorithm) JWTs carrying the user id in ``sub``
and the account role in ``role``. This module verifies those tokens and
provides FastAPI dependencies for protecting routes.
"""

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
from uuid import UUID

from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError, ExpiredSignatureError
from pydantic import BaseModel

from config import settings_conf

# Configure logging
logger = logging.getLogger(__name__)

class UserRole(str, Enum):
    SEEKER = "SEEKER"
    PROVIDER = "PROVIDER"
    EMPLOYEE = "EMPLOYEE"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"
    # Service identity of the payment gateway callback; never a person
    PAYMENT_GATEWAY = "PAYMENT_GATEWAY"

# Roles eligible for moderation, verification and monitoring work
STAFF_ROLES = (UserRole.EMPLOYEE, UserRole.MANAGER, UserRole.ADMIN)

# Roles that may act on any booking or alert without holding an assignment
SUPERVISOR_ROLES = (UserRole.MANAGER, UserRole.ADMIN)

class Principal(BaseModel):
    """Authenticated caller."""
    user_id: UUID
    role: UserRole

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_supervisor(self) -> bool:
        return self.role in SUPERVISOR_ROLES

class AuthError(Exception):
    """Base exception for authentication errors."""
    pass

class TokenExpiredError(AuthError):
    """Raised when a token has expired."""
    pass

def decode_token(token: str) -> Principal:
    """Verify a bearer token and return the caller it identifies.
    
    Args:
        token: Encoded JWT
        
    Returns:
        Principal built from the ``sub`` and ``role`` claims
        
    Raises:
        TokenExpiredError: If the token has expired
        AuthError: If the token is malformed, badly signed or missing claims
    """
    try:
        claims = jwt.decode(
            token,
            settings_conf['jwt_secret'],
            algorithms=[settings_conf['jwt_algorithm']]
        )
    except ExpiredSignatureError:
        raise TokenExpiredError("Token has expired")
    except JWTError as e:
        raise AuthError(f"Invalid token: {e}")
        
    try:
        return Principal(user_id=UUID(str(claims['sub'])), role=UserRole(claims['role']))
    except (KeyError, ValueError) as e:
        raise AuthError(f"Invalid token claims: {e}")

def create_token(user_id: UUID, role: UserRole, expires_minutes: Optional[int] = 60) -> str:
    """Issue a token the way the identity service does. Used by tooling and tests."""
    claims = {'sub': str(user_id), 'role': UserRole(role).value}
    if expires_minutes is not None:
        claims['exp'] = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode(claims, settings_conf['jwt_secret'], algorithm=settings_conf['jwt_algorithm'])

# FastAPI security scheme
auth_scheme = HTTPBearer()

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)
) -> Principal:
    """FastAPI dependency for getting the authenticated caller.
    
    Raises:
        HTTPException: If authentication fails
    """
    try:
        return decode_token(credentials.credentials)
    except TokenExpiredError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired"
        )
    except AuthError as e:
        logger.debug(f"Rejected bearer token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )

async def require_staff(principal: Principal = Depends(get_current_user)) -> Principal:
    """FastAPI dependency restricting a route to staff accounts."""
    if not principal.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff access required"
        )
    return principal

async def require_supervisor(principal: Principal = Depends(get_current_user)) -> Principal:
    """FastAPI dependency restricting a route to managers and admins."""
    if not principal.is_supervisor:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Manager or admin access required"
        )
    return principal

async def require_payment_gateway(principal: Principal = Depends(get_current_user)) -> Principal:
    """FastAPI dependency restricting a route to the payment gateway callback.

    Captured amounts are only trusted from the gateway itself, never from
    the paying user.
    """
    if principal.role != UserRole.PAYMENT_GATEWAY:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Payment gateway access required"
        )
    return principal

# Export public interface
__all__ = [
    'UserRole',
    'STAFF_ROLES',
    'SUPERVISOR_ROLES',
    'Principal',
    'AuthError',
    'TokenExpiredError',
    'decode_token',
    'create_token',
    'get_current_user',
    'require_staff',
    'require_supervisor',
    'require_payment_gateway'
]

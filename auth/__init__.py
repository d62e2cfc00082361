"""Authentication module: bearer token verification.

Tokens are issued by the external auth service. This module only verifies
them and exposes the caller's user id to routes:

1. HS256 (or configured algorithm) JWT verification with python-jose
2. A FastAPI dependency returning the authenticated user id
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError, ExpiredSignatureError

from config import settings_conf
from errors import ForbiddenError, UnauthorizedError

# Configure logging
logger = logging.getLogger(__name__)


class TokenVerifier:
    """Verifies bearer tokens and extracts the user id."""

    def __init__(self, secret: Optional[str] = None, algorithm: Optional[str] = None):
        """Initialize verifier.

        Args:
            secret: Signing secret, defaults to the jwt_secret setting
            algorithm: JWT algorithm, defaults to the jwt_algorithm setting
        """
        self.secret = secret or settings_conf['jwt_secret']
        self.algorithm = algorithm or settings_conf['jwt_algorithm']

    def decode(self, token: str) -> Dict[str, Any]:
        """Decode and verify a token.

        Raises:
            UnauthorizedError: If the token is expired, malformed or has no subject
        """
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise UnauthorizedError("Token has expired")
        except JWTError as e:
            logger.debug(f"Rejected bearer token: {e}")
            raise UnauthorizedError("Invalid token")

        if not claims.get('sub'):
            raise UnauthorizedError("Token has no subject")
        return claims

    def user_id(self, token: str) -> str:
        return str(self.decode(token)['sub'])


# Global verifier instance
verifier = TokenVerifier()

# Security scheme for protected routes
auth_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme)
) -> str:
    """FastAPI dependency for getting the authenticated user id.

    Raises:
        UnauthorizedError: If no valid bearer token is present
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Missing bearer token")
    return verifier.user_id(credentials.credentials)


async def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme)
) -> str:
    """FastAPI dependency for administrative routes.

    The token must carry ``role: admin`` or list ``admin`` in ``roles``.

    Raises:
        UnauthorizedError: If no valid bearer token is present
        ForbiddenError: If the token lacks the admin role
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Missing bearer token")
    claims = verifier.decode(credentials.credentials)
    if claims.get('role') != 'admin' and 'admin' not in (claims.get('roles') or []):
        raise ForbiddenError("Administrator role required")
    return str(claims['sub'])


# Export public interface
__all__ = [
    'verifier',
    'require_admin',
    'TokenVerifier',
    'get_current_user',
    'auth_scheme',
]

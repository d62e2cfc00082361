"""Error taxonomy shared by the marketplace services.

Every error carries a stable machine-readable ``code`` and the HTTP status the
API layer answers with. Services raise these directly; the API turns them into
``{"error": {"code": ..., "message": ...}}`` responses.
"""
from typing import Any, Dict, Optional


class MarketplaceError(Exception):
    """Base exception for marketplace operations."""
    code = 'INTERNAL_ERROR'
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for an API error body."""
        body = {'code': self.code, 'message': self.message}
        if self.details:
            body['details'] = self.details
        return body


class NotFoundError(MarketplaceError):
    """Raised when no entity matches the requested id."""
    code = 'NOT_FOUND'
    status_code = 404


class UnauthorizedError(MarketplaceError):
    """Raised when the caller presents no valid credentials."""
    code = 'UNAUTHORIZED'
    status_code = 401


class ForbiddenError(MarketplaceError):
    """Raised when the caller lacks permission for the operation."""
    code = 'FORBIDDEN'
    status_code = 403


class InvalidStateError(MarketplaceError):
    """Raised when an operation is not legal for the entity's current status."""
    code = 'INVALID_STATE'
    status_code = 409


class InvalidTransitionError(InvalidStateError):
    """Raised when a status change is not in the transition table."""
    code = 'INVALID_TRANSITION'

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot move from {current} to {requested}",
            {'current_status': current, 'requested_status': requested}
        )


class ValidationError(MarketplaceError):
    """Raised for malformed input."""
    code = 'VALIDATION_ERROR'
    status_code = 400


class UpstreamFailure(MarketplaceError):
    """Raised when a remote collaborator or the database fails."""
    code = 'UPSTREAM_FAILURE'
    status_code = 502


class SelfFollowError(ValidationError):
    """Raised when a user tries to follow themselves."""
    code = 'SELF_FOLLOW'


class AlreadyFollowingError(InvalidStateError):
    """Raised when the follow edge already exists."""
    code = 'ALREADY_FOLLOWING'


__all__ = [
    'MarketplaceError',
    'NotFoundError',
    'UnauthorizedError',
    'ForbiddenError',
    'InvalidStateError',
    'InvalidTransitionError',
    'ValidationError',
    'UpstreamFailure',
    'SelfFollowError',
    'AlreadyFollowingError',
]

"""Database exceptions."""

from errors import UpstreamFailure


class DatabaseError(UpstreamFailure):
    """Raised when a database call fails for infrastructure reasons."""
    pass


class DatabaseSchemaError(DatabaseError):
    """Raised when schema initialization or migration fails."""
    pass

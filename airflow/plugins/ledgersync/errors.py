"""
Exception types raised by the ledger sync engine.

- AuthError: OAuth token acquisition failed
- ApiError: Source API returned a non-success response (or could not be read)
- StoreError: Destination/control database operation failed
- ConfigError: Required setting missing or invalid at startup
"""
from typing import Optional

__all__ = ['SyncError', 'AuthError', 'ApiError', 'StoreError', 'ConfigError']


class SyncError(Exception):
    """Base class for all sync engine errors."""


class AuthError(SyncError):
    """Token endpoint refused the grant or returned an unusable response."""


class ApiError(SyncError):
    """
    Source API request failed.

    Attributes:
        status: HTTP status code, or None when no response was received
            (transport error, unreadable body, page cap exceeded)
        body: Response body text (may be empty)
    """

    def __init__(self, message: str, status: Optional[int] = None, body: str = ''):
        super().__init__(message)
        self.status = status
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is None:
            return base
        return f"{base} (HTTP {self.status}): {self.body}"


class StoreError(SyncError):
    """Destination or control store write/read failed."""


class ConfigError(SyncError):
    """Configuration is missing or invalid. Fatal, raised before any scope runs."""

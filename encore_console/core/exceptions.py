"""Custom exception classes."""
from typing import Optional


class EncoreConsoleError(Exception):
    """Base exception for console errors."""
    pass


class AuthTokenError(EncoreConsoleError):
    """Raised when a bearer credential cannot be obtained."""
    pass


class BackendRequestError(EncoreConsoleError):
    """Raised when a call to the Encore backend fails.

    `status` is the HTTP status returned by the backend, or None when no
    response was received.
    """

    def __init__(self, status: Optional[int], message: str):
        super().__init__(message)
        self.status = status
        self.message = message

    @property
    def is_client_error(self) -> bool:
        """True for 4xx responses."""
        return self.status is not None and 400 <= self.status < 500

    @property
    def is_not_found(self) -> bool:
        return self.status == 404

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status!r}, message={self.message!r})"


class BackendUnreachable(BackendRequestError):
    """Raised when the backend could not be reached at all."""

    def __init__(self, message: str):
        super().__init__(None, message)


class LocalGatewayError(EncoreConsoleError):
    """Raised when the gateway fails to set up a backend request."""
    pass

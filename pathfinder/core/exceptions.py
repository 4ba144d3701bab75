"""Pathfinder exceptions.

Every error carries a ``kind`` (its class name, used when recording job failures) and a ``retryable`` flag consulted
by the job brokers when deciding between a retry and a terminal failure.
"""

from typing import Optional


class PathfinderError(Exception):
    """Base class for all Pathfinder errors."""

    retryable: bool = True

    def __init__(self, message: str = "", *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def kind(self) -> str:
        return type(self).__name__


class InvalidInputError(PathfinderError):
    """Raised when a payload or argument has the wrong shape, e.g. fewer than two waypoints."""

    retryable = False

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, status_code=400)


class ServiceUnavailableError(PathfinderError):
    """Raised on transient routing provider or network failures (connection errors, timeouts, 5xx)."""

    def __init__(self, message: str = "Route calculation service unavailable", *, status_code: Optional[int] = 503):
        super().__init__(message, status_code=status_code)


class BadRequestError(PathfinderError):
    """Raised when the routing provider rejects a request. Carries the provider's status."""

    retryable = False

    def __init__(
        self,
        message: str = "Routing provider rejected the request",
        *,
        status_code: int = 400,
        provider_status: Optional[str] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.provider_status = provider_status


class PersistenceError(PathfinderError):
    """Raised when a write to the persistence store fails."""

    def __init__(self, message: str = "Failed to update route", *, status_code: Optional[int] = 500):
        super().__init__(message, status_code=status_code)


class NotFoundError(PersistenceError):
    """Raised by the persistence collaborator when the target entity does not exist."""

    retryable = False

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)


class BrokerUnavailableError(PathfinderError):
    """Raised synchronously to enqueueing callers when the job broker cannot be reached or is closed."""

    def __init__(self, message: str = "Job broker unavailable"):
        super().__init__(message, status_code=503)


class QueueNotFoundError(KeyError):
    """Raised when no queue is registered for the requested job type."""

    pass

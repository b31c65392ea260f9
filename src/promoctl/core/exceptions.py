"""Custom exceptions for promoctl.

Every exception carries the CLI exit code it maps to:
0 success, 1 validation, 2 conflict, 3 rollout failed, 4 unavailable.
"""

from typing import Any


class PromoCtlError(Exception):
    """Base exception for all promoctl errors."""

    exit_code = 1

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class ConfigError(PromoCtlError):
    """Configuration-related errors."""

    pass


class ValidationError(PromoCtlError):
    """Input validation errors. Raised before any state is mutated."""

    pass


class InvalidOrderError(ValidationError):
    """Promotion requested against the configured stage order."""

    def __init__(
        self,
        message: str,
        from_env: str | None = None,
        to_env: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.from_env = from_env
        self.to_env = to_env


class NotFoundError(PromoCtlError):
    """Requested tag, deployment or promotion does not exist."""

    pass


class ConflictError(PromoCtlError):
    """Concurrent attempt, stale compare-and-swap or blocked deployment."""

    exit_code = 2


class RolloutFailedError(PromoCtlError):
    """Rollout attempt ended rolled back or failed."""

    exit_code = 3

    def __init__(
        self,
        message: str,
        attempt_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.attempt_id = attempt_id


class FatalError(RolloutFailedError):
    """Rollback exhausted its retries; manual intervention required."""

    pass


class UnavailableError(PromoCtlError):
    """Transient error from an external system."""

    exit_code = 4


class RegistryUnavailableError(UnavailableError):
    """Artifact registry could not be reached."""

    pass


class OrchestratorError(UnavailableError):
    """Container orchestrator call failed."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code


class AuthenticationError(PromoCtlError):
    """Authentication/authorization errors."""

    pass

"""
Error taxonomy for device authorization.

Only an explicit policy mismatch ends in denial, and denial is an outcome
(see models.AuthorizationOutcome), not an exception. Everything here is
either retryable or benign.
"""

from typing import Optional


class TrackoraError(Exception):
    """Base class for client-side errors."""


class IdentityUnavailable(TrackoraError):
    """Local storage could not yield a device identifier. Entry is blocked."""


class RegistryError(TrackoraError):
    """Transport-level failure talking to the device registry."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class DeviceConflictError(TrackoraError):
    """The registry already holds an active record for this account/identifier."""


class CheckFailed(TrackoraError):
    """An authorization check could not complete. Retryable, never punitive."""


class AuthError(TrackoraError):
    """Failure reported by the authentication provider."""

    def __init__(self, message: str, is_network_error: bool = False):
        super().__init__(message)
        self.is_network_error = is_network_error

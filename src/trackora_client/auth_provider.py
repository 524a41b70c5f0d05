"""
Authentication provider contract.

The provider (OTP or password) is a black box: it hands back an
AuthorizedPrincipal or raises AuthError, and can terminate the session.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, Optional

import aiohttp

from .errors import AuthError
from .models import AuthorizedPrincipal

NETWORK_ERROR_MARKERS = (
    "network request failed",
    "failed to fetch",
    "network",
    "econnrefused",
    "etimedout",
    "aborted",
)

NETWORK_ERROR_MESSAGE = "Unable to connect. Please check your internet connection and try again."


class AuthProvider(ABC):

    @abstractmethod
    async def sign_in(self, credentials: Dict[str, str]) -> AuthorizedPrincipal:
        """Authenticate; raise AuthError on failure."""

    @abstractmethod
    async def sign_out(self) -> None:
        """Terminate the current session; raise AuthError on failure."""


def is_network_error(error: BaseException) -> bool:
    """True when error looks like connectivity trouble rather than bad credentials."""
    if isinstance(error, AuthError):
        if error.is_network_error:
            return True
    elif isinstance(error, (asyncio.TimeoutError, ConnectionError, aiohttp.ClientConnectionError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in NETWORK_ERROR_MARKERS)


def get_network_error_message(error: BaseException) -> Optional[str]:
    """User-facing connectivity message, or None for non-network errors."""
    return NETWORK_ERROR_MESSAGE if is_network_error(error) else None

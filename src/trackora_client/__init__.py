"""
Trackora mobile client core
===========================
Device identity, registry client and the device-binding authorization
engine with its session guard.
"""

from .authorization_engine import AuthorizationEngine
from .auth_provider import AuthProvider, get_network_error_message, is_network_error
from .errors import (
    AuthError,
    CheckFailed,
    DeviceConflictError,
    IdentityUnavailable,
    RegistryError,
    TrackoraError,
)
from .identity import DeviceIdentityStore, JsonFileStorage, LocalStorage, MemoryStorage
from .models import (
    AuthorizationDecision,
    AuthorizationOutcome,
    AuthorizedPrincipal,
    DeviceIdentity,
    DeviceRecord,
)
from .registry_client import DeviceRegistry, DeviceRegistryClient, close_client, get_client
from .retry import RetryResult, retry_with_backoff
from .session_guard import GuardResult, GuardState, SessionGuard, landing_route

__version__ = "1.0.0"

__all__ = [
    'AuthorizationEngine',
    'AuthProvider',
    'get_network_error_message',
    'is_network_error',
    'AuthError',
    'CheckFailed',
    'DeviceConflictError',
    'IdentityUnavailable',
    'RegistryError',
    'TrackoraError',
    'DeviceIdentityStore',
    'JsonFileStorage',
    'LocalStorage',
    'MemoryStorage',
    'AuthorizationDecision',
    'AuthorizationOutcome',
    'AuthorizedPrincipal',
    'DeviceIdentity',
    'DeviceRecord',
    'DeviceRegistry',
    'DeviceRegistryClient',
    'close_client',
    'get_client',
    'RetryResult',
    'retry_with_backoff',
    'GuardResult',
    'GuardState',
    'SessionGuard',
    'landing_route',
]

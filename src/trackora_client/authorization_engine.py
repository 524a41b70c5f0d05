"""
Authorization Engine
====================
Decides whether this installation may act as an authenticated account.

Policy, evaluated in order on every login and every resume:
1. Admin check: an active admin-flagged record for the identifier, any
   account, grants ADMIN_BYPASS and short-circuits everything else.
2. Account check, classified by the account's active record count:
   - 0: register this identity -> ALLOWED_AUTO_REGISTERED
   - 1: same identifier -> ALLOWED; different -> move the record in place
     -> ALLOWED_RECONCILED
   - 2+: exact match -> ALLOWED; otherwise sign out -> DENIED

A check touches the registry with at most one insert or one update and
calls sign-out at most once. Registry failures and timeouts raise
CheckFailed; they never produce DENIED and never allow access.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Dict, List, Tuple, TypeVar

from .auth_provider import AuthProvider
from .config import (
    REGISTRY_TIMEOUT_SECONDS,
    SIGNUP_RETRY_ATTEMPTS,
    SIGNUP_RETRY_DELAY_SECONDS,
    SIGNUP_RETRY_BACKOFF,
)
from .errors import AuthError, CheckFailed, DeviceConflictError, RegistryError
from .models import (
    AuthorizationDecision,
    AuthorizationOutcome,
    AuthorizedPrincipal,
    DeviceIdentity,
    DeviceRecord,
)
from .registry_client import DeviceRegistry
from .retry import retry_with_backoff

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNRECOGNIZED_DEVICE = "unrecognized device"


class AuthorizationEngine:
    """
    Device-binding state machine.

    Usage:
        engine = AuthorizationEngine(registry, auth_provider)
        decision = await engine.check(principal, identity)
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        auth_provider: AuthProvider,
        timeout: float = REGISTRY_TIMEOUT_SECONDS,
        signup_retry_attempts: int = SIGNUP_RETRY_ATTEMPTS,
        signup_retry_delay: float = SIGNUP_RETRY_DELAY_SECONDS,
        signup_retry_backoff: float = SIGNUP_RETRY_BACKOFF,
    ):
        self.registry = registry
        self.auth_provider = auth_provider
        self.timeout = timeout
        self.signup_retry_attempts = signup_retry_attempts
        self.signup_retry_delay = signup_retry_delay
        self.signup_retry_backoff = signup_retry_backoff
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._lock_users: Dict[Tuple[str, str], int] = {}

    @asynccontextmanager
    async def _serialized(self, account_id: str, identifier: str) -> AsyncIterator[None]:
        """Hold the (account, identifier) lock. The entry is dropped once nobody holds or awaits it."""
        key = (account_id, identifier)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def check(
        self,
        principal: AuthorizedPrincipal,
        identity: DeviceIdentity,
        after_signup: bool = False
    ) -> AuthorizationDecision:
        """
        Run one authorization check.

        Checks for the same (account, identifier) pair are serialized, so
        concurrent triggers cannot both auto-register.

        Args:
            principal: authenticated account
            identity: this installation's identity
            after_signup: retry an empty account read, the record written
                during signup may still be propagating

        Raises:
            CheckFailed: the registry could not be consulted
        """
        if not principal.account_id:
            raise ValueError("principal.account_id is required")

        async with self._serialized(principal.account_id, identity.identifier):
            logger.debug(f"[AUTHZ] {principal.account_id}: identity resolved as {identity.identifier}")

            if await self._is_admin_device(identity):
                logger.info(f"[AUTHZ] Admin device {identity.identifier} - bypassing binding for {principal.account_id}")
                return AuthorizationDecision(AuthorizationOutcome.ADMIN_BYPASS)

            devices = await self._account_devices(principal.account_id, after_signup)
            logger.debug(f"[AUTHZ] {principal.account_id}: {len(devices)} active device(s)")

            if not devices:
                return await self._auto_register(principal, identity)
            if len(devices) == 1:
                return await self._check_single(principal, identity, devices[0])
            return await self._check_multiple(principal, identity, devices)

    async def _call(self, what: str, awaitable: Awaitable[T]) -> T:
        """Await one registry call under the timeout, mapping failures to CheckFailed."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"[AUTHZ] {what} timed out after {self.timeout}s")
            raise CheckFailed(f"{what} timed out") from e
        except RegistryError as e:
            logger.warning(f"[AUTHZ] {what} failed: {e}")
            raise CheckFailed(f"{what} failed: {e}") from e

    async def _is_admin_device(self, identity: DeviceIdentity) -> bool:
        records = await self._call(
            "admin device lookup",
            self.registry.list_admin_by_identifier(identity.identifier)
        )
        return any(
            r.is_admin_device and r.is_active and r.device_identifier == identity.identifier
            for r in records
        )

    async def _account_devices(self, account_id: str, after_signup: bool) -> List[DeviceRecord]:
        async def read() -> List[DeviceRecord]:
            records = await self._call("account device lookup", self.registry.list_by_account(account_id))
            return [r for r in records if r.is_active and r.account_id == account_id]

        if not after_signup:
            return await read()

        result = await retry_with_backoff(
            read,
            attempts=self.signup_retry_attempts,
            delay=self.signup_retry_delay,
            backoff=self.signup_retry_backoff,
            retry_if=lambda records: not records,
        )
        if result.exhausted:
            logger.info(f"[AUTHZ] {account_id}: no device visible after {result.attempts} attempts, registering")
        return result.value

    async def _auto_register(self, principal: AuthorizedPrincipal, identity: DeviceIdentity) -> AuthorizationDecision:
        try:
            record = await self._call("device registration", self.registry.insert(principal.account_id, identity))
        except DeviceConflictError as e:
            logger.info(f"[AUTHZ] Conflict collapsed for {principal.account_id}/{identity.identifier}: {e}")
            return AuthorizationDecision(AuthorizationOutcome.ALLOWED, conflict_collapsed=True)

        logger.info(f"[AUTHZ] Auto-registered {identity.identifier} for {principal.account_id} (id={record.id})")
        return AuthorizationDecision(AuthorizationOutcome.ALLOWED_AUTO_REGISTERED, record_id=record.id)

    async def _check_single(
        self,
        principal: AuthorizedPrincipal,
        identity: DeviceIdentity,
        record: DeviceRecord
    ) -> AuthorizationDecision:
        if record.device_identifier == identity.identifier:
            return AuthorizationDecision(AuthorizationOutcome.ALLOWED, record_id=record.id)

        # Single bound device: a changed identifier is treated as a reinstall
        try:
            await self._call("device reconciliation", self.registry.update_identifier(record.id, identity))
        except DeviceConflictError as e:
            logger.info(f"[AUTHZ] Conflict collapsed while reconciling {principal.account_id}: {e}")
            return AuthorizationDecision(AuthorizationOutcome.ALLOWED, record_id=record.id, conflict_collapsed=True)
        logger.info(
            f"[AUTHZ] Reconciled {principal.account_id}: {record.device_identifier} -> {identity.identifier}"
        )
        return AuthorizationDecision(AuthorizationOutcome.ALLOWED_RECONCILED, record_id=record.id)

    async def _check_multiple(
        self,
        principal: AuthorizedPrincipal,
        identity: DeviceIdentity,
        records: List[DeviceRecord]
    ) -> AuthorizationDecision:
        for record in records:
            if record.device_identifier == identity.identifier:
                return AuthorizationDecision(AuthorizationOutcome.ALLOWED, record_id=record.id)

        logger.warning(
            f"[AUTHZ] Unrecognized device {identity.identifier} for {principal.account_id} "
            f"({len(records)} bound devices) - signing out"
        )
        terminated = await self._sign_out()
        return AuthorizationDecision(
            AuthorizationOutcome.DENIED,
            reason=UNRECOGNIZED_DEVICE,
            session_terminated=terminated,
        )

    async def _sign_out(self) -> bool:
        try:
            await asyncio.wait_for(self.auth_provider.sign_out(), timeout=self.timeout)
            return True
        except (AuthError, asyncio.TimeoutError) as e:
            logger.error(f"[AUTHZ] Sign-out failed: {e}")
            return False


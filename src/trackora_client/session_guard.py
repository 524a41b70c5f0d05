"""
Session Guard
=============
Turns authorization decisions into session-level effects.

Runs right after interactive login/signup and on every cold start or
foreground event while a session exists. States:
- AUTHENTICATED: navigate to the role's landing route
- DENIED: session terminated, blocking message shown
- PENDING: neutral loading state, session kept, retried on next foreground
- SIGNED_OUT: no session, route to login (returning) or signup (first visit)
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from .auth_provider import AuthProvider
from .authorization_engine import AuthorizationEngine
from .config import (
    LOGIN_ROUTE,
    MANAGER_HOME_ROUTE,
    REGISTRY_TIMEOUT_SECONDS,
    SIGNUP_ROUTE,
    STAFF_HOME_ROUTE,
)
from .errors import AuthError, CheckFailed, IdentityUnavailable, RegistryError
from .identity import DeviceIdentityStore
from .models import AuthorizationDecision, AuthorizationOutcome, AuthorizedPrincipal, DeviceIdentity
from .registry_client import DeviceRegistry

logger = logging.getLogger(__name__)

DENIED_TITLE = "Unauthorized Device"
DENIED_MESSAGE = "This device is not registered for your account. Please contact your administrator."

ROLE_ROUTES = {
    "manager": MANAGER_HOME_ROUTE,
    "admin": MANAGER_HOME_ROUTE,
    "staff": STAFF_HOME_ROUTE,
}


class GuardState(str, Enum):
    AUTHENTICATED = "AUTHENTICATED"
    DENIED = "DENIED"
    PENDING = "PENDING"
    SIGNED_OUT = "SIGNED_OUT"


@dataclass(frozen=True)
class GuardResult:
    """What the UI should do next. Carries role and decision explicitly."""

    state: GuardState
    route: Optional[str] = None
    role: Optional[str] = None
    decision: Optional[AuthorizationDecision] = None
    title: Optional[str] = None
    message: Optional[str] = None

    @property
    def can_navigate(self) -> bool:
        return self.state is GuardState.AUTHENTICATED


def landing_route(role: Optional[str]) -> str:
    """Landing page for a profile role; unknown or missing roles land on the staff home."""
    return ROLE_ROUTES.get((role or "").lower(), STAFF_HOME_ROUTE)


class SessionGuard:
    """
    Usage:
        guard = SessionGuard(engine, identity_store, registry, auth_provider)
        result = await guard.on_foreground(principal)
        if result.can_navigate:
            router.replace(result.route)
    """

    def __init__(
        self,
        engine: AuthorizationEngine,
        identity_store: DeviceIdentityStore,
        registry: DeviceRegistry,
        auth_provider: AuthProvider,
        timeout: float = REGISTRY_TIMEOUT_SECONDS,
    ):
        self.engine = engine
        self.identity_store = identity_store
        self.registry = registry
        self.auth_provider = auth_provider
        self.timeout = timeout
        self._in_flight: Dict[Tuple[str, str], "asyncio.Future[GuardResult]"] = {}

    async def on_authenticated(self, principal: AuthorizedPrincipal, after_signup: bool = False) -> GuardResult:
        """Guard entry right after an interactive login or signup."""
        return await self._guard(principal, after_signup)

    async def on_foreground(self, principal: Optional[AuthorizedPrincipal], after_signup: bool = False) -> GuardResult:
        """Guard entry on cold start / resume. principal is None when no session exists."""
        if principal is None:
            return self._signed_out()
        return await self._guard(principal, after_signup)

    def _signed_out(self) -> GuardResult:
        if self.identity_store.has_visited():
            logger.info("[GUARD] No session, returning visitor -> login")
            return GuardResult(GuardState.SIGNED_OUT, route=LOGIN_ROUTE)

        self.identity_store.mark_visited()
        logger.info("[GUARD] No session, first visit -> signup")
        return GuardResult(GuardState.SIGNED_OUT, route=SIGNUP_ROUTE)

    async def _guard(self, principal: AuthorizedPrincipal, after_signup: bool) -> GuardResult:
        try:
            identity = self.identity_store.get_identity()
        except IdentityUnavailable as e:
            logger.error(f"[GUARD] Device unidentifiable, blocking entry: {e}")
            return GuardResult(GuardState.PENDING)

        # Rapid repeated triggers share the check already in flight
        key = (principal.account_id, identity.identifier)
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._evaluate(principal, identity, after_signup))
            self._in_flight[key] = task
            task.add_done_callback(lambda t: self._forget(key, t))
        else:
            logger.debug(f"[GUARD] Joining in-flight check for {principal.account_id}")

        return await asyncio.shield(task)

    def _forget(self, key: Tuple[str, str], task: "asyncio.Future[GuardResult]") -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _evaluate(
        self,
        principal: AuthorizedPrincipal,
        identity: DeviceIdentity,
        after_signup: bool
    ) -> GuardResult:
        try:
            decision = await self.engine.check(principal, identity, after_signup=after_signup)
        except CheckFailed as e:
            logger.warning(f"[GUARD] Check failed for {principal.account_id}, will retry on next foreground: {e}")
            return GuardResult(GuardState.PENDING)

        if decision.outcome is AuthorizationOutcome.DENIED:
            if not decision.session_terminated:
                await self._terminate_session()
            logger.warning(f"[GUARD] Access denied for {principal.account_id}: {decision.reason}")
            return GuardResult(
                GuardState.DENIED,
                decision=decision,
                title=DENIED_TITLE,
                message=DENIED_MESSAGE,
            )

        role = await self._fetch_role(principal.account_id)
        route = landing_route(role)
        logger.info(f"[GUARD] {principal.account_id} {decision.outcome.value} -> {route} (role={role})")
        return GuardResult(GuardState.AUTHENTICATED, route=route, role=role, decision=decision)

    async def _fetch_role(self, account_id: str) -> Optional[str]:
        try:
            return await asyncio.wait_for(self.registry.get_profile_role(account_id), timeout=self.timeout)
        except (RegistryError, asyncio.TimeoutError) as e:
            logger.error(f"[GUARD] Error fetching role for {account_id}: {e}")
            return None

    async def _terminate_session(self) -> None:
        try:
            await asyncio.wait_for(self.auth_provider.sign_out(), timeout=self.timeout)
        except (AuthError, asyncio.TimeoutError) as e:
            # The denial stays on screen regardless
            logger.error(f"[GUARD] Could not terminate session: {e}")

"""
Smoke check for the device registry backend.
============================================
Runs one session-guard pass against a live backend for a given account.

    python -m trackora_client.verify_backend --account acc-123
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Dict

from .authorization_engine import AuthorizationEngine
from .auth_provider import AuthProvider
from .identity import DeviceIdentityStore, JsonFileStorage
from .models import AuthorizedPrincipal
from .registry_client import close_client, get_client
from .session_guard import SessionGuard


class PresetSessionProvider(AuthProvider):
    """Stands in for the real provider: the session already exists."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        self.signed_out = False

    async def sign_in(self, credentials: Dict[str, str]) -> AuthorizedPrincipal:
        return AuthorizedPrincipal(account_id=self.account_id, session_token="preset")

    async def sign_out(self) -> None:
        self.signed_out = True


async def verify(backend_url: str, account_id: str, after_signup: bool) -> bool:
    print("=" * 60)
    print("Trackora Device Registry Check")
    print("=" * 60)

    registry = get_client(backend_url)
    provider = PresetSessionProvider(account_id)
    store = DeviceIdentityStore(JsonFileStorage())
    guard = SessionGuard(AuthorizationEngine(registry, provider), store, registry, provider)

    try:
        print("\n[1] Testing health check...")
        health = await registry.health_check()
        if health.get("status") != "online":
            print(f"    [X] Backend is offline: {health.get('error', 'Unknown error')}")
            return False
        print("    [OK] Backend is online")

        identity = store.get_identity()
        print(f"\n[2] Device identifier: {identity.identifier}")

        principal = await provider.sign_in({})
        result = await guard.on_authenticated(principal, after_signup=after_signup)
        print(f"\n[3] Guard state: {result.state.value}")
        if result.decision:
            print(f"    Outcome: {result.decision.outcome.value}")
        if result.route:
            print(f"    Route: {result.route} (role={result.role})")
        if result.message:
            print(f"    {result.title}: {result.message}")
        return result.can_navigate

    finally:
        await close_client()


def main():
    parser = argparse.ArgumentParser(description="Check device authorization against a registry backend")
    parser.add_argument("--account", required=True, help="Account ID to authorize")
    parser.add_argument("--backend", default=os.environ.get("BACKEND_URL", "http://localhost:8000"))
    parser.add_argument("--after-signup", action="store_true", help="Retry an empty device list first")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    success = asyncio.run(verify(args.backend, args.account, args.after_signup))
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()

import asyncio
import dataclasses
from datetime import datetime
from typing import Dict, List, Optional

import pytest

from trackora_backend.database import DatabaseManager, DeviceRegistryService
from trackora_client.auth_provider import AuthProvider
from trackora_client.authorization_engine import AuthorizationEngine
from trackora_client.errors import AuthError, DeviceConflictError, RegistryError
from trackora_client.identity import DeviceIdentityStore, MemoryStorage
from trackora_client.models import AuthorizedPrincipal, DeviceIdentity, DeviceRecord
from trackora_client.registry_client import DeviceRegistry


# ==================== Pytest Markers ====================
def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (database, API)")


class FakeRegistry(DeviceRegistry):
    """
    In-memory registry with the backend's uniqueness rule.

    hidden_reads: number of list_by_account calls that return nothing,
    simulating a record that is not visible yet.
    fail_on: operation names that raise RegistryError.
    delays: per-operation sleep in seconds.
    """

    def __init__(self, records: Optional[List[DeviceRecord]] = None, roles: Optional[Dict[str, str]] = None):
        self.records: List[DeviceRecord] = list(records or [])
        self.roles = dict(roles or {})
        self.calls: List[str] = []
        self.hidden_reads = 0
        self.fail_on = set()
        self.delays: Dict[str, float] = {}
        self._next_id = max([r.id for r in self.records], default=0) + 1

    async def _enter(self, op: str):
        self.calls.append(op)
        # Yield so concurrent checks interleave at every round trip
        await asyncio.sleep(self.delays.get(op, 0))
        if op in self.fail_on:
            raise RegistryError(f"{op} unavailable")

    async def list_by_account(self, account_id: str) -> List[DeviceRecord]:
        await self._enter("list_by_account")
        if self.hidden_reads > 0:
            self.hidden_reads -= 1
            return []
        return [r for r in self.records if r.account_id == account_id and r.is_active]

    async def list_admin_by_identifier(self, device_identifier: str) -> List[DeviceRecord]:
        await self._enter("list_admin_by_identifier")
        return [
            r for r in self.records
            if r.device_identifier == device_identifier and r.is_admin_device and r.is_active
        ]

    async def insert(self, account_id: str, identity: DeviceIdentity) -> DeviceRecord:
        await self._enter("insert")
        for r in self.records:
            if r.account_id == account_id and r.device_identifier == identity.identifier and r.is_active:
                raise DeviceConflictError(f"{account_id}/{identity.identifier} exists")
        record = DeviceRecord(
            id=self._next_id,
            account_id=account_id,
            device_identifier=identity.identifier,
            model=identity.model,
            os_version=identity.platform,
            created_at=datetime.utcnow(),
            updated_at=datetime.utcnow(),
        )
        self._next_id += 1
        self.records.append(record)
        return record

    async def update_identifier(self, record_id: int, identity: DeviceIdentity) -> None:
        await self._enter("update_identifier")
        for i, r in enumerate(self.records):
            if r.id == record_id:
                self.records[i] = dataclasses.replace(
                    r,
                    device_identifier=identity.identifier,
                    model=identity.model,
                    os_version=identity.platform,
                    updated_at=datetime.utcnow(),
                )
                return
        raise RegistryError(f"record {record_id} not found", status=404)

    async def get_profile_role(self, account_id: str) -> Optional[str]:
        await self._enter("get_profile_role")
        return self.roles.get(account_id)

    def active_for(self, account_id: str) -> List[DeviceRecord]:
        return [r for r in self.records if r.account_id == account_id and r.is_active]


class FakeAuthProvider(AuthProvider):

    def __init__(self, fail_sign_out: bool = False):
        self.sign_out_calls = 0
        self.fail_sign_out = fail_sign_out
        self.signed_in = True

    async def sign_in(self, credentials: Dict[str, str]) -> AuthorizedPrincipal:
        if credentials.get("password") != "secret":
            raise AuthError("Invalid login credentials")
        self.signed_in = True
        return AuthorizedPrincipal(account_id=credentials["account_id"], session_token="token")

    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        if self.fail_sign_out:
            raise AuthError("Network request failed", is_network_error=True)
        self.signed_in = False


def make_record(record_id: int, account_id: Optional[str], identifier: str, admin: bool = False) -> DeviceRecord:
    return DeviceRecord(
        id=record_id,
        account_id=account_id,
        device_identifier=identifier,
        is_active=True,
        is_admin_device=admin,
    )


def principal(account_id: str) -> AuthorizedPrincipal:
    return AuthorizedPrincipal(account_id=account_id, session_token=f"token-{account_id}")


def identity(identifier: str) -> DeviceIdentity:
    return DeviceIdentity(identifier=identifier, display_name="Pixel 8", platform="android", model_name="Pixel 8")


@pytest.fixture()
def registry():
    return FakeRegistry()


@pytest.fixture()
def auth_provider():
    return FakeAuthProvider()


@pytest.fixture()
def engine(registry, auth_provider):
    return AuthorizationEngine(
        registry,
        auth_provider,
        timeout=1.0,
        signup_retry_attempts=3,
        signup_retry_delay=0.01,
    )


@pytest.fixture()
def identity_store():
    metadata = {"display_name": "Pixel 8", "platform": "android", "model_name": "Pixel 8"}
    return DeviceIdentityStore(MemoryStorage({"workflow_device_id": "abc"}), metadata=metadata)


@pytest.fixture()
def db_manager():
    manager = DatabaseManager(database_url="sqlite://")
    assert manager.initialize()
    yield manager
    manager.close()


@pytest.fixture()
def registry_service(db_manager):
    return DeviceRegistryService(db_manager)

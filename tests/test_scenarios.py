"""
Login scenarios run through the engine against the SQLAlchemy registry.
"""

import asyncio
from typing import List, Optional

import pytest

from trackora_backend.database import DeviceRegistryService, RegistryConflict
from trackora_client.authorization_engine import AuthorizationEngine
from trackora_client.errors import DeviceConflictError
from trackora_client.models import AuthorizationOutcome, DeviceIdentity, DeviceRecord
from trackora_client.registry_client import DeviceRegistry

from conftest import FakeAuthProvider, identity, principal

pytestmark = pytest.mark.integration


class ServiceRegistry(DeviceRegistry):
    """Adapts the backend service to the client registry contract, in process."""

    def __init__(self, service: DeviceRegistryService, hide_account_reads: int = 0):
        self.service = service
        self.hide_account_reads = hide_account_reads

    @staticmethod
    def _convert(row) -> DeviceRecord:
        return DeviceRecord.from_dict(row.to_dict())

    async def list_by_account(self, account_id: str) -> List[DeviceRecord]:
        await asyncio.sleep(0)
        if self.hide_account_reads:
            self.hide_account_reads -= 1
            return []
        return [self._convert(r) for r in self.service.list_by_account(account_id)]

    async def list_admin_by_identifier(self, device_identifier: str) -> List[DeviceRecord]:
        await asyncio.sleep(0)
        return [self._convert(r) for r in self.service.list_admin_by_identifier(device_identifier)]

    async def insert(self, account_id: str, identity: DeviceIdentity) -> DeviceRecord:
        await asyncio.sleep(0)
        try:
            row = self.service.insert_device(account_id, identity.identifier, identity.model, identity.platform)
        except RegistryConflict as e:
            raise DeviceConflictError(str(e)) from e
        return self._convert(row)

    async def update_identifier(self, record_id: int, identity: DeviceIdentity) -> None:
        await asyncio.sleep(0)
        self.service.update_identifier(record_id, identity.identifier, identity.model, identity.platform)

    async def get_profile_role(self, account_id: str) -> Optional[str]:
        profile = self.service.get_profile(account_id)
        return profile.role if profile else None


def check(engine, account_id, identifier):
    return asyncio.run(engine.check(principal(account_id), identity(identifier)))


def test_auto_register_then_reconcile(registry_service):
    engine = AuthorizationEngine(ServiceRegistry(registry_service), FakeAuthProvider(), timeout=5)

    first = check(engine, "A1", "abc")
    assert first.outcome is AuthorizationOutcome.ALLOWED_AUTO_REGISTERED
    assert [d.device_identifier for d in registry_service.list_by_account("A1")] == ["abc"]

    second = check(engine, "A1", "xyz")
    assert second.outcome is AuthorizationOutcome.ALLOWED_RECONCILED
    devices = registry_service.list_by_account("A1")
    assert [d.device_identifier for d in devices] == ["xyz"]
    assert devices[0].id == first.record_id


def test_multi_device_account_denies_unknown_device(registry_service):
    registry_service.insert_device("A2", "d1")
    registry_service.insert_device("A2", "d2")
    provider = FakeAuthProvider()
    engine = AuthorizationEngine(ServiceRegistry(registry_service), provider, timeout=5)

    decision = check(engine, "A2", "d3")

    assert decision.outcome is AuthorizationOutcome.DENIED
    assert provider.sign_out_calls == 1
    assert sorted(d.device_identifier for d in registry_service.list_by_account("A2")) == ["d1", "d2"]


def test_admin_tablet_leaves_account_untouched(registry_service):
    registry_service.insert_device(None, "root-tablet", is_admin_device=True)
    engine = AuthorizationEngine(ServiceRegistry(registry_service), FakeAuthProvider(), timeout=5)

    decision = check(engine, "A3", "root-tablet")

    assert decision.outcome is AuthorizationOutcome.ADMIN_BYPASS
    assert registry_service.list_by_account("A3") == []


def test_uniqueness_constraint_collapses_lost_race(registry_service):
    registry_service.insert_device("A1", "abc")
    # Another engine instance (no shared lock) whose read missed the row
    engine = AuthorizationEngine(ServiceRegistry(registry_service, hide_account_reads=1), FakeAuthProvider(), timeout=5)

    decision = check(engine, "A1", "abc")

    assert decision.outcome is AuthorizationOutcome.ALLOWED
    assert decision.conflict_collapsed is True
    assert len(registry_service.list_by_account("A1")) == 1


def test_concurrent_first_logins_persist_one_record(registry_service):
    engine = AuthorizationEngine(ServiceRegistry(registry_service), FakeAuthProvider(), timeout=5)

    async def scenario():
        return await asyncio.gather(*[
            engine.check(principal("A1"), identity("abc")) for _ in range(4)
        ])

    decisions = asyncio.run(scenario())

    assert sum(d.outcome is AuthorizationOutcome.ALLOWED_AUTO_REGISTERED for d in decisions) == 1
    assert len(registry_service.list_by_account("A1")) == 1

import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer as StubServer

from trackora_client.authorization_engine import AuthorizationEngine
from trackora_client.errors import DeviceConflictError, RegistryError
from trackora_client.identity import DeviceIdentityStore, MemoryStorage
from trackora_client.models import DeviceIdentity
from trackora_client.registry_client import DeviceRegistryClient
from trackora_client.session_guard import GuardState, SessionGuard

from conftest import FakeAuthProvider, principal

pytestmark = pytest.mark.integration

DEVICE = {
    "id": 7,
    "account_id": "A1",
    "device_identifier": "abc",
    "model": "Pixel 8",
    "os_version": "android",
    "is_active": True,
    "is_admin_device": False,
    "created_at": "2026-01-05T09:30:00",
    "updated_at": "2026-01-05T09:30:00",
}


def build_app(received):
    async def list_devices(request):
        received.append(("GET", request.path, dict(request.query)))
        if request.query["account_id"] == "garbled":
            return web.Response(text='{"devices": [', content_type="application/json")
        if request.query["account_id"] == "partial":
            return web.json_response({"devices": [{"id": "seven"}], "count": 1})
        return web.json_response({"devices": [DEVICE], "count": 1})

    async def list_admin(request):
        received.append(("GET", request.path, dict(request.query)))
        if request.query["device_identifier"] == "garbled":
            return web.Response(text='{"devices": [', content_type="application/json")
        return web.json_response({"devices": [], "count": 0})

    async def create_device(request):
        body = await request.json()
        received.append(("POST", request.path, body))
        if body["device_identifier"] == "taken":
            return web.json_response({"detail": "exists"}, status=409)
        return web.json_response({"success": True, "device": dict(DEVICE, **body)}, status=201)

    async def update_identifier(request):
        body = await request.json()
        received.append(("PATCH", request.path, body))
        return web.json_response({"success": True, "device": dict(DEVICE, **body)})

    async def get_profile(request):
        if request.match_info["account_id"] != "A1":
            return web.json_response({"detail": "Profile not found"}, status=404)
        return web.json_response({"success": True, "profile": {"id": "A1", "role": "manager"}})

    async def create_profile(request):
        body = await request.json()
        received.append(("POST", request.path, body))
        if body["account_id"] == "A1":
            return web.json_response({"detail": "Profile already exists"}, status=409)
        return web.json_response({"success": True, "profile": dict(body, id=body["account_id"], role="staff")}, status=201)

    async def broken(request):
        return web.json_response({"detail": "db down"}, status=500)

    app = web.Application()
    app.router.add_get("/devices", list_devices)
    app.router.add_get("/devices/admin", list_admin)
    app.router.add_post("/devices", create_device)
    app.router.add_patch("/devices/{record_id}/identifier", update_identifier)
    app.router.add_get("/profiles/{account_id}", get_profile)
    app.router.add_post("/profiles", create_profile)
    app.router.add_get("/broken", broken)
    return app


def with_client(scenario):
    async def runner():
        received = []
        server = StubServer(build_app(received))
        await server.start_server()
        client = DeviceRegistryClient(str(server.make_url("/")), timeout=5)
        try:
            return await scenario(client, received)
        finally:
            await client.close()
            await server.close()

    return asyncio.run(runner())


IDENTITY = DeviceIdentity(identifier="abc", display_name="Pixel 8", platform="android", model_name="Pixel 8")


def test_list_by_account_parses_records():
    async def scenario(client, received):
        records = await client.list_by_account("A1")
        return records, received

    records, received = with_client(scenario)

    assert len(records) == 1
    assert records[0].id == 7
    assert records[0].created_at.year == 2026
    assert received[0] == ("GET", "/devices", {"account_id": "A1"})


def test_admin_lookup_sends_identifier():
    async def scenario(client, received):
        records = await client.list_admin_by_identifier("root-tablet")
        return records, received

    records, received = with_client(scenario)

    assert records == []
    assert received[0][2] == {"device_identifier": "root-tablet"}


def test_insert_sends_identity():
    async def scenario(client, received):
        record = await client.insert("A1", IDENTITY)
        return record, received

    record, received = with_client(scenario)

    assert record.device_identifier == "abc"
    assert received[0][2] == {
        "account_id": "A1", "device_identifier": "abc", "model": "Pixel 8", "os_version": "android"
    }


def test_insert_conflict_raises_device_conflict():
    async def scenario(client, received):
        await client.insert("A1", DeviceIdentity(identifier="taken"))

    with pytest.raises(DeviceConflictError):
        with_client(scenario)


def test_update_identifier_patches_record():
    async def scenario(client, received):
        await client.update_identifier(7, DeviceIdentity(identifier="xyz", model_name="Pixel 9"))
        return received

    received = with_client(scenario)

    assert received[0][:2] == ("PATCH", "/devices/7/identifier")
    assert received[0][2]["device_identifier"] == "xyz"
    assert received[0][2]["model"] == "Pixel 9"


def test_profile_role_and_missing_profile():
    async def scenario(client, received):
        return await client.get_profile_role("A1"), await client.get_profile_role("nobody")

    role, missing = with_client(scenario)

    assert role == "manager"
    assert missing is None


def test_server_error_raises_registry_error():
    async def scenario(client, received):
        await client._request("GET", "/broken")

    with pytest.raises(RegistryError) as exc_info:
        with_client(scenario)

    assert exc_info.value.status == 500


def test_unreachable_backend_raises_registry_error():
    async def scenario():
        client = DeviceRegistryClient("http://127.0.0.1:9", timeout=2)
        try:
            await client.list_by_account("A1")
        finally:
            await client.close()

    with pytest.raises(RegistryError):
        asyncio.run(scenario())


def test_health_check_reports_offline():
    async def scenario():
        client = DeviceRegistryClient("http://127.0.0.1:9", timeout=2)
        try:
            return await client.health_check()
        finally:
            await client.close()

    assert asyncio.run(scenario())["status"] == "offline"


def test_create_profile_tolerates_existing_profile():
    async def scenario(client, received):
        created = await client.create_profile("B2", full_name="Ravi")
        existing = await client.create_profile("A1")
        return created, existing

    created, existing = with_client(scenario)

    assert created["role"] == "staff"
    assert existing == {"id": "A1"}


@pytest.mark.parametrize("account_id", ["garbled", "partial"])
def test_malformed_device_list_raises_registry_error(account_id):
    async def scenario(client, received):
        await client.list_by_account(account_id)

    with pytest.raises(RegistryError):
        with_client(scenario)


def test_guard_stays_pending_on_unreadable_registry_body():
    async def scenario(client, received):
        provider = FakeAuthProvider()
        store = DeviceIdentityStore(MemoryStorage({"workflow_device_id": "garbled"}))
        guard = SessionGuard(AuthorizationEngine(client, provider, timeout=5), store, client, provider, timeout=5)
        return await guard.on_authenticated(principal("A1")), provider

    result, provider = with_client(scenario)

    assert result.state is GuardState.PENDING
    assert provider.sign_out_calls == 0

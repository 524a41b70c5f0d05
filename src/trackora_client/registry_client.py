"""
Device Registry Client
======================
Client module connecting the mobile core to the device registry backend.
"""

import aiohttp
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List

from .config import BACKEND_URL, REGISTRY_TIMEOUT_SECONDS
from .errors import RegistryError, DeviceConflictError
from .models import DeviceIdentity, DeviceRecord

logger = logging.getLogger(__name__)


class DeviceRegistry(ABC):
    """Registry contract the authorization engine depends on."""

    @abstractmethod
    async def list_by_account(self, account_id: str) -> List[DeviceRecord]:
        """Active records bound to account_id."""

    @abstractmethod
    async def list_admin_by_identifier(self, device_identifier: str) -> List[DeviceRecord]:
        """Active admin-flagged records with this identifier, any account."""

    @abstractmethod
    async def insert(self, account_id: str, identity: DeviceIdentity) -> DeviceRecord:
        """Insert an active non-admin record. Raises DeviceConflictError on a duplicate."""

    @abstractmethod
    async def update_identifier(self, record_id: int, identity: DeviceIdentity) -> None:
        """Move record_id to identity's identifier and metadata in place."""

    @abstractmethod
    async def get_profile_role(self, account_id: str) -> Optional[str]:
        """Role attribute of the account's profile, None when there is no profile."""


class DeviceRegistryClient(DeviceRegistry):
    """
    Async HTTP client for the Trackora device registry API.
    """

    def __init__(self, backend_url: str = BACKEND_URL, timeout: float = REGISTRY_TIMEOUT_SECONDS):
        self.backend_url = backend_url.rstrip('/')
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self.session

    async def close(self):
        """Close the client session."""
        if self.session and not self.session.closed:
            await self.session.close()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False
    ) -> Optional[Dict[str, Any]]:
        """
        Perform one request and return the decoded JSON body.

        Raises:
            DeviceConflictError: backend answered 409
            RegistryError: any other non-2xx answer, unreadable body, timeout
                or connection failure
        """
        url = f"{self.backend_url}{path}"
        try:
            session = await self._get_session()
            async with session.request(method, url, params=params, json=json) as response:
                if response.status == 409:
                    detail = await response.text()
                    raise DeviceConflictError(detail)
                if response.status == 404 and allow_not_found:
                    return None
                if response.status >= 400:
                    error_text = await response.text()
                    logger.error(f"[REGISTRY] {method} {path} failed: {response.status} - {error_text}")
                    raise RegistryError(f"Registry error {response.status}: {error_text}", status=response.status)
                try:
                    return await response.json()
                except ValueError as e:
                    logger.error(f"[REGISTRY] {method} {path} returned an unreadable body: {e}")
                    raise RegistryError(f"Unreadable response from {method} {path}") from e

        except asyncio.TimeoutError as e:
            logger.error(f"[REGISTRY] {method} {path} timed out")
            raise RegistryError(f"{method} {path} timed out") from e
        except aiohttp.ClientError as e:
            logger.error(f"[REGISTRY] Connection error on {method} {path}: {e}")
            raise RegistryError(f"Connection failed: {e}") from e

    @staticmethod
    def _parse_records(body: Any, path: str) -> List[DeviceRecord]:
        """Decode a {"devices": [...]} body, malformed payloads become RegistryError."""
        try:
            return [DeviceRecord.from_dict(d) for d in body["devices"]]
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"[REGISTRY] Malformed devices in GET {path} response: {e!r}")
            raise RegistryError(f"Malformed devices in registry response: {e!r}") from e

    async def health_check(self) -> Dict[str, Any]:
        """Check backend health status."""
        try:
            return await self._request("GET", "/")
        except RegistryError as e:
            return {"status": "offline", "error": str(e)}

    async def list_by_account(self, account_id: str) -> List[DeviceRecord]:
        body = await self._request("GET", "/devices", params={"account_id": account_id})
        return self._parse_records(body, path="/devices")

    async def list_admin_by_identifier(self, device_identifier: str) -> List[DeviceRecord]:
        body = await self._request("GET", "/devices/admin", params={"device_identifier": device_identifier})
        return self._parse_records(body, path="/devices/admin")

    async def insert(self, account_id: str, identity: DeviceIdentity) -> DeviceRecord:
        body = await self._request("POST", "/devices", json={
            "account_id": account_id,
            "device_identifier": identity.identifier,
            "model": identity.model,
            "os_version": identity.platform,
        })
        try:
            return DeviceRecord.from_dict(body["device"])
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"[REGISTRY] Malformed device in POST /devices response: {e!r}")
            raise RegistryError(f"Malformed device in registry response: {e!r}") from e

    async def update_identifier(self, record_id: int, identity: DeviceIdentity) -> None:
        await self._request("PATCH", f"/devices/{record_id}/identifier", json={
            "device_identifier": identity.identifier,
            "model": identity.model,
            "os_version": identity.platform,
        })

    async def get_profile_role(self, account_id: str) -> Optional[str]:
        body = await self._request("GET", f"/profiles/{account_id}", allow_not_found=True)
        if not body:
            return None
        profile = body.get("profile") if isinstance(body, dict) else None
        return profile.get("role") if isinstance(profile, dict) else None

    async def create_profile(self, account_id: str, full_name: str = None, phone: str = None) -> Dict[str, Any]:
        """Create the signup profile. An existing profile is left untouched."""
        try:
            body = await self._request("POST", "/profiles", json={
                "account_id": account_id,
                "full_name": full_name,
                "phone": phone,
            })
            return body["profile"]
        except DeviceConflictError:
            logger.info(f"[REGISTRY] Profile {account_id} already exists")
            return {"id": account_id}


# Global client instance
_client: Optional[DeviceRegistryClient] = None


def get_client(backend_url: str = BACKEND_URL) -> DeviceRegistryClient:
    """Get or create global client instance."""
    global _client
    if _client is None:
        _client = DeviceRegistryClient(backend_url)
    return _client


async def close_client():
    """Close global client instance."""
    global _client
    if _client:
        await _client.close()
        _client = None

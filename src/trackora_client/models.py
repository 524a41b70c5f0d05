"""
Value objects exchanged between the identity store, the registry client,
the authorization engine and the session guard.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any


@dataclass(frozen=True)
class DeviceIdentity:
    """Stable per-installation identity plus refreshable host metadata."""

    identifier: str
    display_name: str = "Unknown Device"
    platform: str = "unknown"
    model_name: Optional[str] = None

    @property
    def model(self) -> Optional[str]:
        """Model string written to the registry."""
        return self.model_name or self.display_name or None


@dataclass(frozen=True)
class AuthorizedPrincipal:
    """Authenticated account as returned by the auth provider."""

    account_id: str
    session_token: str


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class DeviceRecord:
    """Registry row as seen by the client."""

    id: int
    account_id: Optional[str]
    device_identifier: str
    model: Optional[str] = None
    os_version: Optional[str] = None
    is_active: bool = True
    is_admin_device: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceRecord":
        return cls(
            id=int(data["id"]),
            account_id=data.get("account_id"),
            device_identifier=data["device_identifier"],
            model=data.get("model"),
            os_version=data.get("os_version"),
            is_active=bool(data.get("is_active", True)),
            is_admin_device=bool(data.get("is_admin_device", False)),
            created_at=_parse_timestamp(data.get("created_at")),
            updated_at=_parse_timestamp(data.get("updated_at")),
        )


class AuthorizationOutcome(str, Enum):
    """Terminal states of one authorization check."""
    ADMIN_BYPASS = "ADMIN_BYPASS"
    ALLOWED = "ALLOWED"
    ALLOWED_AUTO_REGISTERED = "ALLOWED_AUTO_REGISTERED"
    ALLOWED_RECONCILED = "ALLOWED_RECONCILED"
    DENIED = "DENIED"


@dataclass(frozen=True)
class AuthorizationDecision:
    """
    Result of AuthorizationEngine.check().

    record_id names the registry row that matched or was written, when there
    is one. conflict_collapsed is set when an insert lost a uniqueness race
    and was reported as ALLOWED. session_terminated reports whether the
    engine's own sign-out succeeded on the deny path.
    """

    outcome: AuthorizationOutcome
    reason: Optional[str] = None
    record_id: Optional[int] = None
    conflict_collapsed: bool = False
    session_terminated: bool = False

    @property
    def is_allowed(self) -> bool:
        return self.outcome is not AuthorizationOutcome.DENIED

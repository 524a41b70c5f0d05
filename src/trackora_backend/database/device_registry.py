"""
Device Registry Service for Trackora
====================================
Query and mutation surface over the devices and profiles tables.

Features:
- Active device lookup by account
- Global admin-device lookup by identifier
- Single-statement insert / in-place identifier update
- Uniqueness violations reported as RegistryConflict
"""

import logging
from datetime import datetime
from typing import Optional, List

from sqlalchemy.exc import IntegrityError

from .models import DeviceRecord, Profile, ProfileRole
from .db_manager import get_db_manager, DatabaseManager

logger = logging.getLogger(__name__)


class RegistryConflict(Exception):
    """A row with the same uniqueness key already exists."""


class RecordNotFound(Exception):
    """The addressed row does not exist."""


class DeviceRegistryService:
    """
    Registry operations backing the HTTP API.

    Usage:
        service = DeviceRegistryService()
        devices = service.list_by_account("acc-1")
    """

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        """
        Initialize registry service.

        Args:
            db_manager: Optional DatabaseManager instance. Uses global if not provided.
        """
        self.db = db_manager or get_db_manager()

    # ============== Devices ==============

    def list_by_account(self, account_id: str) -> List[DeviceRecord]:
        """Active device records bound to one account."""
        with self.db.get_session() as session:
            return session.query(DeviceRecord).filter(
                DeviceRecord.account_id == account_id,
                DeviceRecord.is_active.is_(True)
            ).order_by(DeviceRecord.id).all()

    def list_admin_by_identifier(self, device_identifier: str) -> List[DeviceRecord]:
        """
        Active admin-flagged records for an identifier, across all accounts.

        Returns an empty list when admin bypass is switched off in system_config.
        """
        if not self.db.get_config_bool("admin_device_bypass_enabled", True):
            logger.info("[REGISTRY] Admin device lookup disabled by configuration")
            return []

        with self.db.get_session() as session:
            return session.query(DeviceRecord).filter(
                DeviceRecord.device_identifier == device_identifier,
                DeviceRecord.is_admin_device.is_(True),
                DeviceRecord.is_active.is_(True)
            ).order_by(DeviceRecord.id).all()

    def insert_device(
        self,
        account_id: str,
        device_identifier: str,
        model: Optional[str] = None,
        os_version: Optional[str] = None,
        is_admin_device: bool = False
    ) -> DeviceRecord:
        """
        Insert one active device record.

        Raises:
            RegistryConflict: an active record for (account_id, device_identifier) exists
        """
        if not account_id and not is_admin_device:
            raise ValueError("account_id is required for non-admin devices")

        with self.db.get_session() as session:
            record = DeviceRecord(
                account_id=account_id,
                device_identifier=device_identifier,
                model=model,
                os_version=os_version,
                is_active=True,
                is_admin_device=is_admin_device
            )
            session.add(record)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                logger.info(f"[REGISTRY] Conflict inserting {account_id}/{device_identifier}: {e.orig}")
                raise RegistryConflict(
                    f"Active device {device_identifier} already bound to account {account_id}"
                ) from e
            session.refresh(record)

            logger.info(f"[REGISTRY] Registered device id={record.id} for account {account_id}")
            return record

    def update_identifier(
        self,
        record_id: int,
        device_identifier: str,
        model: Optional[str] = None,
        os_version: Optional[str] = None
    ) -> DeviceRecord:
        """
        Move an existing record to a new identifier in place.

        Raises:
            RecordNotFound: no record with this id
            RegistryConflict: the account already has an active record for the new identifier
        """
        with self.db.get_session() as session:
            record = session.query(DeviceRecord).filter_by(id=record_id).first()
            if not record:
                raise RecordNotFound(f"Device record {record_id} not found")

            previous = record.device_identifier
            record.device_identifier = device_identifier
            if model is not None:
                record.model = model
            if os_version is not None:
                record.os_version = os_version
            record.updated_at = datetime.utcnow()

            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise RegistryConflict(
                    f"Account {record.account_id} already has device {device_identifier}"
                ) from e
            session.refresh(record)

            logger.info(f"[REGISTRY] Device id={record_id} moved {previous} -> {device_identifier}")
            return record

    # ============== Profiles ==============

    def get_profile(self, account_id: str) -> Optional[Profile]:
        with self.db.get_session() as session:
            return session.query(Profile).filter_by(id=account_id).first()

    def create_profile(
        self,
        account_id: str,
        full_name: Optional[str] = None,
        phone: Optional[str] = None,
        role: Optional[str] = None
    ) -> Profile:
        """
        Create the profile written at signup.

        Raises:
            RegistryConflict: a profile already exists for this account
        """
        role = role or self.db.get_config("default_role", ProfileRole.STAFF.value)
        if role not in {r.value for r in ProfileRole}:
            raise ValueError(f"Unknown role: {role}")

        with self.db.get_session() as session:
            profile = Profile(
                id=account_id,
                full_name=full_name,
                phone=phone,
                role=role,
                is_active=True
            )
            session.add(profile)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise RegistryConflict(f"Profile {account_id} already exists") from e
            session.refresh(profile)

            logger.info(f"[REGISTRY] Created profile {account_id} with role {role}")
            return profile

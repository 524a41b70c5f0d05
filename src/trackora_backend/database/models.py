"""
Database Models for Trackora Device Registry
============================================
SQLAlchemy ORM models for device binding.

Tables:
- devices: Device records binding an installation identifier to an account
- profiles: Staff profiles (role drives client-side landing routes)
- system_config: Configurable system parameters
"""

from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Text, UniqueConstraint
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class ProfileRole(str, Enum):
    """Role attribute stored on a profile."""
    STAFF = "staff"
    MANAGER = "manager"
    ADMIN = "admin"


class DeviceRecord(Base):
    """
    Device binding table.
    One active row per (account_id, device_identifier); rows are updated in
    place and never hard-deleted.
    """
    __tablename__ = 'devices'

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Admin devices provisioned out of band may have no owning account
    account_id = Column(String(64), nullable=True, index=True)
    device_identifier = Column(String(128), nullable=False, index=True)
    model = Column(String(200), nullable=True)
    os_version = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_admin_device = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            'account_id', 'device_identifier', 'is_active',
            name='uq_devices_account_identifier_active'
        ),
    )

    def __repr__(self):
        return (
            f"<DeviceRecord(id={self.id}, account={self.account_id}, "
            f"identifier={self.device_identifier}, active={self.is_active}, admin={self.is_admin_device})>"
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "device_identifier": self.device_identifier,
            "model": self.model,
            "os_version": self.os_version,
            "is_active": self.is_active,
            "is_admin_device": self.is_admin_device,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None
        }


class Profile(Base):
    """
    Staff profile table.
    Created at signup; the role decides where the mobile client lands.
    """
    __tablename__ = 'profiles'

    id = Column(String(64), primary_key=True, index=True)
    full_name = Column(String(200), nullable=True)
    phone = Column(String(32), nullable=True)
    role = Column(String(20), default=ProfileRole.STAFF.value, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Profile(id={self.id}, role={self.role}, active={self.is_active})>"

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "full_name": self.full_name,
            "phone": self.phone,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None
        }


class SystemConfig(Base):
    """
    System configuration parameters.
    Allows runtime configuration without code changes.
    """
    __tablename__ = 'system_config'

    key = Column(String(100), primary_key=True)
    value = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<SystemConfig(key={self.key}, value={self.value})>"


# Default configuration values
DEFAULT_CONFIG = {
    "default_role": ("staff", "Role assigned to profiles created at signup"),
    "admin_device_bypass_enabled": ("true", "Serve admin-flagged devices to the admin lookup"),
}

"""
Database Module for Trackora Device Registry
============================================
Provides SQLAlchemy-based device binding storage with:
- Device records keyed by (account, identifier, active)
- Admin-device lookup
- Staff profiles
"""

from .models import DeviceRecord, Profile, ProfileRole, SystemConfig
from .db_manager import DatabaseManager, get_db_manager, reset_db_manager
from .device_registry import DeviceRegistryService, RegistryConflict, RecordNotFound

__all__ = [
    'DeviceRecord',
    'Profile',
    'ProfileRole',
    'SystemConfig',
    'DatabaseManager',
    'get_db_manager',
    'reset_db_manager',
    'DeviceRegistryService',
    'RegistryConflict',
    'RecordNotFound'
]

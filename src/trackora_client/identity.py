"""
Device Identity Store
=====================
Stable per-installation identifier persisted in local storage.

The identifier is generated once (dev-<uuid4>, 128 random bits) and then
returned verbatim forever; the registry keys authorization on it. A reinstall
that wipes local storage yields a fresh identifier, which the authorization
engine reconciles for single-device accounts.
"""

import json
import logging
import os
import platform
import tempfile
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Dict

from .config import DEVICE_STORAGE_PATH, DEVICE_ID_KEY, DEVICE_ID_PREFIX, HAS_VISITED_KEY
from .errors import IdentityUnavailable
from .models import DeviceIdentity

logger = logging.getLogger(__name__)


class LocalStorage(ABC):
    """Durable key/value storage on the device."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...


class JsonFileStorage(LocalStorage):
    """
    LocalStorage backed by a single JSON file.

    Writes go through a temp file and os.replace so a crash never leaves a
    half-written file behind.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path or DEVICE_STORAGE_PATH)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Corrupt device storage at {self.path}")
        return data

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class MemoryStorage(LocalStorage):
    """Process-local storage. Nothing survives a restart."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


def _host_metadata() -> Dict[str, Optional[str]]:
    """Display name, platform and model of the host; never raises."""
    try:
        return {
            "display_name": platform.node() or "Unknown Device",
            "platform": platform.system().lower() or "unknown",
            "model_name": platform.machine() or None,
        }
    except Exception as e:
        logger.warning(f"[IDENTITY] Host metadata unavailable: {e}")
        return {"display_name": "Unknown Device", "platform": "unknown", "model_name": None}


class DeviceIdentityStore:
    """
    Resolves the DeviceIdentity for this installation.

    Usage:
        store = DeviceIdentityStore(JsonFileStorage())
        identity = store.get_identity()
    """

    def __init__(self, storage: Optional[LocalStorage] = None, metadata: Optional[Dict[str, Optional[str]]] = None):
        self.storage = storage or JsonFileStorage()
        self._metadata = metadata
        self._identity: Optional[DeviceIdentity] = None

    def get_identity(self) -> DeviceIdentity:
        """
        Return the persisted identity, creating it on first use.

        Raises:
            IdentityUnavailable: local storage could not be read or written
        """
        if self._identity is not None:
            return self._identity

        identifier = self._load_or_create_identifier()
        metadata = self._metadata if self._metadata is not None else _host_metadata()
        self._identity = DeviceIdentity(
            identifier=identifier,
            display_name=metadata.get("display_name") or "Unknown Device",
            platform=metadata.get("platform") or "unknown",
            model_name=metadata.get("model_name"),
        )
        return self._identity

    def _load_or_create_identifier(self) -> str:
        try:
            saved = self.storage.get(DEVICE_ID_KEY)
        except (OSError, ValueError) as e:
            logger.error(f"[IDENTITY] Local storage read failed: {e}")
            raise IdentityUnavailable(f"Cannot read device identifier: {e}") from e

        if saved:
            return saved

        identifier = f"{DEVICE_ID_PREFIX}{uuid.uuid4()}"
        try:
            self.storage.set(DEVICE_ID_KEY, identifier)
        except (OSError, ValueError) as e:
            logger.error(f"[IDENTITY] Local storage write failed: {e}")
            raise IdentityUnavailable(f"Cannot persist device identifier: {e}") from e

        logger.info(f"[IDENTITY] Generated new device identifier {identifier}")
        return identifier

    def has_visited(self) -> bool:
        """Whether this installation has been opened before."""
        try:
            return bool(self.storage.get(HAS_VISITED_KEY))
        except (OSError, ValueError) as e:
            logger.warning(f"[IDENTITY] Visit flag unreadable: {e}")
            return True

    def mark_visited(self) -> None:
        try:
            self.storage.set(HAS_VISITED_KEY, "true")
        except (OSError, ValueError) as e:
            logger.warning(f"[IDENTITY] Visit flag not persisted: {e}")

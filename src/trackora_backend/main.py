"""
Trackora Device Registry API
============================
Flow:
1. Mobile client resolves its installation identifier
2. Client asks for admin-flagged devices with that identifier
3. Client lists the account's active devices
4. Client inserts (auto-register) or updates (reconcile) at most one record
5. Profiles are read for role-based routing
"""

import logging
from typing import Optional, Dict, Any

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .database import (
    DeviceRegistryService,
    RegistryConflict,
    RecordNotFound,
    get_db_manager,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Trackora Device Registry API",
    description="Device binding registry backing the Trackora mobile client",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============== Request Models ==============
class DeviceCreate(BaseModel):
    account_id: str = Field(..., min_length=1, description="Account the device is bound to")
    device_identifier: str = Field(..., min_length=1, description="Per-installation identifier")
    model: Optional[str] = None
    os_version: Optional[str] = None


class IdentifierUpdate(BaseModel):
    device_identifier: str = Field(..., min_length=1, description="Replacement identifier")
    model: Optional[str] = None
    os_version: Optional[str] = None


class ProfileCreate(BaseModel):
    account_id: str = Field(..., min_length=1)
    full_name: Optional[str] = None
    phone: Optional[str] = None


# ============== Global Service Instance ==============
registry_service: Optional[DeviceRegistryService] = None


@app.on_event("startup")
async def startup_event():
    """Initialize the registry database on startup."""
    global registry_service

    logger.info("=" * 60)
    logger.info("Starting Trackora Device Registry")
    logger.info("=" * 60)

    if registry_service is None:
        registry_service = DeviceRegistryService(get_db_manager())

    stats = registry_service.db.get_stats()
    logger.info(f"Devices: {stats['active_devices']} active ({stats['admin_devices']} admin)")
    logger.info(f"Profiles: {stats['total_profiles']}")
    logger.info("=" * 60)


def _service() -> DeviceRegistryService:
    if not registry_service:
        raise HTTPException(status_code=503, detail="Device registry not available")
    return registry_service


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "online",
        "service": "Trackora Device Registry API",
        "registry_database": registry_service is not None
    }


# ============== Device Endpoints ==============

@app.get("/devices")
def list_account_devices(account_id: str = Query(..., min_length=1, description="Account ID")):
    """List active devices bound to an account."""
    service = _service()
    try:
        devices = [d.to_dict() for d in service.list_by_account(account_id)]
        return {"devices": devices, "count": len(devices)}
    except Exception as e:
        logger.error(f"Error listing devices for {account_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/devices/admin")
def list_admin_devices(device_identifier: str = Query(..., min_length=1, description="Device identifier")):
    """List active admin-flagged devices with this identifier, any account."""
    service = _service()
    try:
        devices = [d.to_dict() for d in service.list_admin_by_identifier(device_identifier)]
        return {"devices": devices, "count": len(devices)}
    except Exception as e:
        logger.error(f"Error checking admin device {device_identifier}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/devices", status_code=201)
def register_device(payload: DeviceCreate) -> Dict[str, Any]:
    """Register a new active, non-admin device for an account."""
    service = _service()
    try:
        record = service.insert_device(
            account_id=payload.account_id,
            device_identifier=payload.device_identifier,
            model=payload.model,
            os_version=payload.os_version
        )
        return {"success": True, "device": record.to_dict()}
    except RegistryConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Device registration error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.patch("/devices/{record_id}/identifier")
def update_device_identifier(record_id: int, payload: IdentifierUpdate) -> Dict[str, Any]:
    """Move a device record to a new identifier in place."""
    service = _service()
    try:
        record = service.update_identifier(
            record_id,
            payload.device_identifier,
            model=payload.model,
            os_version=payload.os_version
        )
        return {"success": True, "device": record.to_dict()}
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RegistryConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Device update error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# ============== Profile Endpoints ==============

@app.get("/profiles/{account_id}")
def get_profile(account_id: str):
    """Get the profile (role) for an account."""
    profile = _service().get_profile(account_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return {"success": True, "profile": profile.to_dict()}


@app.post("/profiles", status_code=201)
def create_profile(payload: ProfileCreate):
    """Create a signup profile with the default role."""
    service = _service()
    try:
        profile = service.create_profile(
            payload.account_id,
            full_name=payload.full_name,
            phone=payload.phone
        )
        return {"success": True, "profile": profile.to_dict()}
    except RegistryConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Profile creation error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/registry/stats")
def get_registry_stats():
    """Get registry database statistics."""
    if not registry_service:
        return {
            "success": False,
            "database_available": False,
            "message": "Device registry not available"
        }

    try:
        return {"success": True, "database_available": True, "stats": registry_service.db.get_stats()}
    except Exception as e:
        logger.error(f"Error getting registry stats: {e}")
        raise HTTPException(status_code=500, detail=str(e))


def run():
    """Console entry point."""
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()

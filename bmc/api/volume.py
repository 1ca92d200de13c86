from typing import List, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from bmc import config
from bmc.api.deps import ServerBody, connect, error_response, get_registry
from bmc.database import SessionLocal
from bmc.services.volume_manager import StorageVolumeManager
from bmc.sync_pool import EndpointMutexRegistry

router = APIRouter()


class VolumeCreate(BaseModel):
    server: ServerBody
    storage_controller_serial_number: str
    raid_type: str
    physical_drives: List[Union[str, List[str]]]
    optimum_io_size_bytes: int
    volume_name: str = ""
    capacity_bytes: Optional[int] = None
    init_mode: str = ""
    read_mode: str = ""
    write_mode: str = ""
    drive_cache_mode: str = ""
    job_timeout: int = config.VOLUME_JOB_TIMEOUT


class VolumeUpdate(BaseModel):
    server: ServerBody
    volume_id: str
    volume_name: Optional[str] = None
    drive_cache_mode: Optional[str] = None
    timeout: int = config.VOLUME_UPDATE_TIMEOUT


class VolumeDelete(BaseModel):
    server: ServerBody
    volume_id: str
    timeout: int = config.VOLUME_JOB_TIMEOUT


def _manager(server: ServerBody, registry: EndpointMutexRegistry) -> StorageVolumeManager:
    return StorageVolumeManager(connect(server), registry, session_factory=SessionLocal)


@router.post("/volume/create")
def create_volume(req: VolumeCreate, registry: EndpointMutexRegistry = Depends(get_registry)):
    manager = _manager(req.server, registry)
    try:
        ok, volume_id, error = manager.create_volume(
            req.storage_controller_serial_number,
            req.raid_type,
            req.physical_drives,
            req.optimum_io_size_bytes,
            volume_name=req.volume_name,
            capacity_bytes=req.capacity_bytes,
            init_mode=req.init_mode,
            read_mode=req.read_mode,
            write_mode=req.write_mode,
            drive_cache_mode=req.drive_cache_mode,
            job_timeout=req.job_timeout,
        )
    finally:
        manager.client.close()
    if not ok:
        raise error_response(error)
    return {"ok": True, "volume_id": volume_id}


@router.patch("/volume/update")
def update_volume(req: VolumeUpdate, registry: EndpointMutexRegistry = Depends(get_registry)):
    manager = _manager(req.server, registry)
    try:
        ok, error = manager.update_volume(
            req.volume_id,
            volume_name=req.volume_name,
            drive_cache_mode=req.drive_cache_mode,
            timeout=req.timeout,
        )
    finally:
        manager.client.close()
    if not ok:
        raise error_response(error)
    return {"ok": True, "volume_id": req.volume_id}


@router.post("/volume/delete")
def delete_volume(req: VolumeDelete, registry: EndpointMutexRegistry = Depends(get_registry)):
    manager = _manager(req.server, registry)
    try:
        ok, error = manager.delete_volume(req.volume_id, timeout=req.timeout)
    finally:
        manager.client.close()
    if not ok:
        raise error_response(error)
    return {"ok": True, "status": "deleted"}

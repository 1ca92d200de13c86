from fastapi import APIRouter, Depends
from pydantic import BaseModel

from bmc import config
from bmc.api.deps import ServerBody, connect, error_response, get_registry
from bmc.database import SessionLocal
from bmc.services.firmware_update import FirmwareUpdater
from bmc.services.manager_reset import ManagerResetter
from bmc.sync_pool import EndpointMutexRegistry

router = APIRouter()


class FirmwareUpdate(BaseModel):
    server: ServerBody
    update_type: str
    image_path: str = ""
    tftp_server: str = ""
    tftp_file: str = ""
    flash_selector: str = "Auto"
    boot_selector: str = "Auto"
    update_timeout: int = config.FIRMWARE_UPDATE_TIMEOUT
    reset_after_update: bool = True


@router.post("/firmware/update")
def update_firmware(req: FirmwareUpdate, registry: EndpointMutexRegistry = Depends(get_registry)):
    server = req.server.to_config()
    client = connect(req.server)
    updater = FirmwareUpdater(
        server,
        client,
        registry,
        resetter=ManagerResetter(server, registry),
        session_factory=SessionLocal,
    )
    active, error = updater.update(
        req.update_type,
        image_path=req.image_path,
        tftp_server=req.tftp_server,
        tftp_file=req.tftp_file,
        flash_selector=req.flash_selector,
        boot_selector=req.boot_selector,
        update_timeout=req.update_timeout,
        reset_after_update=req.reset_after_update,
    )
    if error:
        client.close()
        raise error_response(error)
    active.close()
    return {"ok": True, "endpoint": updater.endpoint, "update_type": req.update_type}

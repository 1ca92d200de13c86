from fastapi import APIRouter, Depends
from pydantic import BaseModel

from bmc import config
from bmc.api.deps import ServerBody, connect, error_response, get_registry
from bmc.database import SessionLocal
from bmc.services.host_power import HostPowerController
from bmc.sync_pool import EndpointMutexRegistry

router = APIRouter()


class HostPower(BaseModel):
    server: ServerBody
    action: str
    max_wait_time: int = config.HOST_POWER_TIMEOUT


@router.post("/host/power")
def host_power(req: HostPower, registry: EndpointMutexRegistry = Depends(get_registry)):
    client = connect(req.server)
    try:
        ok, state, error = HostPowerController(client, registry, session_factory=SessionLocal).apply(
            req.action, timeout=req.max_wait_time
        )
    finally:
        client.close()
    if not ok:
        raise error_response(error)
    return {"ok": True, "action": req.action, "power_state": state}

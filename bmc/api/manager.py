from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from bmc import config
from bmc.api.deps import ServerBody, connect, error_response, get_registry
from bmc.database import SessionLocal
from bmc.services.attributes import DEFAULT_TIMEOUT, AttributesManager
from bmc.services.manager_reset import ManagerResetter
from bmc.sync_pool import EndpointMutexRegistry

router = APIRouter()


class ManagerReset(BaseModel):
    server: ServerBody
    reset_type: str = "GracefulRestart"
    reconnect_timeout: int = config.RECONNECT_TIMEOUT
    ready_timeout: int = config.READY_TIMEOUT


class AttributesChange(BaseModel):
    server: ServerBody
    attributes: Dict[str, Any]
    timeout: int = DEFAULT_TIMEOUT


@router.post("/manager/reset")
def reset_manager(req: ManagerReset, registry: EndpointMutexRegistry = Depends(get_registry)):
    client = connect(req.server)
    resetter = ManagerResetter(req.server.to_config(), registry, session_factory=SessionLocal)
    new_client, error = resetter.reset(
        client,
        reset_type=req.reset_type,
        reconnect_timeout=req.reconnect_timeout,
        ready_timeout=req.ready_timeout,
    )
    if error:
        client.close()
        raise error_response(error)
    new_client.close()
    return {"ok": True, "endpoint": resetter.endpoint}


@router.patch("/manager/attributes")
def change_attributes(req: AttributesChange, registry: EndpointMutexRegistry = Depends(get_registry)):
    client = connect(req.server)
    try:
        ok, error = AttributesManager(client, registry, session_factory=SessionLocal).apply(
            req.attributes, timeout=req.timeout
        )
    finally:
        client.close()
    if not ok:
        raise error_response(error)
    return {"ok": True, "attributes": req.attributes}

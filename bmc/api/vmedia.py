from fastapi import APIRouter, Depends
from pydantic import BaseModel

from bmc.api.deps import ServerBody, connect, error_response, get_registry
from bmc.database import SessionLocal
from bmc.services.virtual_media import VirtualMediaManager
from bmc.sync_pool import EndpointMutexRegistry

router = APIRouter()


class MediaInsert(BaseModel):
    server: ServerBody
    media_id: str
    image: str
    transfer_protocol_type: str = ""
    write_protected: bool = True


@router.post("/vmedia/insert")
def insert_media(req: MediaInsert, registry: EndpointMutexRegistry = Depends(get_registry)):
    client = connect(req.server)
    try:
        ok, media, error = VirtualMediaManager(client, registry, session_factory=SessionLocal).insert(
            req.media_id,
            req.image,
            transfer_protocol_type=req.transfer_protocol_type,
            write_protected=req.write_protected,
        )
    finally:
        client.close()
    if not ok:
        raise error_response(error)
    return {"ok": True, "media_id": req.media_id, "inserted": media.get("Inserted"), "image": media.get("Image")}

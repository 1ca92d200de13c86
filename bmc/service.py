"""
BMC Change Supervisor Service Entrypoint

FastAPI application exposing supervised BMC changes (storage volumes,
manager reset, manager attributes, virtual media, firmware update, host
power) and the operation log.
"""
from fastapi import FastAPI
import logging

from bmc.api import events, firmware, manager, power, vmedia, volume
from bmc.database import init_db

logger = logging.getLogger(__name__)

app = FastAPI(title="BMC Change Supervisor")

app.include_router(volume.router)
app.include_router(manager.router)
app.include_router(vmedia.router)
app.include_router(firmware.router)
app.include_router(power.router)
app.include_router(events.router)


@app.on_event("startup")
def startup_init():
    """Initialize database"""
    init_db()
    logger.info("BMC service startup complete")


@app.get("/")
def root():
    return {
        "service": "bmc",
        "message": "BMC change supervisor running",
    }

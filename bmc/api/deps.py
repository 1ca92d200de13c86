from fastapi import HTTPException
from pydantic import BaseModel

from bmc import config
from bmc.errors import BmcError, OperationTimeout, ValidationError
from bmc.redfish_client import RedfishClient, ServerConfig
from bmc.sync_pool import EndpointMutexRegistry

# One registry per process: every request against the same BMC shares it
_registry = EndpointMutexRegistry()


def get_registry() -> EndpointMutexRegistry:
    return _registry


class ServerBody(BaseModel):
    endpoint: str
    username: str
    password: str
    ssl_insecure: bool = False

    def to_config(self) -> ServerConfig:
        return ServerConfig(
            endpoint=self.endpoint,
            username=self.username,
            password=self.password,
            ssl_insecure=self.ssl_insecure,
            timeout=config.HTTP_TIMEOUT,
        )


def connect(server: ServerBody) -> RedfishClient:
    try:
        return RedfishClient.connect_to(server.to_config())
    except BmcError as e:
        raise error_response(e)


def error_response(error: BmcError) -> HTTPException:
    if isinstance(error, ValidationError):
        status = 409
    elif isinstance(error, OperationTimeout):
        status = 504
    else:
        status = 502
    return HTTPException(status_code=status, detail=error.to_dict())

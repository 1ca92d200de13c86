"""
Redfish Management Client

Thin wrapper around requests.Session for talking to a BMC.
Every call returns a RedfishResponse (status code, headers, body);
network/HTTP-layer failures are raised as TransportError.

Usage:
    client = RedfishClient.connect_to(ServerConfig(
        endpoint="https://10.0.0.5",
        username="admin",
        password="admin",
        ssl_insecure=True,
    ))
    res = client.get("/redfish/v1/Systems/0")
    system = client.get_json("/redfish/v1/Systems/0")
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from bmc.errors import BmcError, TransportError, UnexpectedStatus

logger = logging.getLogger(__name__)

SERVICE_ROOT = "/redfish/v1/"

HTTP_HEADER_LOCATION = "Location"
HTTP_HEADER_ETAG = "ETag"
HTTP_HEADER_IF_MATCH = "If-Match"


@dataclass
class ServerConfig:
    """Connection details of a single BMC"""
    endpoint: str
    username: str
    password: str = field(repr=False)
    ssl_insecure: bool = False
    timeout: int = 30

    @property
    def base_url(self) -> str:
        endpoint = self.endpoint.rstrip("/")
        if "://" not in endpoint:
            endpoint = f"https://{endpoint}"
        return endpoint


@dataclass
class RedfishResponse:
    status_code: int
    headers: Dict[str, str]
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def header(self, name: str) -> str:
        # requests hands back a case-insensitive dict, plain dicts come from tests
        for key, value in self.headers.items():
            if key.lower() == name.lower():
                return value
        return ""

    def json(self) -> Any:
        return json.loads(self.body or b"{}")


class RedfishClient:
    """HTTP client bound to one BMC endpoint"""

    def __init__(self, server: ServerConfig, session: Optional[requests.Session] = None):
        """
        Initialize client.

        Args:
            server: BMC endpoint and credentials
            session: Optional pre-built requests session (tests inject one)
        """
        self.server = server
        self.base_url = server.base_url
        self._session = session or requests.Session()
        self._session.auth = (server.username, server.password)
        self._session.verify = not server.ssl_insecure
        self._session.headers.update({"Accept": "application/json"})

    @classmethod
    def connect_to(cls, server: ServerConfig) -> "RedfishClient":
        """Build a client and verify the service root answers."""
        client = cls(server)
        try:
            client.connect()
        except BmcError:
            client.close()
            raise
        return client

    def connect(self) -> None:
        res = self.get(SERVICE_ROOT)
        if res.status_code != 200:
            raise UnexpectedStatus(
                f"Service root of {self.base_url} returned HTTP {res.status_code}",
                status_code=res.status_code,
            )
        logger.info(f"Connected to {self.base_url}")

    def close(self) -> None:
        self._session.close()

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.base_url}{path}"

    def request(
        self,
        method: str,
        path: str,
        payload: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        files: Optional[Dict[str, Any]] = None,
    ) -> RedfishResponse:
        url = self._url(path)
        logger.debug(f"{method} {url}")
        kwargs: Dict[str, Any] = {"headers": headers, "timeout": self.server.timeout}
        if files is not None:
            # multipart upload, requests sets the content type
            kwargs["files"] = files
        else:
            kwargs["json"] = payload
        try:
            response = self._session.request(method, url, **kwargs)
        except requests.exceptions.Timeout as e:
            raise TransportError(f"{method} {url} timed out: {e}")
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}")

        return RedfishResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.content,
        )

    def get(self, path: str, headers: Optional[Dict[str, str]] = None) -> RedfishResponse:
        return self.request("GET", path, headers=headers)

    def post(self, path: str, payload: Optional[Any] = None,
             headers: Optional[Dict[str, str]] = None) -> RedfishResponse:
        return self.request("POST", path, payload=payload, headers=headers)

    def post_file(self, path: str, files: Dict[str, Any],
                  headers: Optional[Dict[str, str]] = None) -> RedfishResponse:
        return self.request("POST", path, headers=headers, files=files)

    def patch(self, path: str, payload: Optional[Any] = None,
              headers: Optional[Dict[str, str]] = None) -> RedfishResponse:
        return self.request("PATCH", path, payload=payload, headers=headers)

    def delete(self, path: str, headers: Optional[Dict[str, str]] = None) -> RedfishResponse:
        return self.request("DELETE", path, headers=headers)

    def get_json(self, path: str) -> Any:
        """GET a resource, require HTTP 200 and return the parsed body."""
        res = self.get(path)
        if res.status_code != 200:
            raise UnexpectedStatus(f"GET {path} returned HTTP {res.status_code}", status_code=res.status_code)
        try:
            return res.json()
        except ValueError as e:
            raise TransportError(f"GET {path} returned unparsable body: {e}")

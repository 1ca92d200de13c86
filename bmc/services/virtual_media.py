"""
Virtual media mount

InsertMedia returns no task; the mount is confirmed by re-reading the
virtual media resource until Inserted becomes true, bounded by a fixed
number of attempts rather than a wall-clock deadline.
"""

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from bmc import config
from bmc.errors import BmcError, UnexpectedStatus, ValidationError
from bmc.models import LockCategory
from bmc.redfish_client import RedfishClient
from bmc.services.convergence import ConvergencePoller
from bmc.services.events import record_event
from bmc.services.manager_reset import first_manager
from bmc.sync_pool import EndpointMutexRegistry

logger = logging.getLogger(__name__)

INSERT_ACCEPTED = {200, 202, 204}


class VirtualMediaManager:

    def __init__(
        self,
        client: RedfishClient,
        registry: EndpointMutexRegistry,
        poller: Optional[ConvergencePoller] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        mount_attempts: int = config.MEDIA_MOUNT_ATTEMPTS,
        mount_interval: float = config.MEDIA_MOUNT_INTERVAL,
    ):
        self.client = client
        self.registry = registry
        self.poller = poller or ConvergencePoller()
        self.session_factory = session_factory
        self.mount_attempts = mount_attempts
        self.mount_interval = mount_interval

    def get_media(self, media_id: str) -> Dict[str, Any]:
        manager = first_manager(self.client)
        collection = self.client.get_json(f"{manager}/VirtualMedia")
        for member in collection.get("Members", []):
            link = member.get("@odata.id", "")
            if link.rstrip("/").split("/")[-1] == media_id:
                return self.client.get_json(link)
        raise ValidationError(f"Virtual media with ID {media_id} does not exist")

    def insert(
        self,
        media_id: str,
        image: str,
        transfer_protocol_type: str = "",
        write_protected: bool = True,
    ) -> Tuple[bool, Optional[Dict[str, Any]], Optional[BmcError]]:
        """
        Mount `image` on the virtual media slot `media_id`.

        Returns:
            (success: bool, media resource or None, error: BmcError or None)
        """
        media: Optional[Dict[str, Any]] = None
        error: Optional[BmcError] = None

        with self.registry.hold(self.client.base_url, LockCategory.VIRTUAL_MEDIA):
            try:
                media, error = self._insert(media_id, image, transfer_protocol_type, write_protected)
            except BmcError as e:
                error = e

        record_event(self.session_factory, self.client.base_url, LockCategory.VIRTUAL_MEDIA,
                     "vmedia_insert", error)
        return error is None, media, error

    def _insert(
        self,
        media_id: str,
        image: str,
        transfer_protocol_type: str,
        write_protected: bool,
    ) -> Tuple[Optional[Dict[str, Any]], Optional[BmcError]]:
        media = self.get_media(media_id)
        if media.get("Inserted"):
            return None, ValidationError(f"Virtual media {media_id} already has media mounted")

        payload: Dict[str, Any] = {"Image": image, "Inserted": True, "WriteProtected": write_protected}
        if transfer_protocol_type:
            payload["TransferProtocolType"] = transfer_protocol_type

        media_link = media["@odata.id"]
        action = ((media.get("Actions") or {}).get("#VirtualMedia.InsertMedia") or {}).get("target")
        action = action or f"{media_link}/Actions/VirtualMedia.InsertMedia"

        res = self.client.post(action, payload)
        if res.status_code not in INSERT_ACCEPTED:
            return None, UnexpectedStatus(
                f"Could not mount virtual media {media_id}: HTTP {res.status_code}",
                status_code=res.status_code,
            )

        latest: Dict[str, Any] = {}

        def read_current() -> Dict[str, Any]:
            nonlocal latest
            latest = self.client.get_json(media_link)
            return latest

        ok, error = self.poller.poll_until_converged(
            {"Inserted": True},
            read_current,
            max_attempts=self.mount_attempts,
            interval=self.mount_interval,
            grace_seconds=0,
            description=f"Virtual media {media_id} mount",
        )
        if not ok:
            return None, error

        logger.info(f"Image {image} mounted on virtual media {media_id}")
        return latest, None

"""
Tests for bmc/services/volume_manager.py
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from bmc.errors import BmcError, JobFailed, UnexpectedStatus, ValidationError
from bmc.models import Base, LockCategory, OperationEvent
from bmc.services.capability_guard import DIRECT_LOCATION_FORMAT, DiskGroup
from bmc.services.convergence import ConvergencePoller
from bmc.services.task_supervisor import TASK_LOG_SUFFIX, TaskSupervisor
from bmc.services.volume_manager import StorageVolumeManager, build_volume_payload

STORAGE = "/redfish/v1/Systems/0/Storage/RAIDAdapter0"
VOLUMES = STORAGE + "/Volumes"
TASK = "/redfish/v1/TaskService/Tasks/12"


def storage_body(name="PRAID EP540i"):
    return {
        "@odata.id": STORAGE,
        "Name": name,
        "StorageControllers": [{"SerialNumber": "SN123"}],
        "Drives": [{"@odata.id": f"{STORAGE}/Drives/{i}"} for i in range(2)],
        "Volumes": {"@odata.id": VOLUMES},
    }


@pytest.fixture
def bmc(fake_client, respond):
    """Fake BMC with one system, one controller and two HDDs."""
    fake_client.add_json("/redfish/v1/Systems", {"Members": [{"@odata.id": "/redfish/v1/Systems/0"}]})
    fake_client.add_json("/redfish/v1/Systems/0", {"Storage": {"@odata.id": "/redfish/v1/Systems/0/Storage"}})
    fake_client.add_json("/redfish/v1/Systems/0/Storage", {"Members": [{"@odata.id": STORAGE}]})
    fake_client.add_json(STORAGE, storage_body())
    for i in range(2):
        fake_client.add_json(f"{STORAGE}/Drives/{i}", {
            "@odata.id": f"{STORAGE}/Drives/{i}",
            "MediaType": "HDD",
            "Protocol": "SAS",
            "Location": [{"Info": f"[ 0 : 0 : {i} ]", "InfoFormat": DIRECT_LOCATION_FORMAT}],
        })
    fake_client.add_json(STORAGE + "/Oem/ts_fujitsu/RAIDCapabilities", {"RAIDLevels": [{
        "RAIDType": "RAID1",
        "StripeSizes": [65536, 131072],
        "MinimumDriveCount": 2,
        "MaximumDriveCount": 2,
        "MinimumSpanCount": 1,
        "MaximumSpanCount": 1,
    }]})
    return fake_client


@pytest.fixture
def manager(bmc, registry, waiter):
    return StorageVolumeManager(
        bmc,
        registry,
        supervisor=TaskSupervisor(bmc, poll_interval=5, waiter=waiter),
        poller=ConvergencePoller(grace_seconds=5, interval=2, waiter=waiter),
    )


class TestVolumePayload:
    """Tests for build_volume_payload."""

    def test_optional_fields_omitted(self):
        payload = build_volume_payload("RAID1", [DiskGroup(["0", "1"])], volume_name="data")
        assert payload == {
            "Name": "data",
            "RAIDType": "RAID1",
            "PhysicalDisks": [{"Group": ["0", "1"]}],
        }

    def test_optional_fields_included(self):
        payload = build_volume_payload(
            "RAID1", [DiskGroup(["0", "1"])],
            optimum_io_size_bytes=65536, capacity_bytes=1024, init_mode="Fast",
            read_mode="ReadAhead", write_mode="WriteBack", drive_cache_mode="Enabled",
        )
        assert payload["OptimumIOSizeBytes"] == 65536
        assert payload["CapacityBytes"] == 1024
        assert payload["InitMode"] == "Fast"
        assert payload["DriveCacheMode"] == "Enabled"


class TestCreateVolume:
    """Tests for StorageVolumeManager.create_volume."""

    def test_tracked_creation(self, manager, bmc, respond, registry):
        bmc.add("GET", VOLUMES, respond(200, {"Members": []}),
                respond(200, {"Members": [{"@odata.id": VOLUMES + "/0"}]}))
        bmc.add("POST", VOLUMES, respond(202, headers={"Location": TASK}))
        bmc.add("GET", TASK, respond(200, {"TaskState": "Running"}), respond(200, {"TaskState": "Completed"}))

        ok, volume_id, error = manager.create_volume("SN123", "RAID1", [["0", "1"]], 65536, volume_name="data")
        assert error is None
        assert ok is True
        assert volume_id == VOLUMES + "/0"

        (_, _, payload, _), = bmc.calls_to("POST", VOLUMES)
        assert payload["PhysicalDisks"] == [{"Group": ["0", "1"]}]
        assert payload["OptimumIOSizeBytes"] == 65536
        assert not registry.is_held(bmc.base_url, LockCategory.STORAGE_VOLUME)

    def test_invalid_request_writes_nothing(self, manager, bmc):
        ok, volume_id, error = manager.create_volume("SN123", "RAID1", [["0", "1"]], 4096)
        assert ok is False
        assert volume_id is None
        assert isinstance(error, ValidationError)
        assert bmc.calls_to("POST", VOLUMES) == []

    def test_failed_job(self, manager, bmc, respond, registry):
        bmc.add("GET", VOLUMES, respond(200, {"Members": []}))
        bmc.add("POST", VOLUMES, respond(202, headers={"Location": TASK}))
        bmc.add("GET", TASK, respond(200, {"TaskState": "Exception"}))
        bmc.add("GET", TASK + TASK_LOG_SUFFIX, respond(200, {"Messages": [{"Message": "Error: drive busy"}]}))

        ok, volume_id, error = manager.create_volume("SN123", "RAID1", [["0", "1"]], 65536)
        assert ok is False
        assert isinstance(error, JobFailed)
        assert "drive busy" in error.job_log
        assert not registry.is_held(bmc.base_url, LockCategory.STORAGE_VOLUME)

    def test_rejected_post(self, manager, bmc, respond):
        bmc.add("GET", VOLUMES, respond(200, {"Members": []}))
        bmc.add("POST", VOLUMES, respond(400, {"error": {"message": "bad request"}}))
        ok, _, error = manager.create_volume("SN123", "RAID1", [["0", "1"]], 65536)
        assert isinstance(error, UnexpectedStatus)
        assert error.status_code == 400

    def test_unknown_controller(self, manager):
        ok, _, error = manager.create_volume("OTHER", "RAID1", [["0", "1"]], 65536)
        assert ok is False
        assert "OTHER" in error.message

    def test_no_new_volume(self, manager, bmc, respond):
        bmc.add("GET", VOLUMES, respond(200, {"Members": []}))
        bmc.add("POST", VOLUMES, respond(201))
        ok, _, error = manager.create_volume("SN123", "RAID1", [["0", "1"]], 65536)
        assert isinstance(error, BmcError)
        assert "no new volume" in error.message

    def test_new_volume_listed_late(self, manager, bmc, respond, clock):
        """A synchronous create whose volume shows up on a later read should succeed"""
        bmc.add("GET", VOLUMES,
                respond(200, {"Members": []}),
                respond(200, {"Members": []}),
                respond(200, {"Members": [{"@odata.id": VOLUMES + "/0"}]}))
        bmc.add("POST", VOLUMES, respond(201))
        ok, volume_id, error = manager.create_volume("SN123", "RAID1", [["0", "1"]], 65536)
        assert error is None
        assert ok is True
        assert volume_id == VOLUMES + "/0"
        assert len(bmc.calls_to("GET", VOLUMES)) == 3
        assert clock.sleeps == [2]


class TestUpdateVolume:
    """Tests for StorageVolumeManager.update_volume."""

    def test_waits_for_convergence(self, manager, bmc, respond, clock):
        volume = VOLUMES + "/0"
        bmc.add("PATCH", volume, respond(200))
        bmc.add(
            "GET", volume,
            respond(200, {"Name": "data", "Oem": {"ts_fujitsu": {"DriveCacheMode": "Disabled"}}}),
            respond(200, {"Name": "data", "Oem": {"ts_fujitsu": {"DriveCacheMode": "Enabled"}}}),
        )
        ok, error = manager.update_volume(volume, volume_name="data", drive_cache_mode="Enabled")
        assert ok is True
        assert error is None
        (_, _, payload, _), = bmc.calls_to("PATCH", volume)
        assert payload == {"Oem": {"ts_fujitsu": {"DriveCacheMode": "Enabled", "Name": "data"}}}
        assert clock.sleeps == [5, 2]

    def test_never_converges(self, manager, bmc, respond):
        volume = VOLUMES + "/0"
        bmc.add("PATCH", volume, respond(204))
        bmc.add("GET", volume, respond(200, {"Name": "old"}))
        ok, error = manager.update_volume(volume, volume_name="new", timeout=10)
        assert ok is False
        assert error.error_code == "TIMEOUT"

    def test_rejected_patch(self, manager, bmc, respond):
        volume = VOLUMES + "/0"
        bmc.add("PATCH", volume, respond(405))
        ok, error = manager.update_volume(volume, volume_name="new")
        assert isinstance(error, UnexpectedStatus)
        assert bmc.calls_to("GET", volume) == []


class TestDeleteVolume:
    """Tests for StorageVolumeManager.delete_volume."""

    def test_tracked_delete(self, manager, bmc, respond):
        volume = VOLUMES + "/0"
        bmc.add("DELETE", volume, respond(202, headers={"Location": TASK}))
        bmc.add("GET", TASK, respond(200, {"TaskState": "Completed"}))
        assert manager.delete_volume(volume) == (True, None)

    def test_synchronous_delete(self, manager, bmc, respond):
        volume = VOLUMES + "/0"
        bmc.add("DELETE", volume, respond(204))
        assert manager.delete_volume(volume) == (True, None)
        assert bmc.calls_to("GET", TASK) == []


class TestEventRecording:
    """Tests for persisted operation outcomes."""

    @pytest.fixture
    def session_factory(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'events.db'}")
        Base.metadata.create_all(bind=engine)
        return sessionmaker(bind=engine)

    def test_outcomes_recorded(self, bmc, registry, waiter, respond, session_factory):
        manager = StorageVolumeManager(
            bmc, registry,
            supervisor=TaskSupervisor(bmc, waiter=waiter),
            poller=ConvergencePoller(waiter=waiter),
            session_factory=session_factory,
        )
        bmc.add("DELETE", VOLUMES + "/0", respond(204))
        manager.delete_volume(VOLUMES + "/0")
        manager.create_volume("SN123", "RAID1", [["0", "1"]], 1)

        db = session_factory()
        try:
            events = db.query(OperationEvent).order_by(OperationEvent.id).all()
        finally:
            db.close()
        assert [(e.operation, e.success, e.error_code) for e in events] == [
            ("volume_delete", True, None),
            ("volume_create", False, "VALIDATION_ERROR"),
        ]
        assert events[0].endpoint == bmc.base_url
        assert events[0].category == "storage_volume"

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# ============================================================================
# ENUM DEFINITIONS
# ============================================================================

class TaskState(str, enum.Enum):
    """Redfish task state"""
    NEW = "New"
    STARTING = "Starting"
    RUNNING = "Running"
    PENDING = "Pending"
    SUSPENDED = "Suspended"
    INTERRUPTED = "Interrupted"
    EXCEPTION = "Exception"
    COMPLETED = "Completed"
    KILLED = "Killed"
    CANCELLED = "Cancelled"
    SERVICE = "Service"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_TASK_STATES

    @property
    def is_success(self) -> bool:
        return self in SUCCESS_TASK_STATES


TERMINAL_TASK_STATES = frozenset({
    TaskState.COMPLETED,
    TaskState.EXCEPTION,
    TaskState.CANCELLED,
    TaskState.KILLED,
    TaskState.INTERRUPTED,
    TaskState.SUSPENDED,
})

SUCCESS_TASK_STATES = frozenset({TaskState.COMPLETED})


class LockCategory(str, enum.Enum):
    """Logical operation category used in endpoint lock keys"""
    STORAGE_VOLUME = "storage_volume"
    RESET = "reset"
    ATTRIBUTES = "attributes"
    VIRTUAL_MEDIA = "virtual_media"
    FIRMWARE = "firmware"
    HOST_POWER = "host_power"


class FirmwareUpdateType(str, enum.Enum):
    """Source of a BMC firmware image"""
    FILE = "File"
    TFTP = "TFTP"
    MEMORY_CARD = "MemoryCard"


class FlashSelector(str, enum.Enum):
    AUTO = "Auto"
    LOW = "LowFWImage"
    HIGH = "HighFWImage"


class BootSelector(str, enum.Enum):
    AUTO = "Auto"
    LOW = "LowFWImage"
    HIGH = "HighFWImage"
    OLDEST = "OldestFW"
    MOST_RECENT = "MostRecentProgrammedFW"
    LEAST_RECENT = "LeastRecentProgrammedFW"


class HostPowerAction(str, enum.Enum):
    """Host power operations; the expected end state follows the action"""
    ON = "On"
    FORCE_ON = "ForceOn"
    FORCE_OFF = "ForceOff"
    FORCE_RESTART = "ForceRestart"
    GRACEFUL_RESTART = "GracefulRestart"
    GRACEFUL_SHUTDOWN = "GracefulShutdown"
    PUSH_POWER_BUTTON = "PushPowerButton"
    POWER_CYCLE = "PowerCycle"
    NMI = "Nmi"


class MediaType(str, enum.Enum):
    HDD = "HDD"
    SSD = "SSD"
    NVME = "NVMe"


# ============================================================================
# SUPERVISION DATA
# ============================================================================

@dataclass
class TrackedJob:
    """Snapshot of a server-side task as seen by the last poll"""
    location: str
    state: TaskState

    @property
    def terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def succeeded(self) -> bool:
        return self.state.is_success


@dataclass
class ChangeRequest:
    """Desired field values for a target; absent fields are don't-care"""
    target: str
    desired: Dict[str, Any] = field(default_factory=dict)
    timeout_seconds: int = 60

    def specified_fields(self) -> Dict[str, Any]:
        return {name: value for name, value in self.desired.items() if value is not None}


# ============================================================================
# REDFISH WIRE SHAPES
# ============================================================================

class TaskResource(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    task_state: TaskState = Field(alias="TaskState")


class TaskLogMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    time: Optional[str] = Field(default=None, alias="Time")
    message: str = Field(default="", alias="Message")


class TaskLog(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    messages: List[TaskLogMessage] = Field(default_factory=list, alias="Messages")


class RaidLevelCapability(BaseModel):
    """Controller-advertised limits for one RAID type"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    raid_type: str = Field(alias="RAIDType")
    stripe_sizes: List[int] = Field(default_factory=list, alias="StripeSizes")
    stripe_sizes_hdd: List[int] = Field(default_factory=list, alias="StripeSizesHDD")
    stripe_sizes_ssd: List[int] = Field(default_factory=list, alias="StripeSizesSSD")
    stripe_sizes_nvme: List[int] = Field(default_factory=list, alias="StripeSizesNVMe")
    minimum_drive_count: int = Field(default=0, alias="MinimumDriveCount")
    maximum_drive_count: int = Field(default=0, alias="MaximumDriveCount")
    minimum_span_count: int = Field(default=0, alias="MinimumSpanCount")
    maximum_span_count: int = Field(default=0, alias="MaximumSpanCount")

    @field_validator(
        "stripe_sizes", "stripe_sizes_hdd", "stripe_sizes_ssd", "stripe_sizes_nvme",
        mode="before",
    )
    @classmethod
    def _none_as_empty(cls, value):
        return value or []

    @field_validator(
        "minimum_drive_count", "maximum_drive_count", "minimum_span_count", "maximum_span_count",
        mode="before",
    )
    @classmethod
    def _none_as_zero(cls, value):
        return value or 0

    def sizes_for_media(self, media: MediaType) -> List[int]:
        if media == MediaType.HDD:
            return self.stripe_sizes_hdd
        if media == MediaType.NVME:
            return self.stripe_sizes_nvme
        return self.stripe_sizes_ssd


class RaidCapabilities(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    raid_levels: List[RaidLevelCapability] = Field(default_factory=list, alias="RAIDLevels")


class DriveInfo(BaseModel):
    """Physical drive as reported in the controller inventory"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    location_descriptor: str = ""
    location_format: str = ""
    media_type: str = ""
    protocol: str = ""
    odata_id: str = ""

    @property
    def effective_media(self) -> Optional[MediaType]:
        # NVMe drives report MediaType=SSD with Protocol=NVMe
        if self.protocol.upper() == "NVME" or self.media_type.upper() == "NVME":
            return MediaType.NVME
        if self.media_type.upper() == "HDD":
            return MediaType.HDD
        if self.media_type.upper() == "SSD":
            return MediaType.SSD
        return None

    @classmethod
    def from_redfish(cls, drive: Dict[str, Any]) -> "DriveInfo":
        locations = drive.get("Location") or []
        first = locations[0] if locations else {}
        if not first:
            part_location = (drive.get("PhysicalLocation") or {}).get("PartLocation") or {}
            first = {"Info": part_location.get("ServiceLabel", ""), "InfoFormat": ""}
        return cls(
            location_descriptor=first.get("Info", "") or "",
            location_format=first.get("InfoFormat", "") or "",
            media_type=drive.get("MediaType", "") or "",
            protocol=drive.get("Protocol", "") or "",
            odata_id=drive.get("@odata.id", "") or "",
        )


# ============================================================================
# PERSISTENCE
# ============================================================================

class OperationEvent(Base):
    """Outcome of one supervised change against a BMC"""
    __tablename__ = "operation_events"

    id = Column(Integer, primary_key=True)
    endpoint = Column(String, nullable=False, index=True)
    category = Column(String, nullable=False)
    operation = Column(String, nullable=False)  # e.g. 'volume_create', 'manager_reset'
    success = Column(Boolean, nullable=False)
    error_code = Column(String)
    message = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

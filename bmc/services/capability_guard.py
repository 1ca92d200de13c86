"""
Capability Guard - storage volume requests

Validates a volume creation request against what the storage controller
advertises (RAIDCapabilities) before anything is written to the BMC.

Checks, in order (first unmet one wins):
1. Requested disk slots resolve against the live drive inventory
   (lenient mode only logs unresolved slots; strict mode rejects them)
2. RAID type is advertised by the controller
3. Stripe size is in the applicable size list: the global list when it is
   non-empty, otherwise the list for the media type of the resolved drives
4. Span layout: number of disk groups within [MinimumSpanCount,
   MaximumSpanCount] and enough drives per group, or exactly one group
   when the controller declares no span bounds
5. Controllers accepting only full-disk-group volumes reject an explicit
   capacity
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from bmc import config
from bmc.errors import ValidationError
from bmc.models import DriveInfo, RaidLevelCapability

logger = logging.getLogger(__name__)

FULL_VOLUME_ONLY_CONTROLLERS = ("PDUAL CP100",)

ENCLOSURE_LOCATION_FORMAT = "[ System_Id : Controller_Id : Enclosure_Id : Slot_Id ]"
DIRECT_LOCATION_FORMAT = "[ System_Id : Controller_Id : Slot_Id ]"

_LOCATION_RE = re.compile(r"^\s*\[\s*(\d+(?:\s*:\s*\d+){2,3})\s*\]\s*$")


# ============================================================================
# LOCATION & GROUP PARSING
# ============================================================================

@dataclass(frozen=True)
class DriveLocation:
    system: int
    controller: int
    slot: int
    enclosure: Optional[int] = None

    @property
    def slot_id(self) -> str:
        """Identifier used in volume requests: 'slot' or 'enclosure-slot'"""
        if self.enclosure is None:
            return str(self.slot)
        return f"{self.enclosure}-{self.slot}"


def parse_location(descriptor: str, info_format: str = "") -> Optional[DriveLocation]:
    """
    Parse a positional location descriptor.

    Accepts "[ System : Controller : Slot ]" and
    "[ System : Controller : Enclosure : Slot ]". When `info_format` names
    the enclosure layout, four fields are required.

    Returns:
        DriveLocation, or None when the descriptor cannot be parsed
    """
    match = _LOCATION_RE.match(descriptor or "")
    if not match:
        return None

    numbers = [int(part) for part in re.split(r"\s*:\s*", match.group(1).strip())]
    wants_enclosure = "enclosure" in (info_format or "").lower()

    if len(numbers) == 4:
        if info_format and not wants_enclosure:
            return None
        system, controller, enclosure, slot = numbers
        return DriveLocation(system=system, controller=controller, enclosure=enclosure, slot=slot)

    if wants_enclosure:
        return None
    system, controller, slot = numbers
    return DriveLocation(system=system, controller=controller, slot=slot)


@dataclass
class DiskGroup:
    """Ordered slot identifiers forming one span of a volume"""
    slots: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.slots)

    def to_payload(self) -> Dict[str, List[str]]:
        return {"Group": list(self.slots)}

    @classmethod
    def parse(cls, raw: Any) -> "DiskGroup":
        """
        Build a group from a list of slots or a JSON-encoded list string,
        e.g. ["0", "1"], [0, 1] or '["0-1", "0-2"]'.
        """
        if isinstance(raw, DiskGroup):
            return cls(slots=list(raw.slots))

        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError as e:
                raise ValidationError(f"Could not parse requested drives '{raw}': {e}")

        if not isinstance(raw, (list, tuple)):
            raise ValidationError(f"Disk group must be a list of slots, got {type(raw).__name__}")

        slots = []
        for slot in raw:
            if isinstance(slot, bool) or not isinstance(slot, (str, int)):
                raise ValidationError(f"Invalid slot identifier {slot!r}")
            value = str(slot).strip()
            if not value:
                raise ValidationError("Empty slot identifier in disk group")
            slots.append(value)

        if not slots:
            raise ValidationError("Disk group must contain at least one slot")
        return cls(slots=slots)


def parse_groups(raw_groups: Iterable[Any]) -> List[DiskGroup]:
    groups = [DiskGroup.parse(raw) for raw in raw_groups]
    if not groups:
        raise ValidationError("At least one disk group is required")
    return groups


# ============================================================================
# VALIDATION STEPS
# ============================================================================

def build_slot_index(inventory: Sequence[DriveInfo]) -> Dict[str, DriveInfo]:
    index: Dict[str, DriveInfo] = {}
    for drive in inventory:
        if not drive.location_descriptor:
            continue
        location = parse_location(drive.location_descriptor, drive.location_format)
        if location is None:
            logger.warning(f"Scanning disk location failed: '{drive.location_descriptor}'")
            continue
        index[location.slot_id] = drive
    return index


def resolve_slots(
    groups: Sequence[DiskGroup],
    inventory: Sequence[DriveInfo],
    strict: bool = False,
) -> Tuple[List[DriveInfo], Optional[ValidationError]]:
    """
    Match every requested slot with a drive from the inventory.

    Returns:
        (resolved drives, error). In lenient mode unresolved slots are only
        logged and error is always None.
    """
    index = build_slot_index(inventory)
    resolved: List[DriveInfo] = []
    missing: List[str] = []

    for group in groups:
        for slot in group.slots:
            drive = index.get(slot)
            if drive is None:
                logger.warning(f"Disk slot has not been found on target system: requested disk '{slot}'")
                missing.append(slot)
                continue
            resolved.append(drive)

    if missing and strict:
        return resolved, ValidationError(
            f"Requested disk slots not found on storage controller: {', '.join(missing)}"
        )
    return resolved, None


def find_capability(
    raid_type: str,
    capabilities: Sequence[RaidLevelCapability],
) -> Optional[RaidLevelCapability]:
    for capability in capabilities:
        if capability.raid_type == raid_type:
            return capability
    return None


def applicable_stripe_sizes(
    capability: RaidLevelCapability,
    drives: Sequence[DriveInfo],
) -> Tuple[List[int], Optional[ValidationError]]:
    """Pick the global size list, or the per-media list for `drives`."""
    if capability.stripe_sizes:
        return capability.stripe_sizes, None

    media = {drive.effective_media for drive in drives}
    if not media or None in media:
        return [], ValidationError(
            f"Stripe size cannot be validated for {capability.raid_type}: "
            f"media type of requested drives is unknown"
        )
    if len(media) > 1:
        names = ", ".join(sorted(m.value for m in media))
        return [], ValidationError(
            f"Stripe size cannot be validated for {capability.raid_type}: "
            f"requested drives mix media types ({names})"
        )

    return capability.sizes_for_media(media.pop()), None


def check_span_layout(
    capability: RaidLevelCapability,
    groups: Sequence[DiskGroup],
) -> Optional[ValidationError]:
    num_of_groups = len(groups)

    if capability.minimum_span_count != 0 and capability.maximum_span_count != 0:
        if not capability.minimum_span_count <= num_of_groups <= capability.maximum_span_count:
            return ValidationError(
                f"Requested number of disk groups {num_of_groups} does not match {capability.raid_type} "
                f"(supported span count: {capability.minimum_span_count}-{capability.maximum_span_count})"
            )

        min_disks_in_group = capability.minimum_drive_count // capability.minimum_span_count
        for i, group in enumerate(groups):
            if len(group) < min_disks_in_group:
                return ValidationError(
                    f"Minimal number of disks in group {i} is not fulfilled "
                    f"({len(group)} < {min_disks_in_group})"
                )
        return None

    if num_of_groups != 1:
        return ValidationError(f"For {capability.raid_type} only single group of disks is supported")
    return None


def supports_only_full_volumes(controller_name: str) -> bool:
    return any(model in (controller_name or "") for model in FULL_VOLUME_ONLY_CONTROLLERS)


# ============================================================================
# ENTRY POINT
# ============================================================================

def validate_volume_request(
    raid_type: str,
    stripe_size: int,
    groups: Iterable[Any],
    inventory: Sequence[DriveInfo],
    capabilities: Sequence[RaidLevelCapability],
    controller_name: str = "",
    capacity_bytes: Optional[int] = None,
    strict: Optional[bool] = None,
) -> Tuple[List[DiskGroup], Optional[ValidationError]]:
    """
    Validate a volume request against controller capabilities.

    Args:
        raid_type: Requested RAID type, e.g. "RAID1"
        stripe_size: Requested stripe / optimum IO size in bytes
        groups: Disk groups (DiskGroup, slot lists or JSON list strings)
        inventory: Drives attached to the controller
        capabilities: RAIDLevels advertised by the controller
        controller_name: Storage resource name (model specific rules)
        capacity_bytes: Explicit capacity, None for a full-group volume
        strict: Reject unresolved slots (defaults to BMC_STRICT_SLOT_RESOLUTION)

    Returns:
        (normalized groups, None) on success, ([], ValidationError) otherwise
    """
    if strict is None:
        strict = config.STRICT_SLOT_RESOLUTION

    try:
        disk_groups = parse_groups(groups)
    except ValidationError as e:
        return [], e

    logger.info(f"Details of requested disk groups: {[g.slots for g in disk_groups]}")

    resolved, error = resolve_slots(disk_groups, inventory, strict=strict)
    if error:
        return [], error

    capability = find_capability(raid_type, capabilities)
    if capability is None:
        advertised = [c.raid_type for c in capabilities]
        return [], ValidationError(
            f"RAID type '{raid_type}' has not been successfully validated against "
            f"controller possibilities {advertised}"
        )

    sizes, error = applicable_stripe_sizes(capability, resolved)
    if error:
        return [], error
    if stripe_size not in sizes:
        return [], ValidationError(
            f"Requested stripe size {stripe_size} is not supported for {raid_type} "
            f"(allowed stripe sizes: {sizes})"
        )

    error = check_span_layout(capability, disk_groups)
    if error:
        return [], error

    if capacity_bytes is not None and supports_only_full_volumes(controller_name):
        return [], ValidationError(
            f"{controller_name} controller supports only full volumes (capacity cannot be specified)"
        )

    return disk_groups, None

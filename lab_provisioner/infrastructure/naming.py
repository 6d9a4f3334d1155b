"""Naming conventions for student labs and their Azure resources.

Every lab lives in its own resource group. All resources inside the group
are named after the lab so a group can be inspected (or torn down) without
any local bookkeeping:

    Student3            resource group
    Student3-osdisk     managed disk cloned from the parent snapshot
    Student3-nsg        network security group (RDP inbound)
    Student3-vnet       virtual network with a "default" subnet
    Student3-pip        public IP
    Student3-nic        network interface
    Student3-vm         virtual machine
"""

from __future__ import annotations

import re

LAB_PREFIX = "Student"
DEFAULT_LAB_FILTER = rf"{LAB_PREFIX}\d+"

SUBNET_NAME = "default"
SCHEDULE_PREFIX = "shutdown-computevm-"

# Resource group names: 1-90 chars, alphanumerics, underscore, hyphen,
# period and parentheses, must not end in a period.
_RESOURCE_GROUP_RE = re.compile(r"^[-\w.()]{1,90}$")
_SHUTDOWN_TIME_RE = re.compile(r"^(\d{2}):?(\d{2})$")


def lab_name(index: int) -> str:
    """Return the resource group name for the lab with the given index."""
    if index < 0:
        raise ValueError(f"Lab index must be non-negative, got {index}")
    return f"{LAB_PREFIX}{index}"


def validate_lab_name(name: str) -> str:
    """Check that ``name`` is usable as an Azure resource group name."""
    if not _RESOURCE_GROUP_RE.fullmatch(name) or name.endswith("."):
        raise ValueError(f"Invalid lab name: {name!r}")
    return name


def lab_filter(pattern: str | None = None) -> re.Pattern[str]:
    """Compile a lab filter anchored at both ends.

    ``Student1`` therefore matches only ``Student1`` and never ``Student10``.
    Pass a regex such as ``Student\\d+`` to select a whole cohort.
    """
    pattern = pattern or DEFAULT_LAB_FILTER
    try:
        return re.compile(rf"^(?:{pattern})$")
    except re.error as e:
        raise ValueError(f"Invalid lab filter {pattern!r}: {e}") from e


def disk_name(lab: str) -> str:
    return f"{lab}-osdisk"


def vnet_name(lab: str) -> str:
    return f"{lab}-vnet"


def nsg_name(lab: str) -> str:
    return f"{lab}-nsg"


def public_ip_name(lab: str) -> str:
    return f"{lab}-pip"


def nic_name(lab: str) -> str:
    return f"{lab}-nic"


def vm_name(lab: str) -> str:
    return f"{lab}-vm"


def schedule_name(vm: str) -> str:
    """Name of the auto-shutdown schedule Azure expects for a VM."""
    return f"{SCHEDULE_PREFIX}{vm}"


def vm_id(subscription_id: str, resource_group: str, vm: str) -> str:
    return (
        f"/subscriptions/{subscription_id}"
        f"/resourceGroups/{resource_group}"
        f"/providers/Microsoft.Compute/virtualMachines/{vm}"
    )


def schedule_id(subscription_id: str, resource_group: str, vm: str) -> str:
    return (
        f"/subscriptions/{subscription_id}"
        f"/resourceGroups/{resource_group}"
        f"/providers/Microsoft.DevTestLab/schedules/{schedule_name(vm)}"
    )


def resource_name_from_id(resource_id: str) -> str:
    """Return the trailing name segment of an ARM resource ID."""
    return resource_id.rstrip("/").split("/")[-1]


def resource_group_from_id(resource_id: str) -> str | None:
    """Return the resource group segment of an ARM resource ID, if present."""
    parts = resource_id.strip("/").split("/")
    for key, value in zip(parts, parts[1:]):
        if key.lower() == "resourcegroups":
            return value
    return None


def normalize_shutdown_time(value: str) -> str:
    """Normalize ``HHMM`` or ``HH:MM`` to the ``HHMM`` form schedules use.

    Raises:
        ValueError: If the value is not a valid 24-hour time.
    """
    match = _SHUTDOWN_TIME_RE.fullmatch(value.strip())
    if not match:
        raise ValueError(f"Shutdown time must be HHMM or HH:MM, got {value!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Shutdown time out of range: {value!r}")
    return f"{hour:02d}{minute:02d}"

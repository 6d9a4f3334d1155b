"""Infrastructure components for student lab management.

This module provides:
- AzureLabManager: Azure resource operations (groups, disks, network, VMs, schedules)
- LabFleetManager: Batch lab lifecycle (create, remove, auto-shutdown, RDP, snapshot)
- naming: Lab and resource naming conventions

Example:
    ```python
    from lab_provisioner.infrastructure import LabFleetManager

    fleet = LabFleetManager()
    fleet.create(count=3, source_resource_group="lab-parent", snapshot_name="parent-snap")
    fleet.set_auto_shutdown(shutdown_time="1800", timezone="W. Europe Standard Time")
    ```
"""

from lab_provisioner.infrastructure.azure_lab import VM_SIZES, AzureLabManager
from lab_provisioner.infrastructure.fleet import LabFleetManager, LabInfo, run_batch

__all__ = [
    "AzureLabManager",
    "LabFleetManager",
    "LabInfo",
    "VM_SIZES",
    "run_batch",
]

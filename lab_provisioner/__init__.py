"""Lab Provisioner: per-student training-lab VMs on Azure.

This package provides:
- Cloning lab VMs from a parent disk snapshot, one resource group per student
- Daily auto-shutdown schedules
- Bulk teardown, parent snapshot refresh and RDP file download

Quick Start:
    ```python
    from pathlib import Path

    from lab_provisioner import LabFleetManager

    fleet = LabFleetManager()

    # Student1..Student5 cloned from lab-parent/parent-snap
    fleet.create(count=5, source_resource_group="lab-parent", snapshot_name="parent-snap")

    # One .rdp file per lab
    fleet.fetch_rdp(output_dir=Path("rdp"))

    # Tear everything down
    fleet.remove(pattern=r"Student\\d+", confirm=False)
    ```
"""

__version__ = "0.1.0"

from lab_provisioner.infrastructure import (
    VM_SIZES,
    AzureLabManager,
    LabFleetManager,
    LabInfo,
)

__all__ = [
    "__version__",
    "AzureLabManager",
    "LabFleetManager",
    "LabInfo",
    "VM_SIZES",
]

"""Fleet operations over many student labs.

Provides the lab lifecycle on top of AzureLabManager: create, list,
auto-shutdown, stop, RDP download, remove, and parent snapshot refresh.
Labs are independent, so batch operations fan out over a thread pool and
block until every lab is done. The first failure halts the batch.

Example:
    from lab_provisioner.infrastructure.fleet import LabFleetManager

    fleet = LabFleetManager()
    fleet.create(count=10, source_resource_group="lab-parent",
                 snapshot_name="parent-snap")
    fleet.fetch_rdp(output_dir=Path("rdp"))
    fleet.remove(confirm=False)

    # With explicit credentials:
    from lab_provisioner.infrastructure.azure_lab import AzureLabManager
    fleet = LabFleetManager(azure=AzureLabManager(subscription_id="sub-123"))
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_for_futures
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar

from lab_provisioner.infrastructure import naming
from lab_provisioner.infrastructure.azure_lab import VM_SIZES, AzureLabManager
from lab_provisioner.infrastructure.rdp import write_rdp

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_MAX_WORKERS = 5


@dataclass
class LabInfo:
    """One student lab VM."""

    name: str
    resource_group: str
    vm_name: str
    location: str | None = None
    public_ip: str | None = None
    power_state: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "resource_group": self.resource_group,
            "vm_name": self.vm_name,
            "location": self.location,
            "public_ip": self.public_ip,
            "power_state": self.power_state,
        }


def run_batch(
    fn: Callable[[T], R],
    items: Iterable[T],
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> list[R]:
    """Run ``fn`` over ``items`` in parallel and wait for all of them.

    Results come back in input order. On the first exception, labs that have
    not started yet are cancelled, running ones are allowed to finish, and
    the exception is re-raised.
    """
    items = list(items)
    if not items:
        return []

    with ThreadPoolExecutor(max_workers=max(1, min(len(items), max_workers))) as executor:
        futures: list[Future] = [executor.submit(fn, item) for item in items]
        done, pending = wait_for_futures(futures, return_when=FIRST_EXCEPTION)
        failed = [f for f in futures if f in done and f.exception() is not None]
        if failed:
            for future in pending:
                future.cancel()
            raise failed[0].exception()
    return [future.result() for future in futures]


@dataclass
class LabFleetManager:
    """Creates and manages a fleet of per-student lab VMs.

    Args:
        azure: AzureLabManager instance (controls subscription, auth).
        max_workers: Maximum number of labs processed concurrently.
        log_fn: Optional logging function with signature log_fn(step, message).
    """

    azure: AzureLabManager = field(default_factory=AzureLabManager)
    max_workers: int = DEFAULT_MAX_WORKERS
    log_fn: Any = None

    def _log(self, step: str, message: str, end: str = "\n") -> None:
        """Log a message using the configured log function or print."""
        logger.debug(f"[{step}] {message}")
        if self.log_fn:
            self.log_fn(step, message, end=end)
        else:
            timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
            print(f"[{timestamp}] [{step}] {message}", end=end, flush=True)

    def _matching_groups(self, pattern: str | None) -> list[str]:
        return self.azure.list_resource_groups(naming.lab_filter(pattern))

    def _lab_vms(self, groups: Iterable[str]) -> list[tuple[str, Any]]:
        """Return (resource_group, vm) pairs for every VM in ``groups``."""
        pairs = []
        for group in groups:
            for vm in self.azure.list_vms(group):
                pairs.append((group, vm))
        return pairs

    # =========================================================================
    # Create
    # =========================================================================

    def create(
        self,
        source_resource_group: str,
        snapshot_name: str,
        count: int | None = None,
        name: str | None = None,
        start_index: int = 1,
        vm_size: str = "Standard_D2s_v3",
        location: str | None = None,
        shutdown_time: str = "1900",
        timezone: str = "UTC",
    ) -> list[LabInfo]:
        """Provision labs cloned from the parent snapshot.

        Args:
            source_resource_group: Resource group holding the parent snapshot.
            snapshot_name: Name of the parent snapshot.
            count: Number of labs to create (Student{start_index}...).
            name: Explicit name of a single lab. Mutually exclusive with count.
            start_index: Index of the first lab when using count.
            vm_size: Azure VM size for every lab.
            location: Azure region. Defaults to the snapshot's region.
            shutdown_time: Daily auto-shutdown time (HHMM).
            timezone: Windows time zone ID for the shutdown schedule.

        Returns:
            LabInfo for each created lab, in creation order.

        Raises:
            ValueError: On invalid arguments.
        """
        if (count is None) == (name is None):
            raise ValueError("Specify exactly one of count or name")
        if name is not None:
            labs = [naming.validate_lab_name(name)]
        else:
            if count < 1:
                raise ValueError(f"Lab count must be at least 1, got {count}")
            labs = [naming.lab_name(start_index + i) for i in range(count)]
        if vm_size not in VM_SIZES:
            raise ValueError(
                f"Unsupported VM size {vm_size!r}, choose one of: {', '.join(VM_SIZES)}"
            )
        shutdown_time = naming.normalize_shutdown_time(shutdown_time)

        snapshot = self.azure.get_snapshot(source_resource_group, snapshot_name)
        location = location or snapshot.location

        self._log("CREATE", f"Creating {len(labs)} lab(s) from {snapshot_name} in {location}")
        self._log("CREATE", f"  Size: {vm_size}, auto-shutdown: {shutdown_time} {timezone}")

        def create_lab(lab: str) -> LabInfo:
            info = self._create_lab(
                lab, snapshot, snapshot_name, location, vm_size, shutdown_time, timezone
            )
            self._log("CREATE", f"  {lab}: ready ({info.public_ip or 'no IP yet'})")
            return info

        try:
            created = run_batch(create_lab, labs, self.max_workers)
        except Exception as e:
            self._log("CREATE", f"FAILED: {e}")
            raise

        self._log("CREATE", f"Created {len(created)} lab(s)")
        return created

    def _create_lab(
        self,
        lab: str,
        snapshot: Any,
        snapshot_name: str,
        location: str,
        vm_size: str,
        shutdown_time: str,
        timezone: str,
    ) -> LabInfo:
        """Build one lab: resource group, disk, network, VM, shutdown policy."""
        self.azure.create_resource_group(
            lab, location, tags={"LabRole": "student", "LabSource": snapshot_name}
        )
        disk = self.azure.create_disk_from_snapshot(
            lab, naming.disk_name(lab), snapshot, location
        )
        nic = self.azure.create_network(lab, lab, location)
        vm = naming.vm_name(lab)
        self.azure.create_vm_from_disk(lab, vm, location, vm_size, disk, nic)
        self.azure.set_auto_shutdown(lab, vm, location, shutdown_time, timezone)
        return LabInfo(
            name=lab,
            resource_group=lab,
            vm_name=vm,
            location=location,
            public_ip=self.azure.get_vm_ip(lab, vm),
        )

    # =========================================================================
    # Inspect / shutdown / stop
    # =========================================================================

    def list_labs(self, pattern: str | None = None) -> list[LabInfo]:
        """List lab VMs in resource groups matching ``pattern``."""
        labs = []
        for group, vm in self._lab_vms(self._matching_groups(pattern)):
            labs.append(
                LabInfo(
                    name=group,
                    resource_group=group,
                    vm_name=vm.name,
                    location=vm.location,
                    public_ip=self.azure.get_vm_ip(group, vm.name),
                    power_state=self.azure.get_vm_state(group, vm.name),
                )
            )
        return labs

    def set_auto_shutdown(
        self,
        pattern: str | None = None,
        shutdown_time: str = "1900",
        timezone: str = "UTC",
        enabled: bool = True,
    ) -> list[str]:
        """Apply an auto-shutdown schedule to every VM of the matching labs.

        Returns:
            Schedule resource IDs, one per VM.
        """
        shutdown_time = naming.normalize_shutdown_time(shutdown_time)
        targets = self._lab_vms(self._matching_groups(pattern))
        if not targets:
            self._log("SHUTDOWN", "No matching labs found.")
            return []

        state = "enabled" if enabled else "disabled"
        self._log(
            "SHUTDOWN",
            f"Setting auto-shutdown ({state}) at {shutdown_time} {timezone} "
            f"on {len(targets)} VM(s)",
        )

        def apply(target: tuple[str, Any]) -> str:
            group, vm = target
            schedule = self.azure.set_auto_shutdown(
                group, vm.name, vm.location, shutdown_time, timezone, enabled=enabled
            )
            self._log("SHUTDOWN", f"  {group}/{vm.name}: {state}")
            return schedule

        return run_batch(apply, targets, self.max_workers)

    def stop(self, pattern: str | None = None, wait: bool = True) -> list[str]:
        """Deallocate every VM of the matching labs.

        Returns:
            Names of the stopped VMs.
        """
        targets = self._lab_vms(self._matching_groups(pattern))
        if not targets:
            self._log("STOP", "No matching labs found.")
            return []

        self._log("STOP", f"Stopping {len(targets)} VM(s)...")

        def stop_vm(target: tuple[str, Any]) -> str:
            group, vm = target
            self.azure.deallocate_vm(group, vm.name, wait=wait)
            self._log("STOP", f"  {group}/{vm.name}: {'stopped' if wait else 'stopping'}")
            return vm.name

        return run_batch(stop_vm, targets, self.max_workers)

    # =========================================================================
    # RDP files
    # =========================================================================

    def fetch_rdp(
        self,
        output_dir: Path,
        pattern: str | None = None,
        username: str | None = None,
    ) -> list[Path]:
        """Write one .rdp file per lab VM into ``output_dir``.

        Files are named after the lab resource group. Labs with more than one
        VM get ``{group}-{vm}.rdp``.

        Raises:
            RuntimeError: If a VM has no public IP address.
        """
        output_dir = Path(output_dir)
        targets = self._lab_vms(self._matching_groups(pattern))
        if not targets:
            self._log("RDP", "No matching labs found.")
            return []

        per_group: dict[str, int] = {}
        for group, _vm in targets:
            per_group[group] = per_group.get(group, 0) + 1

        self._log("RDP", f"Downloading {len(targets)} RDP file(s) to {output_dir}")

        def fetch(target: tuple[str, Any]) -> Path:
            group, vm = target
            ip = self.azure.wait_for_vm_ip(group, vm.name)
            if not ip:
                raise RuntimeError(f"VM {group}/{vm.name} has no public IP address")
            stem = group if per_group[group] == 1 else f"{group}-{vm.name}"
            path = write_rdp(output_dir / f"{stem}.rdp", ip, username=username)
            self._log("RDP", f"  {group}/{vm.name}: {path.name} ({ip})")
            return path

        return run_batch(fetch, targets, self.max_workers)

    # =========================================================================
    # Remove
    # =========================================================================

    def remove(self, pattern: str | None = None, confirm: bool = True) -> list[str]:
        """Delete every resource group matching ``pattern``.

        Args:
            pattern: Lab filter regex (anchored at both ends).
            confirm: If True, prompt for confirmation before deleting.

        Returns:
            Names of the deleted resource groups (empty if aborted).
        """
        groups = self._matching_groups(pattern)
        if not groups:
            self._log("REMOVE", "No matching labs found.")
            return []

        self._log("REMOVE", f"Found {len(groups)} lab resource group(s):")
        for group in groups:
            self._log("REMOVE", f"  {group}")

        if confirm:
            try:
                user_input = input("\nDelete these resource groups? [y/N]: ")
            except (KeyboardInterrupt, EOFError):
                user_input = ""
            if user_input.strip().lower() != "y":
                self._log("REMOVE", "Aborted.")
                return []

        def delete(group: str) -> str:
            self.azure.delete_resource_group(group)
            self._log("REMOVE", f"  {group}: deleted")
            return group

        removed = run_batch(delete, groups, self.max_workers)
        self._log("REMOVE", f"Removed {len(removed)} lab(s).")
        return removed

    # =========================================================================
    # Parent snapshot
    # =========================================================================

    def refresh_snapshot(
        self,
        resource_group: str,
        vm: str,
        snapshot_name: str,
        target_resource_group: str | None = None,
        restart: bool = False,
    ) -> str:
        """Stop the parent VM and snapshot its OS disk.

        Returns:
            Snapshot resource ID.
        """
        self._log("SNAPSHOT", f"Stopping parent VM {resource_group}/{vm}...")
        self.azure.deallocate_vm(resource_group, vm)

        try:
            self._log("SNAPSHOT", f"Creating snapshot {snapshot_name}...")
            snapshot_id = self.azure.snapshot_os_disk(
                resource_group, vm, snapshot_name, target_resource_group
            )
            self._log("SNAPSHOT", f"Snapshot ready: {snapshot_id}")
        finally:
            if restart:
                self._log("SNAPSHOT", f"Restarting parent VM {vm}...")
                self.azure.start_vm(resource_group, vm)
        return snapshot_id

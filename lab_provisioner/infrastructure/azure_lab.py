"""Azure resource operations for student lab provisioning.

Thin wrapper over the Azure management SDKs. Each method performs one step
of the lab recipe (resource group, disk, network, VM, shutdown schedule) or
one lifecycle action (stop, delete, snapshot) and blocks on the SDK poller.
SDK exceptions are not caught here; callers decide whether a failure halts
the batch.

Authentication uses DefaultAzureCredential unless a service principal is
configured. DefaultAzureCredential automatically tries (in order):
    1. Environment variables (AZURE_CLIENT_ID + SECRET + TENANT_ID)
    2. Workload identity (Kubernetes)
    3. Managed identity (Azure VMs)
    4. Azure CLI credential (az login)
    5. Azure PowerShell credential
    6. Interactive browser

Example:
    from lab_provisioner.infrastructure.azure_lab import AzureLabManager

    azure = AzureLabManager(subscription_id="sub-123")
    azure.create_resource_group("Student1", "westeurope")
    ip = azure.get_vm_ip("Student1", "Student1-vm")
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from azure.core.exceptions import ResourceNotFoundError
from tenacity import retry, retry_if_result, stop_after_attempt, wait_exponential

from lab_provisioner.infrastructure import naming

logger = logging.getLogger(__name__)

# DevTestLab schedules are not covered by the compute SDK, they are created
# through the generic resource API with this version.
SCHEDULE_API_VERSION = "2018-09-15"

VM_SIZES = [
    "Standard_B2s",
    "Standard_B2ms",
    "Standard_D2s_v3",
    "Standard_D4s_v3",
    "Standard_D8s_v3",
]

VNET_ADDRESS_PREFIX = "10.0.0.0/16"
SUBNET_ADDRESS_PREFIX = "10.0.0.0/24"


def _default_subscription_id() -> str | None:
    """Get default subscription ID from config."""
    from lab_provisioner.config import settings

    return settings.azure_subscription_id


def _get_credential():
    """Get Azure credential.

    Priority:
        1. Service principal (if AZURE_CLIENT_ID + SECRET + TENANT_ID set)
        2. DefaultAzureCredential (CLI login, managed identity, etc.)
    """
    from azure.identity import ClientSecretCredential, DefaultAzureCredential

    from lab_provisioner.config import settings

    if all(
        [
            settings.azure_client_id,
            settings.azure_client_secret,
            settings.azure_tenant_id,
        ]
    ):
        logger.info("Using service principal authentication")
        return ClientSecretCredential(
            tenant_id=settings.azure_tenant_id,
            client_id=settings.azure_client_id,
            client_secret=settings.azure_client_secret,
        )

    logger.info("Using DefaultAzureCredential")
    return DefaultAzureCredential()


@dataclass
class AzureLabManager:
    """Azure resource operations used to build and manage student labs.

    Args:
        subscription_id: Azure subscription ID. Auto-loaded from
            AZURE_SUBSCRIPTION_ID if not provided.
        credential: Optional Azure SDK credential. If None, a service
            principal or DefaultAzureCredential is used.
    """

    subscription_id: str | None = field(default_factory=_default_subscription_id)
    credential: Any = None

    def __post_init__(self) -> None:
        self._resource_client = None
        self._compute_client = None
        self._network_client = None
        # Labs are provisioned from worker threads; clients are created once
        self._client_lock = threading.Lock()

    def _require_subscription(self) -> str:
        if not self.subscription_id:
            raise RuntimeError(
                "No Azure subscription configured. "
                "Set AZURE_SUBSCRIPTION_ID or pass --subscription-id."
            )
        return self.subscription_id

    def _get_cred(self):
        """Return the configured credential, resolving it once. Call under lock."""
        if self.credential is None:
            self.credential = _get_credential()
        return self.credential

    def _get_resource_client(self):
        """Lazy-load Azure ResourceManagementClient."""
        with self._client_lock:
            if self._resource_client is None:
                from azure.mgmt.resource import ResourceManagementClient

                subscription_id = self._require_subscription()
                self._resource_client = ResourceManagementClient(
                    self._get_cred(), subscription_id
                )
            return self._resource_client

    def _get_compute_client(self):
        """Lazy-load Azure ComputeManagementClient."""
        with self._client_lock:
            if self._compute_client is None:
                from azure.mgmt.compute import ComputeManagementClient

                subscription_id = self._require_subscription()
                self._compute_client = ComputeManagementClient(
                    self._get_cred(), subscription_id
                )
            return self._compute_client

    def _get_network_client(self):
        """Lazy-load Azure NetworkManagementClient."""
        with self._client_lock:
            if self._network_client is None:
                from azure.mgmt.network import NetworkManagementClient

                subscription_id = self._require_subscription()
                self._network_client = NetworkManagementClient(
                    self._get_cred(), subscription_id
                )
            return self._network_client

    # =========================================================================
    # Resource groups
    # =========================================================================

    def create_resource_group(
        self,
        name: str,
        location: str,
        tags: dict[str, str] | None = None,
    ) -> Any:
        """Create (or update) a resource group."""
        resources = self._get_resource_client()
        logger.info(f"Creating resource group {name} in {location}")
        return resources.resource_groups.create_or_update(
            name, {"location": location, "tags": tags or {}}
        )

    def list_resource_groups(self, pattern: re.Pattern[str]) -> list[str]:
        """Return names of resource groups that fully match ``pattern``, sorted."""
        resources = self._get_resource_client()
        names = [
            group.name
            for group in resources.resource_groups.list()
            if pattern.match(group.name)
        ]
        return sorted(names, key=_natural_key)

    def delete_resource_group(self, name: str) -> None:
        """Delete a resource group and everything in it (blocking)."""
        resources = self._get_resource_client()
        logger.info(f"Deleting resource group {name}")
        resources.resource_groups.begin_delete(name).result()

    # =========================================================================
    # Disks and snapshots
    # =========================================================================

    def get_snapshot(self, resource_group: str, name: str) -> Any:
        """Fetch a snapshot. Raises ResourceNotFoundError if missing."""
        return self._get_compute_client().snapshots.get(resource_group, name)

    def create_disk_from_snapshot(
        self,
        resource_group: str,
        disk_name: str,
        snapshot: Any,
        location: str,
        sku: str = "Premium_LRS",
    ) -> Any:
        """Clone a managed disk from a snapshot.

        The OS type and Hyper-V generation are copied from the snapshot so the
        disk can be attached as an OS disk.
        """
        compute = self._get_compute_client()
        params: dict[str, Any] = {
            "location": location,
            "sku": {"name": sku},
            "os_type": snapshot.os_type,
            "creation_data": {
                "create_option": "Copy",
                "source_resource_id": snapshot.id,
            },
        }
        if getattr(snapshot, "hyper_v_generation", None):
            params["hyper_v_generation"] = snapshot.hyper_v_generation

        logger.info(f"Cloning disk {disk_name} from snapshot {snapshot.name}")
        return compute.disks.begin_create_or_update(
            resource_group, disk_name, params
        ).result()

    def snapshot_os_disk(
        self,
        resource_group: str,
        vm: str,
        snapshot_name: str,
        target_resource_group: str | None = None,
    ) -> str:
        """Create or replace a snapshot of a VM's OS disk.

        Returns:
            Snapshot resource ID.
        """
        compute = self._get_compute_client()
        machine = compute.virtual_machines.get(resource_group, vm)
        disk_id = machine.storage_profile.os_disk.managed_disk.id
        disk = compute.disks.get(
            naming.resource_group_from_id(disk_id) or resource_group,
            naming.resource_name_from_id(disk_id),
        )

        params: dict[str, Any] = {
            "location": machine.location,
            "sku": {"name": "Standard_LRS"},
            "os_type": disk.os_type,
            "creation_data": {
                "create_option": "Copy",
                "source_resource_id": disk_id,
            },
            "tags": {"LabRole": "parent"},
        }
        if getattr(disk, "hyper_v_generation", None):
            params["hyper_v_generation"] = disk.hyper_v_generation

        target = target_resource_group or resource_group
        logger.info(f"Snapshotting {vm} OS disk into {target}/{snapshot_name}")
        snapshot = compute.snapshots.begin_create_or_update(
            target, snapshot_name, params
        ).result()
        return snapshot.id

    # =========================================================================
    # Networking
    # =========================================================================

    def create_network(self, resource_group: str, lab: str, location: str) -> Any:
        """Create NSG, VNet/subnet, public IP and NIC for a lab.

        Returns:
            The created network interface.
        """
        network = self._get_network_client()

        nsg = network.network_security_groups.begin_create_or_update(
            resource_group,
            naming.nsg_name(lab),
            {
                "location": location,
                "security_rules": [
                    {
                        "name": "allow-rdp",
                        "protocol": "Tcp",
                        "direction": "Inbound",
                        "access": "Allow",
                        "priority": 1000,
                        "source_address_prefix": "*",
                        "source_port_range": "*",
                        "destination_address_prefix": "*",
                        "destination_port_range": "3389",
                    }
                ],
            },
        ).result()

        vnet = network.virtual_networks.begin_create_or_update(
            resource_group,
            naming.vnet_name(lab),
            {
                "location": location,
                "address_space": {"address_prefixes": [VNET_ADDRESS_PREFIX]},
                "subnets": [
                    {
                        "name": naming.SUBNET_NAME,
                        "address_prefix": SUBNET_ADDRESS_PREFIX,
                        "network_security_group": {"id": nsg.id},
                    }
                ],
            },
        ).result()
        subnet_id = vnet.subnets[0].id

        pip = network.public_ip_addresses.begin_create_or_update(
            resource_group,
            naming.public_ip_name(lab),
            {
                "location": location,
                "sku": {"name": "Standard"},
                "public_ip_allocation_method": "Static",
            },
        ).result()

        return network.network_interfaces.begin_create_or_update(
            resource_group,
            naming.nic_name(lab),
            {
                "location": location,
                "ip_configurations": [
                    {
                        "name": "ipconfig1",
                        "subnet": {"id": subnet_id},
                        "public_ip_address": {"id": pip.id},
                    }
                ],
            },
        ).result()

    # =========================================================================
    # Virtual machines
    # =========================================================================

    def create_vm_from_disk(
        self,
        resource_group: str,
        name: str,
        location: str,
        size: str,
        disk: Any,
        nic: Any,
    ) -> Any:
        """Create a VM that boots from an existing managed OS disk."""
        compute = self._get_compute_client()
        vm_params = {
            "location": location,
            "hardware_profile": {"vm_size": size},
            "storage_profile": {
                "os_disk": {
                    "os_type": disk.os_type,
                    "create_option": "Attach",
                    "managed_disk": {"id": disk.id},
                },
            },
            "network_profile": {
                "network_interfaces": [{"id": nic.id}],
            },
        }
        logger.info(f"Creating VM {name} ({size})")
        return compute.virtual_machines.begin_create_or_update(
            resource_group, name, vm_params
        ).result()

    def list_vms(self, resource_group: str) -> list[Any]:
        """List VMs in a resource group."""
        return list(self._get_compute_client().virtual_machines.list(resource_group))

    def get_vm_ip(self, resource_group: str, name: str) -> Optional[str]:
        """Get VM public IP address.

        Returns:
            Public IP string, or None if the VM or its IP doesn't exist.
        """
        compute = self._get_compute_client()
        network = self._get_network_client()
        try:
            vm = compute.virtual_machines.get(resource_group, name)
            # Walk NIC -> IP config -> public IP
            for nic_ref in vm.network_profile.network_interfaces or []:
                nic = network.network_interfaces.get(
                    naming.resource_group_from_id(nic_ref.id) or resource_group,
                    naming.resource_name_from_id(nic_ref.id),
                )
                for ip_config in nic.ip_configurations or []:
                    if ip_config.public_ip_address:
                        pip_id = ip_config.public_ip_address.id
                        pip = network.public_ip_addresses.get(
                            naming.resource_group_from_id(pip_id) or resource_group,
                            naming.resource_name_from_id(pip_id),
                        )
                        if pip.ip_address:
                            return pip.ip_address
        except ResourceNotFoundError as e:
            logger.debug(f"get_vm_ip failed for {resource_group}/{name}: {e}")
        return None

    @retry(
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, min=2, max=15),
        retry=retry_if_result(lambda ip: ip is None),
        retry_error_callback=lambda retry_state: None,
    )
    def wait_for_vm_ip(self, resource_group: str, name: str) -> Optional[str]:
        """Get the VM public IP, waiting for a static IP to be allocated."""
        return self.get_vm_ip(resource_group, name)

    def get_vm_state(self, resource_group: str, name: str) -> Optional[str]:
        """Get VM power state (e.g., "VM running"), or None."""
        compute = self._get_compute_client()
        try:
            view = compute.virtual_machines.instance_view(resource_group, name)
        except ResourceNotFoundError:
            return None
        for status in view.statuses or []:
            if status.code and status.code.startswith("PowerState/"):
                return status.display_status
        return None

    def deallocate_vm(self, resource_group: str, name: str, wait: bool = True) -> None:
        """Deallocate a VM (stop billing, keep disk and NIC)."""
        compute = self._get_compute_client()
        logger.info(f"Deallocating VM {resource_group}/{name}")
        poller = compute.virtual_machines.begin_deallocate(resource_group, name)
        if wait:
            poller.result()

    def start_vm(self, resource_group: str, name: str) -> None:
        """Start a deallocated VM (blocking)."""
        compute = self._get_compute_client()
        logger.info(f"Starting VM {resource_group}/{name}")
        compute.virtual_machines.begin_start(resource_group, name).result()

    # =========================================================================
    # Auto-shutdown
    # =========================================================================

    def set_auto_shutdown(
        self,
        resource_group: str,
        vm: str,
        location: str,
        time: str,
        timezone: str = "UTC",
        enabled: bool = True,
    ) -> str:
        """Create or update the daily auto-shutdown schedule of a VM.

        Auto-shutdown is a Microsoft.DevTestLab/schedules resource, not part
        of the compute SDK, so it goes through the generic resource API.

        Args:
            resource_group: Resource group holding the VM.
            vm: VM name.
            location: Azure region of the VM.
            time: Daily shutdown time, ``HHMM`` or ``HH:MM``.
            timezone: Windows time zone ID (e.g. "W. Europe Standard Time").
            enabled: Whether the schedule is active.

        Returns:
            Schedule resource ID.
        """
        subscription_id = self._require_subscription()
        resources = self._get_resource_client()
        shutdown_time = naming.normalize_shutdown_time(time)
        resource_id = naming.schedule_id(subscription_id, resource_group, vm)

        logger.info(f"Setting auto-shutdown for {vm} at {shutdown_time} {timezone}")
        resources.resources.begin_create_or_update_by_id(
            resource_id=resource_id,
            api_version=SCHEDULE_API_VERSION,
            parameters={
                "location": location,
                "properties": {
                    "status": "Enabled" if enabled else "Disabled",
                    "taskType": "ComputeVmShutdownTask",
                    "dailyRecurrence": {"time": shutdown_time},
                    "timeZoneId": timezone,
                    "notificationSettings": {"status": "Disabled"},
                    "targetResourceId": naming.vm_id(
                        subscription_id, resource_group, vm
                    ),
                },
            },
        ).result()
        return resource_id


def _natural_key(name: str) -> list[Any]:
    """Sort key so Student2 sorts before Student10."""
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r"(\d+)", name)]

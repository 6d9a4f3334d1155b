"""CLI for student lab provisioning on Azure.

Usage:
    # Create Student1..Student10 from the parent snapshot
    python -m lab_provisioner.cli create-labs --count 10 \\
        --source-resource-group lab-parent --snapshot-name parent-snap

    # Create a single named lab
    python -m lab_provisioner.cli create-labs --name Trainer \\
        --source-resource-group lab-parent --snapshot-name parent-snap

    # Change the shutdown schedule of every lab
    python -m lab_provisioner.cli set-auto-shutdown --time 1800 \\
        --timezone "W. Europe Standard Time"

    # Download RDP files
    python -m lab_provisioner.cli fetch-rdp --output ./rdp

    # Refresh the parent snapshot
    python -m lab_provisioner.cli snapshot --resource-group lab-parent \\
        --vm-name parent-vm --snapshot-name parent-snap

    # Remove a single lab (the filter is anchored: Student1 != Student10)
    python -m lab_provisioner.cli remove-labs --filter Student1 --yes
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from azure.core.exceptions import AzureError

from lab_provisioner.config import settings
from lab_provisioner.infrastructure import VM_SIZES, AzureLabManager, LabFleetManager

logger = logging.getLogger(__name__)


def init_logging(verbose: bool = False) -> None:
    """Configure root logging for a CLI session."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    if not verbose:
        # The SDK logs every HTTP request at INFO
        logging.getLogger("azure").setLevel(logging.WARNING)


def _build_fleet(args: argparse.Namespace) -> LabFleetManager:
    azure = AzureLabManager(
        subscription_id=args.subscription_id or settings.azure_subscription_id
    )
    return LabFleetManager(azure=azure, max_workers=args.max_workers)


def _require(value: str | None, flag: str) -> str:
    if not value:
        raise ValueError(f"{flag} is required (or set it in the environment / .env)")
    return value


def cmd_create_labs(args: argparse.Namespace) -> int:
    """Create labs cloned from the parent snapshot."""
    fleet = _build_fleet(args)
    labs = fleet.create(
        source_resource_group=_require(
            args.source_resource_group, "--source-resource-group"
        ),
        snapshot_name=_require(args.snapshot_name, "--snapshot-name"),
        count=args.count,
        name=args.name,
        start_index=args.start_index,
        vm_size=args.size,
        location=args.location,
        shutdown_time=args.shutdown_time,
        timezone=args.timezone,
    )

    print("\n" + "=" * 50)
    print(f"Created {len(labs)} lab(s)")
    print("=" * 50)
    for lab in labs:
        print(f"{lab.name:<20} {lab.vm_name:<24} {lab.public_ip or '-'}")
    return 0


def cmd_set_auto_shutdown(args: argparse.Namespace) -> int:
    """Apply an auto-shutdown schedule to matching labs."""
    fleet = _build_fleet(args)
    schedules = fleet.set_auto_shutdown(
        pattern=args.filter,
        shutdown_time=args.time,
        timezone=args.timezone,
        enabled=not args.disable,
    )
    print(f"Updated {len(schedules)} schedule(s).")
    return 0


def cmd_remove_labs(args: argparse.Namespace) -> int:
    """Delete the resource groups of matching labs."""
    fleet = _build_fleet(args)
    removed = fleet.remove(pattern=args.filter, confirm=not args.yes)
    print(f"Removed {len(removed)} lab(s).")
    return 0


def cmd_fetch_rdp(args: argparse.Namespace) -> int:
    """Download RDP connection files for matching labs."""
    fleet = _build_fleet(args)
    paths = fleet.fetch_rdp(
        output_dir=Path(args.output),
        pattern=args.filter,
        username=args.username,
    )
    print(f"Wrote {len(paths)} RDP file(s) to {args.output}")
    return 0


def cmd_snapshot(args: argparse.Namespace) -> int:
    """Refresh the parent snapshot from the parent VM."""
    fleet = _build_fleet(args)
    snapshot_id = fleet.refresh_snapshot(
        resource_group=_require(args.resource_group, "--resource-group"),
        vm=args.vm_name,
        snapshot_name=_require(args.snapshot_name, "--snapshot-name"),
        target_resource_group=args.target_resource_group,
        restart=args.restart,
    )
    print(f"Snapshot: {snapshot_id}")
    return 0


def cmd_list_labs(args: argparse.Namespace) -> int:
    """List matching labs with power state and public IP."""
    fleet = _build_fleet(args)
    labs = fleet.list_labs(pattern=args.filter)

    if args.json:
        print(json.dumps([lab.to_dict() for lab in labs], indent=2))
        return 0

    if not labs:
        print("No matching labs found.")
        return 0

    print(f"{'LAB':<20} {'VM':<24} {'STATE':<18} {'PUBLIC IP'}")
    for lab in labs:
        print(
            f"{lab.name:<20} {lab.vm_name:<24} "
            f"{lab.power_state or 'unknown':<18} {lab.public_ip or '-'}"
        )
    return 0


def cmd_stop_labs(args: argparse.Namespace) -> int:
    """Deallocate the VMs of matching labs."""
    fleet = _build_fleet(args)
    stopped = fleet.stop(pattern=args.filter, wait=not args.no_wait)
    print(f"Stopped {len(stopped)} VM(s).")
    return 0


def _add_filter(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--filter", type=str, default=settings.lab_filter,
                        help="Regex matched against the whole resource group name "
                             f"(default: {settings.lab_filter})")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lab-provisioner",
        description="Provision and manage per-student lab VMs on Azure",
    )
    parser.add_argument("--subscription-id", type=str,
                        help="Azure subscription ID (default: AZURE_SUBSCRIPTION_ID)")
    parser.add_argument("--max-workers", type=int, default=settings.lab_max_workers,
                        help="Labs processed in parallel")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    create_parser = subparsers.add_parser("create-labs", help="Create labs from the parent snapshot")
    target = create_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--count", type=int, help="Number of labs (Student1..StudentN)")
    target.add_argument("--name", type=str, help="Explicit name of a single lab")
    create_parser.add_argument("--start-index", type=int, default=1,
                               help="Index of the first lab when using --count")
    create_parser.add_argument("--size", type=str, default=settings.lab_vm_size,
                               choices=VM_SIZES, help="VM size")
    create_parser.add_argument("--source-resource-group", type=str,
                               default=settings.lab_source_resource_group,
                               help="Resource group holding the parent snapshot")
    create_parser.add_argument("--snapshot-name", type=str,
                               default=settings.lab_snapshot_name,
                               help="Parent snapshot name")
    create_parser.add_argument("--location", type=str, default=settings.lab_location,
                               help="Azure region (default: snapshot region)")
    create_parser.add_argument("--shutdown-time", type=str, default=settings.lab_shutdown_time,
                               help="Daily auto-shutdown time, HHMM")
    create_parser.add_argument("--timezone", type=str, default=settings.lab_shutdown_timezone,
                               help="Windows time zone ID for auto-shutdown")

    shutdown_parser = subparsers.add_parser("set-auto-shutdown",
                                            help="Set the auto-shutdown schedule of labs")
    _add_filter(shutdown_parser)
    shutdown_parser.add_argument("--time", type=str, default=settings.lab_shutdown_time,
                                 help="Daily auto-shutdown time, HHMM")
    shutdown_parser.add_argument("--timezone", type=str, default=settings.lab_shutdown_timezone,
                                 help="Windows time zone ID")
    shutdown_parser.add_argument("--disable", action="store_true",
                                 help="Disable the schedule instead of enabling it")

    remove_parser = subparsers.add_parser("remove-labs", help="Delete lab resource groups")
    _add_filter(remove_parser)
    remove_parser.add_argument("-y", "--yes", action="store_true",
                               help="Don't ask for confirmation")

    rdp_parser = subparsers.add_parser("fetch-rdp", help="Download RDP files for labs")
    _add_filter(rdp_parser)
    rdp_parser.add_argument("--output", type=str, default="rdp",
                            help="Directory for the .rdp files")
    rdp_parser.add_argument("--username", type=str, help="User name to prefill")

    snapshot_parser = subparsers.add_parser("snapshot",
                                            help="Snapshot the parent VM's OS disk")
    snapshot_parser.add_argument("--resource-group", type=str,
                                 default=settings.lab_source_resource_group,
                                 help="Resource group of the parent VM")
    snapshot_parser.add_argument("--vm-name", type=str, required=True,
                                 help="Parent VM name")
    snapshot_parser.add_argument("--snapshot-name", type=str,
                                 default=settings.lab_snapshot_name,
                                 help="Snapshot to create or replace")
    snapshot_parser.add_argument("--target-resource-group", type=str,
                                 help="Resource group for the snapshot (default: parent's)")
    snapshot_parser.add_argument("--restart", action="store_true",
                                 help="Start the parent VM again afterwards")

    list_parser = subparsers.add_parser("list-labs", help="List labs and their state")
    _add_filter(list_parser)
    list_parser.add_argument("--json", action="store_true", help="Output JSON")

    stop_parser = subparsers.add_parser("stop-labs", help="Deallocate lab VMs")
    _add_filter(stop_parser)
    stop_parser.add_argument("--no-wait", action="store_true",
                             help="Don't wait for deallocation to finish")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    init_logging(args.verbose)

    # Dispatch to command handler
    handlers = {
        "create-labs": cmd_create_labs,
        "set-auto-shutdown": cmd_set_auto_shutdown,
        "remove-labs": cmd_remove_labs,
        "fetch-rdp": cmd_fetch_rdp,
        "snapshot": cmd_snapshot,
        "list-labs": cmd_list_labs,
        "stop-labs": cmd_stop_labs,
    }

    handler = handlers.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}")
        return 1

    try:
        return handler(args)
    except (ValueError, RuntimeError, AzureError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"ERROR: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

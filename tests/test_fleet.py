"""Tests for LabFleetManager batch operations."""

import threading
from unittest.mock import MagicMock, patch

import pytest

from lab_provisioner.infrastructure.azure_lab import AzureLabManager
from lab_provisioner.infrastructure.fleet import LabFleetManager, LabInfo, run_batch


def _vm(name, location="westeurope"):
    vm = MagicMock(location=location)
    vm.name = name
    return vm


@pytest.fixture
def azure():
    mock = MagicMock(spec=AzureLabManager)
    mock.get_snapshot.return_value = MagicMock(location="westeurope", os_type="Windows")
    mock.get_vm_ip.return_value = "20.1.2.3"
    mock.wait_for_vm_ip.return_value = "20.1.2.3"
    return mock


@pytest.fixture
def fleet(azure):
    return LabFleetManager(azure=azure, max_workers=2, log_fn=lambda *a, **kw: None)


class TestRunBatch:
    """Tests for run_batch()."""

    def test_results_in_input_order(self):
        assert run_batch(lambda x: x * 2, [3, 1, 2], max_workers=3) == [6, 2, 4]

    def test_empty(self):
        assert run_batch(lambda x: x, []) == []

    def test_first_failure_halts_batch(self):
        """Items not yet started when a failure occurs are never run."""
        started = []
        release = threading.Event()

        def work(item):
            started.append(item)
            if item == 0:
                raise RuntimeError("quota exceeded")
            release.wait(timeout=0.5)
            return item

        with pytest.raises(RuntimeError, match="quota exceeded"):
            run_batch(work, [0, 1, 2, 3], max_workers=1)
        release.set()

        assert 0 in started
        assert 3 not in started


class TestCreate:
    """Tests for LabFleetManager.create()."""

    def test_creation_order_for_one_lab(self, fleet, azure):
        labs = fleet.create(
            source_resource_group="lab-parent",
            snapshot_name="parent-snap",
            name="Trainer",
            vm_size="Standard_B2s",
            shutdown_time="18:00",
            timezone="UTC",
        )

        steps = [call[0] for call in azure.method_calls]
        assert steps == [
            "get_snapshot",
            "create_resource_group",
            "create_disk_from_snapshot",
            "create_network",
            "create_vm_from_disk",
            "set_auto_shutdown",
            "get_vm_ip",
        ]
        assert labs == [
            LabInfo(
                name="Trainer",
                resource_group="Trainer",
                vm_name="Trainer-vm",
                location="westeurope",
                public_ip="20.1.2.3",
            )
        ]
        azure.set_auto_shutdown.assert_called_once_with(
            "Trainer", "Trainer-vm", "westeurope", "1800", "UTC"
        )
        azure.create_disk_from_snapshot.assert_called_once_with(
            "Trainer", "Trainer-osdisk", azure.get_snapshot.return_value, "westeurope"
        )

    def test_count_names_students(self, fleet, azure):
        labs = fleet.create(
            source_resource_group="lab-parent",
            snapshot_name="parent-snap",
            count=3,
            start_index=4,
        )
        assert [lab.name for lab in labs] == ["Student4", "Student5", "Student6"]
        groups = sorted(c.args[0] for c in azure.create_resource_group.call_args_list)
        assert groups == ["Student4", "Student5", "Student6"]
        tags = azure.create_resource_group.call_args.kwargs["tags"]
        assert tags == {"LabRole": "student", "LabSource": "parent-snap"}

    def test_explicit_location_overrides_snapshot(self, fleet, azure):
        fleet.create(
            source_resource_group="lab-parent",
            snapshot_name="parent-snap",
            count=1,
            location="northeurope",
        )
        assert azure.create_resource_group.call_args.args[1] == "northeurope"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {},
            {"count": 2, "name": "Trainer"},
            {"count": 0},
            {"name": "bad name"},
            {"count": 1, "shutdown_time": "2500"},
            {"count": 1, "vm_size": "Standard_Huge_v9"},
            {"name": "Trainer\n"},
        ],
    )
    def test_invalid_arguments(self, fleet, azure, kwargs):
        with pytest.raises(ValueError):
            fleet.create(source_resource_group="lab-parent", snapshot_name="parent-snap", **kwargs)
        azure.create_resource_group.assert_not_called()

    def test_failure_propagates(self, fleet, azure):
        azure.create_vm_from_disk.side_effect = RuntimeError("QuotaExceeded")
        with pytest.raises(RuntimeError, match="QuotaExceeded"):
            fleet.create(source_resource_group="lab-parent", snapshot_name="parent-snap", count=1)
        azure.set_auto_shutdown.assert_not_called()


class TestFilteredOperations:
    """Tests for operations that select labs by filter."""

    def test_filter_is_anchored(self, fleet, azure):
        azure.list_resource_groups.return_value = []
        fleet.list_labs("Student1")
        pattern = azure.list_resource_groups.call_args.args[0]
        assert pattern.match("Student1")
        assert not pattern.match("Student10")

    def test_list_labs(self, fleet, azure):
        azure.list_resource_groups.return_value = ["Student1"]
        azure.list_vms.return_value = [_vm("Student1-vm")]
        azure.get_vm_state.return_value = "VM running"

        labs = fleet.list_labs()

        assert labs == [
            LabInfo(
                name="Student1",
                resource_group="Student1",
                vm_name="Student1-vm",
                location="westeurope",
                public_ip="20.1.2.3",
                power_state="VM running",
            )
        ]

    def test_set_auto_shutdown(self, fleet, azure):
        azure.list_resource_groups.return_value = ["Student1", "Student2"]
        azure.list_vms.side_effect = lambda group: [_vm(f"{group}-vm")]
        azure.set_auto_shutdown.side_effect = lambda group, vm, *a, **kw: f"id-{vm}"

        ids = fleet.set_auto_shutdown(shutdown_time="17:45", timezone="UTC", enabled=False)

        assert ids == ["id-Student1-vm", "id-Student2-vm"]
        azure.set_auto_shutdown.assert_any_call(
            "Student2", "Student2-vm", "westeurope", "1745", "UTC", enabled=False
        )

    def test_set_auto_shutdown_nothing_matches(self, fleet, azure):
        azure.list_resource_groups.return_value = []
        assert fleet.set_auto_shutdown() == []
        azure.set_auto_shutdown.assert_not_called()

    def test_stop(self, fleet, azure):
        azure.list_resource_groups.return_value = ["Student1"]
        azure.list_vms.return_value = [_vm("Student1-vm")]

        assert fleet.stop(wait=False) == ["Student1-vm"]
        azure.deallocate_vm.assert_called_once_with("Student1", "Student1-vm", wait=False)


class TestRemove:
    """Tests for LabFleetManager.remove()."""

    def test_remove_without_confirmation(self, fleet, azure):
        azure.list_resource_groups.return_value = ["Student1", "Student2"]
        assert fleet.remove(confirm=False) == ["Student1", "Student2"]
        assert azure.delete_resource_group.call_count == 2

    def test_remove_aborted(self, fleet, azure):
        azure.list_resource_groups.return_value = ["Student1"]
        with patch("builtins.input", return_value="n"):
            assert fleet.remove() == []
        azure.delete_resource_group.assert_not_called()

    def test_remove_confirmed(self, fleet, azure):
        azure.list_resource_groups.return_value = ["Student1"]
        with patch("builtins.input", return_value="y"):
            assert fleet.remove() == ["Student1"]
        azure.delete_resource_group.assert_called_once_with("Student1")

    @pytest.mark.parametrize("error", [EOFError, KeyboardInterrupt])
    def test_remove_without_terminal_aborts(self, fleet, azure, error):
        """A closed stdin (e.g. cron) counts as declining the prompt."""
        azure.list_resource_groups.return_value = ["Student1"]
        with patch("builtins.input", side_effect=error):
            assert fleet.remove() == []
        azure.delete_resource_group.assert_not_called()

    def test_remove_nothing(self, fleet, azure):
        azure.list_resource_groups.return_value = []
        with patch("builtins.input") as mock_input:
            assert fleet.remove() == []
        mock_input.assert_not_called()


class TestFetchRdp:
    """Tests for LabFleetManager.fetch_rdp()."""

    def test_one_file_per_lab(self, fleet, azure, tmp_path):
        azure.list_resource_groups.return_value = ["Student1", "Student2"]
        azure.list_vms.side_effect = lambda group: [_vm(f"{group}-vm")]

        paths = fleet.fetch_rdp(output_dir=tmp_path / "rdp")

        assert [p.name for p in paths] == ["Student1.rdp", "Student2.rdp"]
        content = (tmp_path / "rdp" / "Student1.rdp").read_text()
        assert "full address:s:20.1.2.3:3389" in content

    def test_multiple_vms_in_one_lab(self, fleet, azure, tmp_path):
        azure.list_resource_groups.return_value = ["Student1"]
        azure.list_vms.return_value = [_vm("dc"), _vm("client")]

        paths = fleet.fetch_rdp(output_dir=tmp_path)

        assert [p.name for p in paths] == ["Student1-dc.rdp", "Student1-client.rdp"]

    def test_missing_ip(self, fleet, azure, tmp_path):
        azure.list_resource_groups.return_value = ["Student1"]
        azure.list_vms.return_value = [_vm("Student1-vm")]
        azure.wait_for_vm_ip.return_value = None

        with pytest.raises(RuntimeError, match="no public IP"):
            fleet.fetch_rdp(output_dir=tmp_path)


class TestRefreshSnapshot:
    """Tests for LabFleetManager.refresh_snapshot()."""

    def test_stops_then_snapshots(self, fleet, azure):
        azure.snapshot_os_disk.return_value = "snap-id"

        assert fleet.refresh_snapshot("lab-parent", "parent-vm", "parent-snap") == "snap-id"

        steps = [call[0] for call in azure.method_calls]
        assert steps == ["deallocate_vm", "snapshot_os_disk"]
        azure.snapshot_os_disk.assert_called_once_with(
            "lab-parent", "parent-vm", "parent-snap", None
        )

    def test_restart(self, fleet, azure):
        fleet.refresh_snapshot("lab-parent", "parent-vm", "parent-snap", restart=True)
        azure.start_vm.assert_called_once_with("lab-parent", "parent-vm")

    def test_restart_after_snapshot_failure(self, fleet, azure):
        """The parent VM comes back up even when the snapshot fails."""
        azure.snapshot_os_disk.side_effect = RuntimeError("DiskBusy")

        with pytest.raises(RuntimeError, match="DiskBusy"):
            fleet.refresh_snapshot("lab-parent", "parent-vm", "parent-snap", restart=True)

        azure.start_vm.assert_called_once_with("lab-parent", "parent-vm")

    def test_no_restart_after_failure_unless_requested(self, fleet, azure):
        azure.snapshot_os_disk.side_effect = RuntimeError("DiskBusy")

        with pytest.raises(RuntimeError):
            fleet.refresh_snapshot("lab-parent", "parent-vm", "parent-snap")

        azure.start_vm.assert_not_called()

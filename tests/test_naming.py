"""Tests for lab naming conventions."""

import pytest

from lab_provisioner.infrastructure import naming


class TestLabName:
    """Tests for lab_name() and validate_lab_name()."""

    def test_student_prefix(self):
        assert naming.lab_name(1) == "Student1"
        assert naming.lab_name(12) == "Student12"

    def test_negative_index_rejected(self):
        with pytest.raises(ValueError):
            naming.lab_name(-1)

    def test_valid_explicit_name(self):
        assert naming.validate_lab_name("Trainer_01") == "Trainer_01"

    @pytest.mark.parametrize("name", ["", "bad name", "ends.", "x" * 91, "a/b", "Trainer\n"])
    def test_invalid_explicit_name(self, name):
        with pytest.raises(ValueError):
            naming.validate_lab_name(name)

    def test_resource_names_derive_from_lab(self):
        assert naming.disk_name("Student3") == "Student3-osdisk"
        assert naming.vnet_name("Student3") == "Student3-vnet"
        assert naming.nsg_name("Student3") == "Student3-nsg"
        assert naming.public_ip_name("Student3") == "Student3-pip"
        assert naming.nic_name("Student3") == "Student3-nic"
        assert naming.vm_name("Student3") == "Student3-vm"


class TestLabFilter:
    """Tests for the anchored lab filter."""

    def test_default_matches_students_only(self):
        pattern = naming.lab_filter()
        assert pattern.match("Student1")
        assert pattern.match("Student42")
        assert not pattern.match("Student")
        assert not pattern.match("lab-parent")
        assert not pattern.match("MyStudent1")

    def test_exact_name_does_not_match_longer_names(self):
        """Student1 must not select Student10 or Student1-old."""
        pattern = naming.lab_filter("Student1")
        assert pattern.match("Student1")
        assert not pattern.match("Student10")
        assert not pattern.match("Student1-old")
        assert not pattern.match("xStudent1")

    def test_alternation_is_anchored_as_a_whole(self):
        pattern = naming.lab_filter("Student1|Student2")
        assert pattern.match("Student2")
        assert not pattern.match("Student2x")

    def test_invalid_regex(self):
        with pytest.raises(ValueError, match="Invalid lab filter"):
            naming.lab_filter("Student(")


class TestResourceIds:
    """Tests for ARM resource ID templates."""

    def test_schedule_id(self):
        assert naming.schedule_id("sub-1", "Student1", "Student1-vm") == (
            "/subscriptions/sub-1/resourceGroups/Student1"
            "/providers/Microsoft.DevTestLab/schedules/shutdown-computevm-Student1-vm"
        )

    def test_vm_id(self):
        assert naming.vm_id("sub-1", "Student1", "Student1-vm") == (
            "/subscriptions/sub-1/resourceGroups/Student1"
            "/providers/Microsoft.Compute/virtualMachines/Student1-vm"
        )

    def test_parse_resource_id(self):
        rid = "/subscriptions/s/resourceGroups/lab-parent/providers/Microsoft.Compute/disks/os1"
        assert naming.resource_name_from_id(rid) == "os1"
        assert naming.resource_group_from_id(rid) == "lab-parent"

    def test_resource_group_missing(self):
        assert naming.resource_group_from_id("/subscriptions/s") is None


class TestShutdownTime:
    """Tests for normalize_shutdown_time()."""

    @pytest.mark.parametrize(
        "value,expected",
        [("1900", "1900"), ("19:00", "1900"), ("0005", "0005"), (" 23:59 ", "2359")],
    )
    def test_valid(self, value, expected):
        assert naming.normalize_shutdown_time(value) == expected

    @pytest.mark.parametrize("value", ["2400", "1260", "7pm", "900", "19-00", ""])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            naming.normalize_shutdown_time(value)

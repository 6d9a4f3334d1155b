"""Tests for RDP file generation."""

import pytest

from lab_provisioner.infrastructure.rdp import build_rdp, write_rdp


class TestBuildRdp:
    """Tests for build_rdp()."""

    def test_full_address_uses_rdp_port(self):
        content = build_rdp("20.1.2.3")
        assert content.splitlines()[0] == "full address:s:20.1.2.3:3389"

    def test_crlf_line_endings(self):
        content = build_rdp("20.1.2.3")
        assert content.endswith("\r\n")
        assert "\n" not in content.replace("\r\n", "")

    def test_username_optional(self):
        assert "username:s:" not in build_rdp("20.1.2.3")
        assert "username:s:student\r\n" in build_rdp("20.1.2.3", username="student")

    def test_empty_address_rejected(self):
        with pytest.raises(ValueError):
            build_rdp("")


class TestWriteRdp:
    """Tests for write_rdp()."""

    def test_creates_parent_directory(self, tmp_path):
        path = write_rdp(tmp_path / "out" / "Student1.rdp", "20.1.2.3")
        assert path.exists()
        assert path.read_bytes().startswith(b"full address:s:20.1.2.3:3389\r\n")

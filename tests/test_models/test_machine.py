"""Tests for machine records."""

import pytest
from pydantic import ValidationError

from scvmm.models.machine import DiskSpec, ScvmmMachine, parse_quantity


class TestParseQuantity:
    """Test byte quantity parsing."""

    @pytest.mark.parametrize("value,expected", [
        ("4Gi", 4 * 1024 ** 3),
        ("512Mi", 512 * 1024 ** 2),
        ("2G", 2 * 1000 ** 3),
        ("1.5Gi", 3 * 1024 ** 3 // 2),
        ("1024", 1024),
        (2048, 2048),
        (None, None),
        ("", None),
    ])
    def test_values(self, value, expected):
        assert parse_quantity(value) == expected

    @pytest.mark.parametrize("value", ["lots", "4Qi", True])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_quantity(value)


class TestScvmmMachine:
    """Test the machine record model."""

    def test_wire_names(self):
        machine = ScvmmMachine.model_validate({
            "metadata": {"name": "web", "namespace": "team-a"},
            "spec": {
                "providerID": "scvmm://1234",
                "vmName": "vm-001",
                "vmTemplate": "ubuntu",
                "memory": "4Gi",
                "cpuCount": 2,
                "disks": [{"size": "40Gi", "vhDisk": "ubuntu.vhdx"}],
                "activeDirectory": {"ouPath": "OU=Servers", "memberOf": ["Web"]},
            },
        })

        assert machine.key == "team-a/web"
        assert machine.spec.provider_id == "scvmm://1234"
        assert machine.spec.memory_mb == 4096
        assert machine.spec.disks[0].vh_disk == "ubuntu.vhdx"
        assert machine.spec.active_directory.member_of == ["Web"]
        assert not machine.standalone
        assert not machine.deleting

    def test_standalone(self):
        machine = ScvmmMachine.model_validate({"metadata": {"name": "web"}, "spec": {"cloudInit": {}}})

        assert machine.standalone

    def test_to_document(self):
        machine = ScvmmMachine.model_validate({
            "metadata": {"name": "web"},
            "spec": {"vmName": "vm-001", "memory": "1Gi"},
        })

        document = machine.to_document()

        assert document["spec"]["vmName"] == "vm-001"
        assert document["spec"]["memory"] == 1024 ** 3
        assert document["spec"]["providerID"] == ""
        assert "cloudInit" not in document["spec"]
        assert document["status"]["ready"] is False

    def test_negative_cpu_count(self):
        with pytest.raises(ValidationError):
            ScvmmMachine.model_validate({"metadata": {"name": "web"}, "spec": {"cpuCount": -1}})

    def test_disk_size_quantity(self):
        assert DiskSpec.model_validate({"size": "1Mi"}).size == 1024 * 1024

    def test_finalizers(self):
        machine = ScvmmMachine.model_validate({"metadata": {"name": "web"}})

        assert machine.metadata.add_finalizer("a")
        assert not machine.metadata.add_finalizer("a")
        assert machine.metadata.has_finalizer("a")
        assert machine.metadata.remove_finalizer("a")
        assert not machine.metadata.remove_finalizer("a")

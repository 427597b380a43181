"""Tests for remote call results."""

from datetime import datetime, timezone

from scvmm.models.machine import MachineSpec
from scvmm.models.result import VMResult, VMSpecResult, is_zero


class TestVMResult:
    """Test decoding of ConvertTo-Json output."""

    def test_single_element_arrays(self):
        result = VMResult.model_validate({
            "IPv4Addresses": "10.0.0.5",
            "VirtualDisks": {"Size": 1024, "MaximumSize": 4096},
        })

        assert result.ipv4_addresses == ["10.0.0.5"]
        assert result.virtual_disks[0].maximum_size == 4096

    def test_nulls(self):
        result = VMResult.model_validate({"Name": None, "IPv4Addresses": None, "Memory": None, "Error": None})

        assert result.name == ""
        assert result.ipv4_addresses == []
        assert result.memory == 0
        assert not result.failed

    def test_ms_dates(self):
        result = VMResult.model_validate({"CreationTime": "/Date(1700000000000)/"})

        assert result.creation_time == datetime.fromtimestamp(1700000000, tz=timezone.utc)

    def test_error_wins_over_script_errors(self):
        result = VMResult.model_validate({"Error": "VM not found", "ScriptErrors": "noise"})

        assert result.failure == "VM not found"

    def test_message_is_not_a_failure(self):
        assert not VMResult.model_validate({"Message": "Removed"}).failed


class TestVMSpecResult:
    """Test merging echoed specs."""

    def test_non_zero_fields_copied(self):
        target = MachineSpec(cloud="cloud01", cpu_count=2)
        echoed = VMSpecResult.model_validate({"vmName": "vm-001", "cpuCount": 0, "cloud": ""})

        changed = echoed.copy_non_zero_to(target)

        assert changed
        assert target.vm_name == "vm-001"
        assert target.cpu_count == 2
        assert target.cloud == "cloud01"

    def test_unchanged(self):
        target = MachineSpec(vm_name="vm-001")

        assert not VMSpecResult.model_validate({"vmName": "vm-001"}).copy_non_zero_to(target)

    def test_nested_values_copied(self):
        target = MachineSpec()
        echoed = VMSpecResult.model_validate({"networking": {"devices": [{"ipAddresses": ["10.0.0.5/24"]}]}})

        echoed.copy_non_zero_to(target)
        echoed.networking.devices[0].ip_addresses.append("changed")

        assert target.networking.devices[0].ip_addresses == ["10.0.0.5/24"]

    def test_nulls_left_at_zero_value(self):
        echoed = VMSpecResult.model_validate({
            "vmName": "vm-001",
            "description": None,
            "memory": None,
            "activeDirectory": {"ouPath": "OU=Servers", "domainController": None},
            "Error": None,
        })

        assert echoed.vm_name == "vm-001"
        assert echoed.description == ""
        assert echoed.memory is None
        assert echoed.active_directory.domain_controller == ""
        assert not echoed.failed

    def test_single_disk_collapsed(self):
        echoed = VMSpecResult.model_validate({"disks": {"size": 1048576, "vhDisk": "ubuntu.vhdx"}})

        assert len(echoed.disks) == 1
        assert echoed.disks[0].vh_disk == "ubuntu.vhdx"

    def test_is_zero(self):
        assert is_zero(None)
        assert is_zero("")
        assert is_zero(0)
        assert is_zero([])
        assert is_zero(False)
        assert not is_zero("x")
        assert not is_zero(MachineSpec())

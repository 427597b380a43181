"""Decoded answers of the remote functions."""

import copy
import re
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from scvmm.models.machine import MachineSpec


_MS_DATE_RE = re.compile(r"^/Date\((-?\d+)(?:[+-]\d{4})?\)/$")


def _as_list(v: Any) -> Any:
    # ConvertTo-Json collapses single element arrays and emits null for empty ones
    if v is None:
        return []
    if isinstance(v, (str, dict)):
        return [v]
    return v


def _drop_nulls(v: Any) -> Any:
    # A null leaves the field at its zero value
    if isinstance(v, dict):
        return {k: _drop_nulls(item) for k, item in v.items() if item is not None}
    if isinstance(v, list):
        return [_drop_nulls(item) for item in v if item is not None]
    return v


def _as_datetime(v: Any) -> Any:
    if v is None or v == "":
        return None
    if isinstance(v, str):
        match = _MS_DATE_RE.match(v)
        if match:
            return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)
    return v


class RemoteFailure(BaseModel):
    """Failure channels shared by every result shape."""
    error: str = Field(default="", alias="Error")
    script_errors: str = Field(default="", alias="ScriptErrors")
    message: str = Field(default="", alias="Message")

    @field_validator("error", "script_errors", "message", mode="before")
    @classmethod
    def validate_text(cls, v):
        return "" if v is None else str(v)

    @property
    def failure(self) -> str:
        """Structured failure text, empty when the call succeeded.

        ``Error`` is reported by the remote function itself and wins over
        ``ScriptErrors``, which the calling wrapper fills in.
        """
        return self.error or self.script_errors

    @property
    def failed(self) -> bool:
        return bool(self.failure)


class VirtualDisk(BaseModel):
    """Disk usage as reported by the hypervisor."""
    size: int = Field(default=0, alias="Size")
    maximum_size: int = Field(default=0, alias="MaximumSize")

    class Config:
        """Pydantic config."""
        populate_by_name = True
        extra = "ignore"


class VMResult(RemoteFailure):
    """Generic result of a remote call."""
    cloud: str = Field(default="", alias="Cloud")
    name: str = Field(default="", alias="Name")
    hostname: str = Field(default="", alias="Hostname")
    status: str = Field(default="", alias="Status")
    memory: int = Field(default=0, alias="Memory")
    cpu_count: int = Field(default=0, alias="CpuCount")
    virtual_network: str = Field(default="", alias="VirtualNetwork")
    ipv4_addresses: List[str] = Field(default_factory=list, alias="IPv4Addresses")
    virtual_disks: List[VirtualDisk] = Field(default_factory=list, alias="VirtualDisks")
    bios_guid: str = Field(default="", alias="BiosGuid")
    id: str = Field(default="", alias="Id")
    vm_id: str = Field(default="", alias="VMId")
    creation_time: Optional[datetime] = Field(None, alias="CreationTime")
    modified_time: Optional[datetime] = Field(None, alias="ModifiedTime")

    class Config:
        """Pydantic config."""
        populate_by_name = True
        extra = "ignore"

    @field_validator(
        "cloud", "name", "hostname", "status", "virtual_network", "bios_guid", "id", "vm_id",
        mode="before",
    )
    @classmethod
    def validate_strings(cls, v):
        return "" if v is None else str(v)

    @field_validator("memory", "cpu_count", mode="before")
    @classmethod
    def validate_numbers(cls, v):
        return 0 if v is None else v

    @field_validator("ipv4_addresses", "virtual_disks", mode="before")
    @classmethod
    def validate_lists(cls, v):
        return _as_list(v)

    @field_validator("creation_time", "modified_time", mode="before")
    @classmethod
    def validate_times(cls, v):
        return _as_datetime(v)


# Fields of the desired spec the remote side is allowed to fill in
SPEC_MERGE_FIELDS = (
    "provider_id",
    "vm_name",
    "cloud",
    "host_group",
    "vm_template",
    "vm_network",
    "hardware_profile",
    "description",
    "memory",
    "cpu_count",
    "disks",
    "start_action",
    "stop_action",
    "active_directory",
    "cloud_init",
    "networking",
)


def is_zero(value: Any) -> bool:
    """Zero value of a spec field: unset, empty text, zero number or empty collection."""
    if value is None:
        return True
    if isinstance(value, bool):
        return value is False
    if isinstance(value, (int, float)):
        return value == 0
    if isinstance(value, (str, list, dict, tuple)):
        return len(value) == 0
    return False


class VMSpecResult(MachineSpec, RemoteFailure):
    """Result of a call that echoes the (possibly amended) desired spec."""

    @model_validator(mode="before")
    @classmethod
    def validate_nulls(cls, data):
        return _drop_nulls(data)

    @field_validator("disks", mode="before")
    @classmethod
    def validate_disks(cls, v):
        return _as_list(v)

    def copy_non_zero_to(self, target: MachineSpec) -> bool:
        """Overwrite target fields with every non-zero echoed field.

        Zero fields are left untouched on the target. Returns whether the
        target changed.
        """
        changed = False
        for field in SPEC_MERGE_FIELDS:
            value = getattr(self, field)
            if is_zero(value):
                continue
            if getattr(target, field) == value:
                continue
            setattr(target, field, copy.deepcopy(value))
            changed = True
        return changed

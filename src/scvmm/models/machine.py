"""Desired and observed state of a managed virtual machine."""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from scvmm.models.condition import Condition
from scvmm.models.meta import ObjectMeta, ObjectReference


_QUANTITY_RE = re.compile(r"^\s*([0-9]+(?:\.[0-9]+)?)\s*([A-Za-z]*)\s*$")

_QUANTITY_SUFFIXES = {
    "": 1,
    "k": 1000,
    "M": 1000 ** 2,
    "G": 1000 ** 3,
    "T": 1000 ** 4,
    "Ki": 1024,
    "Mi": 1024 ** 2,
    "Gi": 1024 ** 3,
    "Ti": 1024 ** 4,
}


def parse_quantity(value: Any) -> Optional[int]:
    """Parse a byte quantity such as ``4Gi`` or ``512M`` into bytes."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid quantity: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    match = _QUANTITY_RE.match(str(value))
    if not match:
        raise ValueError(f"Invalid quantity: {value!r}")
    number, suffix = match.groups()
    if suffix not in _QUANTITY_SUFFIXES:
        raise ValueError(f"Unknown quantity suffix {suffix!r} in {value!r}")
    return int(float(number) * _QUANTITY_SUFFIXES[suffix])


class WireModel(BaseModel):
    """Base for records exchanged with the store and the remote functions."""

    class Config:
        """Pydantic config."""
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"


class DiskSpec(WireModel):
    """A virtual disk of the machine."""
    size: Optional[int] = Field(None, description="Target size in bytes")
    vh_disk: str = Field(default="", description="Source virtual hard disk")
    dynamic: bool = Field(default=False, description="Thin provisioned")

    @field_validator("size", mode="before")
    @classmethod
    def validate_size(cls, v):
        """Accept quantity strings."""
        return parse_quantity(v)


class ActiveDirectorySpec(WireModel):
    """Computer object to register in Active Directory."""
    ou_path: str = Field(default="")
    domain_controller: str = Field(default="")
    description: str = Field(default="")
    member_of: List[str] = Field(default_factory=list)


class CloudInitSpec(WireModel):
    """Inline cloud-init data for standalone machines."""
    user_data: str = Field(default="")
    meta_data: str = Field(default="")
    network_config: str = Field(default="")
    provider_ref: Optional[ObjectReference] = None


class NetworkDevice(WireModel):
    """Static network settings for one adapter."""
    device_name: str = Field(default="")
    ip_addresses: List[str] = Field(default_factory=list)
    gateway: str = Field(default="")
    nameservers: List[str] = Field(default_factory=list)
    search_domains: List[str] = Field(default_factory=list)


class NetworkingSpec(WireModel):
    """Network settings, usually filled in by the remote side from an address pool."""
    domain: str = Field(default="")
    devices: List[NetworkDevice] = Field(default_factory=list)


class MachineSpec(WireModel):
    """Desired state of a virtual machine."""
    provider_id: str = Field(default="", alias="providerID")
    vm_name: str = Field(default="", description="Empty means a name is generated")
    cloud: str = Field(default="")
    host_group: str = Field(default="")
    vm_template: str = Field(default="")
    vm_network: str = Field(default="")
    hardware_profile: str = Field(default="")
    description: str = Field(default="")
    memory: Optional[int] = Field(None, description="Memory in bytes")
    cpu_count: int = Field(default=0, ge=0)
    disks: List[DiskSpec] = Field(default_factory=list)
    start_action: str = Field(default="")
    stop_action: str = Field(default="")
    active_directory: Optional[ActiveDirectorySpec] = None
    cloud_init: Optional[CloudInitSpec] = None
    networking: Optional[NetworkingSpec] = None

    @field_validator("memory", mode="before")
    @classmethod
    def validate_memory(cls, v):
        """Accept quantity strings."""
        return parse_quantity(v)

    @property
    def memory_mb(self) -> int:
        return (self.memory or 0) // 1024 // 1024


class MachineAddress(WireModel):
    """Network address reported for the machine."""
    type: str = Field(default="InternalIP")
    address: str


class MachineStatus(WireModel):
    """Observed state, owned by the reconciler."""
    ready: bool = Field(default=False)
    vm_status: str = Field(default="")
    bios_guid: str = Field(default="")
    creation_time: Optional[datetime] = None
    modified_time: Optional[datetime] = None
    addresses: List[MachineAddress] = Field(default_factory=list)
    hostname: str = Field(default="")
    conditions: List[Condition] = Field(default_factory=list)


class ScvmmMachine(WireModel):
    """A machine record as stored by the orchestration layer."""
    metadata: ObjectMeta
    spec: MachineSpec = Field(default_factory=MachineSpec)
    status: MachineStatus = Field(default_factory=MachineStatus)

    @property
    def key(self) -> str:
        return self.metadata.key

    @property
    def deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    @property
    def standalone(self) -> bool:
        """Machines with inline cloud-init are not owned by a cluster machine."""
        return self.spec.cloud_init is not None

    def to_document(self) -> Dict[str, Any]:
        """Serialize for storage."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

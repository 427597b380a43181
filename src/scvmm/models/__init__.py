"""Pydantic models for records, remote results and configuration."""

from scvmm.models.condition import Condition, ConditionSeverity, ConditionType
from scvmm.models.config import AgentConfig, ControllerConfig, RequeueConfig, WinRMConfig
from scvmm.models.cluster import Cluster, Machine, ScvmmCluster, Secret
from scvmm.models.machine import (
    ActiveDirectorySpec,
    CloudInitSpec,
    DiskSpec,
    MachineAddress,
    MachineSpec,
    MachineStatus,
    ScvmmMachine,
)
from scvmm.models.meta import ObjectMeta, ObjectReference, OwnerReference
from scvmm.models.provider import ProviderSpec, ScvmmProvider
from scvmm.models.result import VirtualDisk, VMResult, VMSpecResult

__all__ = [
    "ActiveDirectorySpec",
    "AgentConfig",
    "CloudInitSpec",
    "Cluster",
    "Condition",
    "ConditionSeverity",
    "ConditionType",
    "ControllerConfig",
    "DiskSpec",
    "Machine",
    "MachineAddress",
    "MachineSpec",
    "MachineStatus",
    "ObjectMeta",
    "ObjectReference",
    "OwnerReference",
    "ProviderSpec",
    "RequeueConfig",
    "ScvmmCluster",
    "ScvmmMachine",
    "ScvmmProvider",
    "Secret",
    "VirtualDisk",
    "VMResult",
    "VMSpecResult",
    "WinRMConfig",
]

"""Records owned by the orchestration layer that the machine reconciler reads."""

import base64
import binascii
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from scvmm.models.meta import ObjectMeta, ObjectReference


CLUSTER_NAME_LABEL = "cluster.x-k8s.io/cluster-name"
CONTROL_PLANE_LABEL = "cluster.x-k8s.io/control-plane"


class _Record(BaseModel):
    class Config:
        """Pydantic config."""
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"


class Bootstrap(_Record):
    """Bootstrap data location of a cluster machine."""
    data_secret_name: Optional[str] = None


class ClusterMachineSpec(_Record):
    """Cluster machine spec, only the fields the reconciler reads."""
    cluster_name: str = Field(default="")
    bootstrap: Bootstrap = Field(default_factory=Bootstrap)
    infrastructure_ref: Optional[ObjectReference] = None


class Machine(_Record):
    """Cluster machine that owns a ScvmmMachine."""
    metadata: ObjectMeta
    spec: ClusterMachineSpec = Field(default_factory=ClusterMachineSpec)

    @property
    def is_control_plane(self) -> bool:
        return CONTROL_PLANE_LABEL in self.metadata.labels


class ClusterSpec(_Record):
    """Cluster spec."""
    paused: bool = Field(default=False)
    infrastructure_ref: Optional[ObjectReference] = None


class ClusterStatus(_Record):
    """Cluster status."""
    infrastructure_ready: bool = Field(default=False)
    control_plane_initialized: bool = Field(default=False)


class Cluster(_Record):
    """Cluster a machine belongs to."""
    metadata: ObjectMeta
    spec: ClusterSpec = Field(default_factory=ClusterSpec)
    status: ClusterStatus = Field(default_factory=ClusterStatus)

    @property
    def paused(self) -> bool:
        return self.spec.paused or self.metadata.paused


class ScvmmClusterSpec(_Record):
    """Infrastructure cluster spec."""
    provider_ref: Optional[ObjectReference] = None


class ScvmmCluster(_Record):
    """Infrastructure cluster referencing the provider settings."""
    metadata: ObjectMeta
    spec: ScvmmClusterSpec = Field(default_factory=ScvmmClusterSpec)


class Secret(_Record):
    """Opaque key/value data.

    Values may be given plain in ``string_data`` or base64 encoded in
    ``data``; ``get`` returns the decoded value.
    """
    metadata: ObjectMeta
    data: Dict[str, str] = Field(default_factory=dict)
    string_data: Dict[str, str] = Field(default_factory=dict)

    @field_validator("data")
    @classmethod
    def validate_data(cls, v):
        for key, value in v.items():
            try:
                base64.b64decode(value, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError(f"Secret key {key} is not valid base64") from e
        return v

    def get(self, key: str) -> Optional[bytes]:
        if key in self.string_data:
            return self.string_data[key].encode()
        if key in self.data:
            return base64.b64decode(self.data[key])
        return None

"""Object metadata shared by all stored records."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


# Records carrying this annotation are left alone by the reconciler
PAUSED_ANNOTATION = "cluster.x-k8s.io/paused"


class ObjectReference(BaseModel):
    """Reference to another stored record."""
    kind: str = Field(default="")
    name: str
    namespace: str = Field(default="")

    class Config:
        """Pydantic config."""
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"


class OwnerReference(ObjectReference):
    """Reference to the record owning this one."""
    api_version: str = Field(default="")
    uid: str = Field(default="")


class ObjectMeta(BaseModel):
    """Identity, labels and lifecycle markers of a record."""
    name: str
    namespace: str = Field(default="default")
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    finalizers: List[str] = Field(default_factory=list)
    owner_references: List[OwnerReference] = Field(default_factory=list)
    deletion_timestamp: Optional[datetime] = None

    class Config:
        """Pydantic config."""
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def paused(self) -> bool:
        return PAUSED_ANNOTATION in self.annotations

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.finalizers

    def add_finalizer(self, finalizer: str) -> bool:
        """Add a finalizer, returning whether the list changed."""
        if finalizer in self.finalizers:
            return False
        self.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str) -> bool:
        """Remove a finalizer, returning whether the list changed."""
        if finalizer not in self.finalizers:
            return False
        self.finalizers = [f for f in self.finalizers if f != finalizer]
        return True

    def owner(self, kind: str) -> Optional[OwnerReference]:
        """Return the first owner reference of the given kind."""
        for ref in self.owner_references:
            if ref.kind == kind:
                return ref
        return None

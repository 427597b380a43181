"""Connection settings for the SCVMM management server."""

from typing import Dict, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from scvmm.models.meta import ObjectMeta, ObjectReference


class ProviderSpec(BaseModel):
    """Connection and credential bundle used to open a remote session."""
    scvmm_host: str = Field(default="")
    exec_host: str = Field(default="")
    scvmm_username: str = Field(default="")
    scvmm_password: str = Field(default="", repr=False)
    scvmm_library_isos: str = Field(default="", alias="scvmmLibraryISOs")
    ad_server: str = Field(default="")
    extra_functions: Dict[str, str] = Field(default_factory=dict)
    secret_ref: Optional[ObjectReference] = None

    class Config:
        """Pydantic config."""
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"


class ScvmmProvider(BaseModel):
    """Stored provider record."""
    metadata: ObjectMeta
    spec: ProviderSpec = Field(default_factory=ProviderSpec)

    class Config:
        """Pydantic config."""
        extra = "ignore"

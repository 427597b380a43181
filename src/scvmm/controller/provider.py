"""Resolution of connection settings for a machine.

Each field is taken from the first source that has it: the referenced
provider record, its credential secret, the process environment, and finally
a computed default.
"""

import logging
import os
from typing import Mapping, Optional

from scvmm.controller.store import MachineStore, StoreError
from scvmm.models.cluster import ScvmmCluster
from scvmm.models.machine import ScvmmMachine
from scvmm.models.meta import ObjectReference
from scvmm.models.provider import ProviderSpec


logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Provider settings are missing or unreadable; retrying will not help."""
    pass


def default_library_path(scvmm_host: str) -> str:
    return "\\\\" + scvmm_host + "\\MSSCVMMLibrary\\ISOs\\cloud-init"


class ProviderResolver:
    """Resolves a ``ProviderSpec`` for a machine."""

    def __init__(self, store: MachineStore, environ: Optional[Mapping[str, str]] = None):
        self.store = store
        self.environ = os.environ if environ is None else environ

    def provider_ref(self, machine: ScvmmMachine, scvmm_cluster: Optional[ScvmmCluster]) -> Optional[ObjectReference]:
        if scvmm_cluster is not None:
            return scvmm_cluster.spec.provider_ref
        if machine.spec.cloud_init is not None:
            return machine.spec.cloud_init.provider_ref
        return None

    async def resolve(self, machine: ScvmmMachine, scvmm_cluster: Optional[ScvmmCluster] = None) -> ProviderSpec:
        """Resolve the provider settings, raising ``ConfigurationError`` when incomplete."""
        namespace = machine.metadata.namespace
        provider = ProviderSpec()
        ref = self.provider_ref(machine, scvmm_cluster)
        if ref is not None:
            namespace = ref.namespace or namespace
            try:
                record = await self.store.get_provider(namespace, ref.name)
            except StoreError as e:
                raise ConfigurationError(f"Failed to get ScvmmProvider {namespace}/{ref.name}: {e}") from e
            if record is None:
                raise ConfigurationError(f"ScvmmProvider {namespace}/{ref.name} not found")
            provider = record.spec.model_copy(deep=True)

        env = self.environ
        explicit_exec_host = bool(provider.exec_host)
        if not provider.scvmm_host:
            provider.scvmm_host = env.get("SCVMM_HOST", "")
            if not provider.scvmm_host:
                raise ConfigurationError("missing required value ScvmmHost")
        if not provider.exec_host:
            provider.exec_host = env.get("SCVMM_EXECHOST", "") or provider.scvmm_host
        if not explicit_exec_host and provider.exec_host == provider.scvmm_host:
            # Running on the management server itself, nothing to connect to
            provider.extra_functions.setdefault("ConnectSCVMM", "")
        if not provider.scvmm_library_isos:
            provider.scvmm_library_isos = env.get("SCVMM_LIBRARY", "") or default_library_path(provider.scvmm_host)
        if not provider.ad_server:
            provider.ad_server = env.get("ACTIVEDIRECTORY_SERVER", "")

        if provider.secret_ref is not None and not (provider.scvmm_username and provider.scvmm_password):
            try:
                secret = await self.store.get_secret(namespace, provider.secret_ref.name)
            except StoreError as e:
                raise ConfigurationError(f"Failed to get credential secretref: {e}") from e
            if secret is None:
                raise ConfigurationError(f"Credential secret {namespace}/{provider.secret_ref.name} not found")
            username = secret.get("username")
            password = secret.get("password")
            if username is not None and not provider.scvmm_username:
                provider.scvmm_username = username.decode()
            if password is not None and not provider.scvmm_password:
                provider.scvmm_password = password.decode()

        if not provider.scvmm_username:
            provider.scvmm_username = env.get("SCVMM_USERNAME", "")
        if not provider.scvmm_password:
            provider.scvmm_password = env.get("SCVMM_PASSWORD", "")

        logger.debug(f"Resolved provider for {machine.key}: host={provider.scvmm_host} exec={provider.exec_host}")
        return provider

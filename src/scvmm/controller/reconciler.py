"""Machine reconciliation state machine.

Every attempt re-derives the machine's state from the stored record and a
fresh discovery call; nothing is carried in memory between attempts. An
attempt performs at most one mutating step and then asks to be requeued.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Mapping, Optional, Tuple, TypeVar

from scvmm.controller.cloudinit import CloudInitData, CloudInitError, CloudInitMedia
from scvmm.controller.conditions import (
    CLUSTER_NOT_AVAILABLE,
    MISSING_CLUSTER,
    PROVIDER_CONFIGURATION_ERROR,
    VM_CREATING,
    VM_FAILED,
    VM_STARTING,
    VM_UPDATING,
    WAITING_FOR_BOOTSTRAP_DATA,
    WAITING_FOR_CLUSTER_INFRASTRUCTURE,
    WAITING_FOR_CONTROL_PLANE_AVAILABLE,
    WAITING_FOR_OWNER,
    ConditionProjector,
    mark_false,
    mark_true,
)
from scvmm.controller.deletion import MACHINE_FINALIZER, DeletionWorkflow
from scvmm.controller.provider import ConfigurationError, ProviderResolver
from scvmm.controller.result import ReconcileResult
from scvmm.controller.store import MachineStore, StoreError
from scvmm.models.cluster import CLUSTER_NAME_LABEL, Cluster, Machine, ScvmmCluster
from scvmm.models.condition import ConditionSeverity, ConditionType
from scvmm.models.config import ControllerConfig
from scvmm.models.machine import MachineAddress, ScvmmMachine
from scvmm.models.provider import ProviderSpec
from scvmm.models.result import RemoteFailure, VMResult
from scvmm.remote.library import FunctionLibrary
from scvmm.remote.protocol import MIB, CommandProtocol, disks_json
from scvmm.remote.session import RemoteSession, TransportError


logger = logging.getLogger(__name__)

BOOTSTRAP_DATA_KEY = "value"
POWER_OFF = "PowerOff"
RUNNING = "Running"

SessionFactory = Callable[[ProviderSpec, FunctionLibrary], RemoteSession]
ResultT = TypeVar("ResultT", bound=RemoteFailure)


def provider_id(vm_id: str) -> str:
    return "scvmm://" + vm_id


def needs_expand(machine: ScvmmMachine, vm: VMResult) -> bool:
    """Whether any declared disk exceeds its reported maximum by more than 1 MiB.

    Disks the hypervisor does not report are skipped.
    """
    for index, disk in enumerate(machine.spec.disks):
        if disk.size is None or index >= len(vm.virtual_disks):
            continue
        if vm.virtual_disks[index].maximum_size < disk.size - MIB:
            return True
    return False


def apply_vm_status(machine: ScvmmMachine, vm: VMResult):
    """Copy identifiers and lifecycle fields of a discovery result."""
    if vm.vm_id:
        machine.spec.provider_id = provider_id(vm.vm_id)
    machine.status.vm_status = vm.status
    machine.status.bios_guid = vm.bios_guid
    machine.status.creation_time = vm.creation_time
    machine.status.modified_time = vm.modified_time


def apply_guest_info(machine: ScvmmMachine, vm: VMResult) -> bool:
    """Copy addresses and hostname when reported; returns whether anything changed."""
    changed = False
    if vm.ipv4_addresses:
        addresses = [MachineAddress(type="InternalIP", address=a) for a in vm.ipv4_addresses]
        if addresses != machine.status.addresses:
            machine.status.addresses = addresses
            changed = True
    if vm.hostname and vm.hostname != machine.status.hostname:
        machine.status.hostname = vm.hostname
        changed = True
    return changed


class MachineReconciler:
    """Drives one machine record towards a running VM."""

    def __init__(
        self,
        store: MachineStore,
        config: Optional[ControllerConfig] = None,
        library: Optional[FunctionLibrary] = None,
        session_factory: Optional[SessionFactory] = None,
        media: Optional[CloudInitMedia] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.store = store
        self.config = config or ControllerConfig()
        self.requeue = self.config.requeue
        self.debug = self.config.agent.extra_debug
        self.library = library or FunctionLibrary.load(self.config.agent.script_dir)
        self.session_factory = session_factory or self.open_session
        self.media = media or CloudInitMedia()
        self.resolver = ProviderResolver(store, environ)
        self.projector = ConditionProjector(store)
        self.deletion = DeletionWorkflow(self)

    def open_session(self, provider: ProviderSpec, library: FunctionLibrary) -> RemoteSession:
        return RemoteSession.open(provider, library, winrm=self.config.winrm, debug=self.debug)

    @staticmethod
    def _close_abandoned(opening: "asyncio.Future[RemoteSession]"):
        if opening.cancelled() or opening.exception() is not None:
            return
        session = opening.result()
        logger.debug("Closing session opened by a cancelled attempt")
        asyncio.get_running_loop().run_in_executor(None, session.close)

    @asynccontextmanager
    async def connect(self, machine: ScvmmMachine, provider: ProviderSpec) -> AsyncIterator[CommandProtocol]:
        """Open one session for the rest of the attempt."""
        library = self.library.with_overrides(provider.extra_functions)
        opening = asyncio.ensure_future(asyncio.to_thread(self.session_factory, provider, library))
        try:
            session = await asyncio.shield(opening)
        except asyncio.CancelledError:
            # The open keeps running in its thread; close whatever it returns
            opening.add_done_callback(self._close_abandoned)
            raise
        except TransportError as e:
            logger.error(f"Failed to open session for {machine.key}: {e}")
            raise await self.projector.record_error(
                machine, ConditionType.VM_CREATED, VM_FAILED, e, f"Failed to open session: {e}"
            ) from e
        try:
            yield CommandProtocol(session, debug=self.debug)
        finally:
            await asyncio.to_thread(session.close)

    async def remote(self, machine: ScvmmMachine, condition_type: ConditionType,
                     what: str, call: Awaitable[ResultT]) -> ResultT:
        """Await a remote call, recording transport failures on the machine."""
        try:
            result = await call
        except TransportError as e:
            logger.error(f"{what} for {machine.key}: {e}")
            raise await self.projector.record_error(
                machine, condition_type, VM_FAILED, e, f"{what}: {e}"
            ) from e
        if self.debug:
            logger.debug(f"Remote result for {machine.key}: {result!r}")
        return result

    async def remote_failure(self, machine: ScvmmMachine, condition_type: ConditionType,
                             what: str, result: RemoteFailure) -> ReconcileResult:
        """Report a structured remote error and retry after the error interval."""
        message = f"{what}: {result.failure}"
        logger.warning(f"{message} ({machine.key})")
        return await self.projector.patch_reason(
            machine, condition_type, VM_FAILED, message,
            requeue_after=self.requeue.error,
            severity=ConditionSeverity.WARNING,
        )

    async def resolve_provider(self, machine: ScvmmMachine,
                               scvmm_cluster: Optional[ScvmmCluster]) -> ProviderSpec:
        try:
            return await self.resolver.resolve(machine, scvmm_cluster)
        except ConfigurationError as e:
            logger.error(f"Provider configuration for {machine.key}: {e}")
            machine.status.ready = False
            mark_false(machine, ConditionType.VM_CREATED, PROVIDER_CONFIGURATION_ERROR,
                       ConditionSeverity.ERROR, str(e))
            await self.projector.patch(machine)
            raise

    async def deletion_provider(self, machine: ScvmmMachine) -> ProviderSpec:
        """Resolve the provider of a deleting machine, tolerating missing owners."""
        scvmm_cluster = None
        if not machine.standalone:
            try:
                _, _, scvmm_cluster = await self._lookup_cluster(machine)
            except StoreError as e:
                logger.warning(f"Failed to look up cluster of deleting machine {machine.key}: {e}")
        return await self.resolve_provider(machine, scvmm_cluster)

    async def _lookup_cluster(self, machine: ScvmmMachine) -> Tuple[
            Optional[Machine], Optional[Cluster], Optional[ScvmmCluster]]:
        owner = await self.store.get_owner_machine(machine)
        if owner is None:
            return None, None, None
        cluster_name = owner.metadata.labels.get(CLUSTER_NAME_LABEL) or owner.spec.cluster_name
        if not cluster_name:
            return owner, None, None
        cluster = await self.store.get_cluster(owner.metadata.namespace, cluster_name)
        if cluster is None or cluster.spec.infrastructure_ref is None:
            return owner, cluster, None
        ref = cluster.spec.infrastructure_ref
        scvmm_cluster = await self.store.get_scvmm_cluster(
            ref.namespace or machine.metadata.namespace, ref.name)
        return owner, cluster, scvmm_cluster

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one reconciliation attempt for a machine record."""
        machine = await self.store.get_machine(namespace, name)
        if machine is None:
            logger.debug(f"Machine {namespace}/{name} not found")
            return ReconcileResult()

        if machine.metadata.paused:
            logger.info(f"Machine {machine.key} is paused, skipping")
            return ReconcileResult()

        if machine.deleting:
            return await self.deletion.run(machine)

        owner = cluster = scvmm_cluster = None
        if not machine.standalone:
            owner, cluster, scvmm_cluster = await self._lookup_cluster(machine)
            if owner is None:
                logger.info(f"Waiting for a Machine to own {machine.key}")
                return await self.projector.patch_reason(
                    machine, ConditionType.VM_CREATED, WAITING_FOR_OWNER)
            if cluster is None:
                if owner.metadata.labels.get(CLUSTER_NAME_LABEL) or owner.spec.cluster_name:
                    message = "ScvmmMachine owner Machine is missing cluster label or cluster does not exist"
                else:
                    message = (f"Please associate this machine with a cluster using the label "
                               f"{CLUSTER_NAME_LABEL}: <name of cluster>")
                logger.info(f"{message} ({machine.key})")
                return await self.projector.patch_reason(
                    machine, ConditionType.VM_CREATED, MISSING_CLUSTER, message)
            if cluster.paused:
                logger.info(f"Cluster {cluster.metadata.key} of {machine.key} is paused, skipping")
                return ReconcileResult()
            if scvmm_cluster is None:
                logger.info(f"ScvmmCluster of {machine.key} is not available yet")
                return await self.projector.patch_reason(
                    machine, ConditionType.VM_CREATED, CLUSTER_NOT_AVAILABLE)
            if not cluster.status.infrastructure_ready:
                logger.info(f"Waiting for cluster infrastructure of {machine.key}")
                return await self.projector.patch_reason(
                    machine, ConditionType.VM_CREATED, WAITING_FOR_CLUSTER_INFRASTRUCTURE)

        if machine.metadata.add_finalizer(MACHINE_FINALIZER):
            logger.debug(f"Added finalizer to {machine.key}")
            await self.projector.patch(machine)
            return ReconcileResult()

        provider = await self.resolve_provider(machine, scvmm_cluster)
        async with self.connect(machine, provider) as protocol:
            return await self._reconcile_vm(protocol, machine, owner, cluster, provider)

    async def _reconcile_vm(self, protocol: CommandProtocol, machine: ScvmmMachine,
                            owner: Optional[Machine], cluster: Optional[Cluster],
                            provider: ProviderSpec) -> ReconcileResult:
        vm = VMResult()
        if machine.spec.vm_name:
            vm = await self.remote(machine, ConditionType.VM_CREATED, "Failed to get VM",
                                   protocol.call("GetVM", VMName=machine.spec.vm_name))
            if vm.failed:
                return await self.remote_failure(machine, ConditionType.VM_CREATED, "Failed to get VM", vm)

        if not vm.name:
            return await self._create_vm(protocol, machine)

        mark_true(machine, ConditionType.VM_CREATED)
        apply_vm_status(machine, vm)
        machine.status.ready = vm.status == RUNNING

        if vm.status == POWER_OFF:
            return await self._prepare_vm(protocol, machine, vm, owner, cluster, provider)

        if vm.status != RUNNING:
            logger.info(f"VM {machine.spec.vm_name} is {vm.status or 'not running'}, waiting")
            return await self.projector.patch_reason(
                machine, ConditionType.VM_RUNNING, VM_STARTING, requeue_after=self.requeue.poll)

        machine.status.ready = True
        apply_guest_info(machine, vm)
        mark_true(machine, ConditionType.VM_RUNNING)
        await self.projector.patch(machine)

        if not machine.status.addresses or not machine.status.hostname:
            read = await self.remote(machine, ConditionType.VM_RUNNING, "Failed to read VM",
                                     protocol.call("ReadVM", VMName=machine.spec.vm_name))
            if read.failed:
                return await self.remote_failure(machine, ConditionType.VM_RUNNING, "Failed to read VM", read)
            if apply_guest_info(machine, read):
                await self.projector.patch(machine)
            logger.info(f"Reading IP addresses of {machine.spec.vm_name}, "
                        f"requeue in {self.requeue.long} seconds")
            return ReconcileResult(requeue_after=self.requeue.long)

        logger.debug(f"Machine {machine.key} is running")
        return ReconcileResult()

    async def _create_vm(self, protocol: CommandProtocol, machine: ScvmmMachine) -> ReconcileResult:
        spec = machine.spec
        if not spec.vm_name:
            generated = await self.remote(machine, ConditionType.VM_CREATED, "Failed to generate vmname",
                                          protocol.call_spec("GenerateVMName", machine))
            if generated.failed:
                return await self.remote_failure(
                    machine, ConditionType.VM_CREATED, "Failed to generate vmname", generated)
            if not generated.vm_name:
                return await self.projector.patch_reason(
                    machine, ConditionType.VM_CREATED, VM_FAILED,
                    f"Failed to generate vmname: {generated.message}",
                    requeue_after=self.requeue.error,
                    severity=ConditionSeverity.WARNING,
                )
            spec.vm_name = generated.vm_name
            logger.info(f"Generated VM name {spec.vm_name} for {machine.key}")

        ad = spec.active_directory
        if ad is not None:
            result = await self.remote(
                machine, ConditionType.VM_CREATED, "Failed to create AD entry",
                protocol.call(
                    "CreateADComputer",
                    Name=spec.vm_name,
                    OUPath=ad.ou_path,
                    DomainController=ad.domain_controller,
                    Description=ad.description,
                    MemberOf=ad.member_of,
                ),
            )
            if result.failed:
                return await self.remote_failure(
                    machine, ConditionType.VM_CREATED, "Failed to create AD entry", result)

        logger.info(f"Creating VM {spec.vm_name} for {machine.key}")
        vm = await self.remote(
            machine, ConditionType.VM_CREATED, "Failed to create vm",
            protocol.call(
                "CreateVM",
                Cloud=spec.cloud,
                HostGroup=spec.host_group,
                VMName=spec.vm_name,
                VMTemplate=spec.vm_template,
                Memory=spec.memory_mb,
                CPUCount=spec.cpu_count,
                Disks=disks_json(spec.disks),
                VMNetwork=spec.vm_network,
                HardwareProfile=spec.hardware_profile,
                Description=spec.description,
                StartAction=spec.start_action,
                StopAction=spec.stop_action,
            ),
        )
        if vm.failed:
            return await self.remote_failure(machine, ConditionType.VM_CREATED, "Failed to create vm", vm)

        apply_vm_status(machine, vm)
        return await self.projector.patch_reason(
            machine, ConditionType.VM_CREATED, VM_CREATING, requeue_after=self.requeue.short)

    async def _prepare_vm(self, protocol: CommandProtocol, machine: ScvmmMachine, vm: VMResult,
                          owner: Optional[Machine], cluster: Optional[Cluster],
                          provider: ProviderSpec) -> ReconcileResult:
        merged = await self.remote(machine, ConditionType.VM_CREATED, "Failed calling add spec function",
                                   protocol.call_spec("AddVMSpec", machine))
        if merged.failed:
            return await self.remote_failure(
                machine, ConditionType.VM_CREATED, "Failed calling add spec function", merged)
        if merged.copy_non_zero_to(machine.spec):
            logger.debug(f"Spec of {machine.key} amended by AddVMSpec")
            await self.projector.patch(machine)

        vm_name = machine.spec.vm_name
        if needs_expand(machine, vm):
            logger.info(f"Expanding disks of {vm_name}")
            expanded = await self.remote(
                machine, ConditionType.VM_CREATED, "Failed to expand disks",
                protocol.call("ExpandVMDisks", VMName=vm_name, Disks=disks_json(machine.spec.disks)),
            )
            if expanded.failed:
                return await self.remote_failure(
                    machine, ConditionType.VM_CREATED, "Failed to expand disks", expanded)
            apply_vm_status(machine, expanded)
            return await self.projector.patch_reason(
                machine, ConditionType.VM_CREATED, VM_UPDATING, requeue_after=self.requeue.short)

        data = CloudInitData()
        if owner is not None:
            secret_name = owner.spec.bootstrap.data_secret_name
            if not secret_name:
                if not owner.is_control_plane and not (cluster and cluster.status.control_plane_initialized):
                    logger.info(f"Waiting for the control plane to be initialized ({machine.key})")
                    return await self.projector.patch_reason(
                        machine, ConditionType.VM_CREATED, WAITING_FOR_CONTROL_PLANE_AVAILABLE)
                logger.info(f"Waiting for bootstrap data of {machine.key}")
                return await self.projector.patch_reason(
                    machine, ConditionType.VM_CREATED, WAITING_FOR_BOOTSTRAP_DATA)
            data.user_data = await self._bootstrap_data(machine, owner, secret_name)
        elif machine.spec.cloud_init is not None:
            cloud_init = machine.spec.cloud_init
            data = CloudInitData(
                user_data=cloud_init.user_data.encode(),
                meta_data=cloud_init.meta_data.encode(),
                network_config=cloud_init.network_config.encode(),
            )

        if not data.empty:
            try:
                iso_path = await self.media.publish(provider, vm_name, vm.vm_id, data)
            except CloudInitError as e:
                logger.error(f"Failed to create cloud-init data for {machine.key}: {e}")
                return await self.projector.patch_reason(
                    machine, ConditionType.VM_CREATED, WAITING_FOR_BOOTSTRAP_DATA,
                    "Failed to create cloud init data", error=e)
            mark_false(machine, ConditionType.VM_RUNNING, VM_STARTING)
            await self.projector.patch(machine)
            started = await self.remote(
                machine, ConditionType.VM_RUNNING, "Failed to add iso to vm",
                protocol.call("AddIsoToVM", VMName=vm_name, ISOPath=iso_path),
            )
        else:
            started = await self.remote(machine, ConditionType.VM_RUNNING, "Failed to start vm",
                                        protocol.call("StartVM", VMName=vm_name))
        if started.failed:
            return await self.remote_failure(machine, ConditionType.VM_RUNNING, "Failed to start vm", started)

        if started.status:
            machine.status.vm_status = started.status
        await self.projector.patch(machine)
        logger.info(f"Starting VM {vm_name}, requeue in {self.requeue.short} seconds")
        return ReconcileResult(requeue_after=self.requeue.short)

    async def _bootstrap_data(self, machine: ScvmmMachine, owner: Machine, secret_name: str) -> bytes:
        namespace = owner.metadata.namespace
        try:
            secret = await self.store.get_secret(namespace, secret_name)
            if secret is None:
                raise StoreError(f"Bootstrap data secret {namespace}/{secret_name} not found")
            value = secret.get(BOOTSTRAP_DATA_KEY)
            if value is None:
                raise StoreError(f"Bootstrap data secret {namespace}/{secret_name} has no {BOOTSTRAP_DATA_KEY} key")
        except StoreError as e:
            logger.error(f"Failed to get bootstrap data for {machine.key}: {e}")
            raise await self.projector.record_error(
                machine, ConditionType.VM_CREATED, WAITING_FOR_BOOTSTRAP_DATA, e,
                "Failed to get bootstrap data") from e
        return value

"""Teardown of a machine marked for deletion."""

import logging

from scvmm.controller.conditions import VM_DELETING, mark_false
from scvmm.controller.result import ReconcileResult
from scvmm.models.condition import ConditionType
from scvmm.models.machine import ScvmmMachine


logger = logging.getLogger(__name__)

MACHINE_FINALIZER = "scvmmmachine.finalizers.cluster.x-k8s.io"

# Message RemoveVM reports once the VM is gone
REMOVED_MESSAGE = "Removed"


class DeletionWorkflow:
    """Removes the VM and its directory object before releasing the finalizer.

    The finalizer is only removed when no VM name was ever assigned or when
    the last removal call reported completion.
    """

    def __init__(self, reconciler):
        self.reconciler = reconciler
        self.projector = reconciler.projector
        self.requeue = reconciler.requeue

    async def _release(self, machine: ScvmmMachine) -> ReconcileResult:
        machine.metadata.remove_finalizer(MACHINE_FINALIZER)
        await self.projector.patch(machine)
        logger.info(f"Released machine {machine.key}")
        return ReconcileResult()

    async def run(self, machine: ScvmmMachine) -> ReconcileResult:
        if not machine.metadata.has_finalizer(MACHINE_FINALIZER):
            logger.debug(f"Machine {machine.key} has no finalizer, nothing to delete")
            return ReconcileResult()

        vm_name = machine.spec.vm_name
        if not vm_name:
            logger.info(f"Machine {machine.key} has no VM name, removing finalizer")
            return await self._release(machine)

        mark_false(machine, ConditionType.VM_CREATED, VM_DELETING)
        await self.projector.patch(machine)

        provider = await self.reconciler.deletion_provider(machine)
        logger.info(f"Removing VM {vm_name} of machine {machine.key}")
        async with self.reconciler.connect(machine, provider) as protocol:
            vm = await self.reconciler.remote(
                machine, ConditionType.VM_CREATED, "Failed to delete VM",
                protocol.call("RemoveVM", VMName=vm_name),
            )
            if vm.failed:
                return await self.reconciler.remote_failure(
                    machine, ConditionType.VM_CREATED, "Failed to delete VM", vm)

            if vm.message != REMOVED_MESSAGE:
                machine.status.vm_status = vm.status
                machine.status.creation_time = vm.creation_time
                machine.status.modified_time = vm.modified_time
                logger.debug(f"VM {vm_name} is {vm.status or 'still being removed'}")
                return await self.projector.patch_reason(
                    machine, ConditionType.VM_CREATED, VM_DELETING,
                    requeue_after=self.requeue.poll,
                )

            ad = machine.spec.active_directory
            if ad is not None:
                result = await self.reconciler.remote(
                    machine, ConditionType.VM_CREATED, "Failed to remove AD entry",
                    protocol.call(
                        "RemoveADComputer",
                        Name=vm_name,
                        OUPath=ad.ou_path,
                        DomainController=ad.domain_controller,
                    ),
                )
                if result.failed:
                    return await self.reconciler.remote_failure(
                        machine, ConditionType.VM_CREATED, "Failed to remove AD entry", result)

        return await self._release(machine)

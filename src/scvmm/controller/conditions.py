"""Condition bookkeeping and the single patch path for machine status."""

import logging
from typing import List, Optional

from scvmm.controller.result import ReconcileError, ReconcileResult
from scvmm.controller.store import MachineStore
from scvmm.models.condition import (
    SEVERITY_RANK,
    Condition,
    ConditionSeverity,
    ConditionType,
)
from scvmm.models.machine import ScvmmMachine


logger = logging.getLogger(__name__)

# Conditions summarized into Ready, in tie-break order
SUMMARY_CONDITIONS = (ConditionType.VM_CREATED, ConditionType.VM_RUNNING)

WAITING_FOR_CLUSTER_INFRASTRUCTURE = "WaitingForClusterInfrastructure"
WAITING_FOR_CONTROL_PLANE_AVAILABLE = "WaitingForControlplaneAvailable"
WAITING_FOR_BOOTSTRAP_DATA = "WaitingForBootstrapData"
WAITING_FOR_OWNER = "WaitingForOwner"
CLUSTER_NOT_AVAILABLE = "ClusterNotAvailable"
MISSING_CLUSTER = "MissingCluster"
PROVIDER_CONFIGURATION_ERROR = "ProviderConfigurationError"

VM_CREATING = "VmCreating"
VM_UPDATING = "VmUpdating"
VM_STARTING = "VmStarting"
VM_DELETING = "VmDeleting"
VM_FAILED = "VmFailed"


def get_condition(machine: ScvmmMachine, condition_type: ConditionType) -> Optional[Condition]:
    for condition in machine.status.conditions:
        if condition.type == condition_type:
            return condition
    return None


def is_true(machine: ScvmmMachine, condition_type: ConditionType) -> bool:
    condition = get_condition(machine, condition_type)
    return condition is not None and condition.status


def set_condition(machine: ScvmmMachine, condition: Condition):
    """Set a condition, keeping its transition time when the status is unchanged."""
    conditions: List[Condition] = []
    replaced = False
    for existing in machine.status.conditions:
        if existing.type != condition.type:
            conditions.append(existing)
            continue
        if existing.status == condition.status:
            condition.last_transition_time = existing.last_transition_time
        conditions.append(condition)
        replaced = True
    if not replaced:
        conditions.append(condition)
    machine.status.conditions = conditions


def delete_condition(machine: ScvmmMachine, condition_type: ConditionType):
    machine.status.conditions = [c for c in machine.status.conditions if c.type != condition_type]


def mark_true(machine: ScvmmMachine, condition_type: ConditionType):
    set_condition(machine, Condition(type=condition_type, status=True))


def mark_false(machine: ScvmmMachine, condition_type: ConditionType, reason: str,
               severity: ConditionSeverity = ConditionSeverity.INFO, message: str = ""):
    set_condition(machine, Condition(
        type=condition_type,
        status=False,
        reason=reason,
        severity=severity,
        message=message,
    ))


def summarize(machine: ScvmmMachine, step_counter: bool = True) -> Optional[Condition]:
    """Compute the Ready condition from VmCreated and VmRunning.

    Returns None when neither input has been set yet.
    """
    inputs = [c for c in (get_condition(machine, t) for t in SUMMARY_CONDITIONS) if c is not None]
    if not inputs:
        return None
    completed = sum(1 for c in inputs if c.status)
    if completed == len(SUMMARY_CONDITIONS):
        return Condition(type=ConditionType.READY, status=True)

    worst: Optional[Condition] = None
    for condition in inputs:
        if condition.status:
            continue
        rank = SEVERITY_RANK.get(condition.severity, 0)
        if worst is None or rank > SEVERITY_RANK.get(worst.severity, 0):
            worst = condition
    if worst is None:
        # Only part of the inputs exist and all of them are true
        return Condition(
            type=ConditionType.READY,
            status=False,
            severity=ConditionSeverity.INFO,
            message=f"{completed} of {len(SUMMARY_CONDITIONS)} completed" if step_counter else "",
        )
    message = worst.message
    if step_counter:
        message = f"{completed} of {len(SUMMARY_CONDITIONS)} completed"
    return Condition(
        type=ConditionType.READY,
        status=False,
        reason=worst.reason,
        severity=worst.severity,
        message=message,
    )


def set_summary(machine: ScvmmMachine, step_counter: bool = True):
    summary = summarize(machine, step_counter=step_counter)
    if summary is None:
        delete_condition(machine, ConditionType.READY)
    else:
        set_condition(machine, summary)


class ConditionProjector:
    """Funnels every status change of a machine through one patch operation."""

    def __init__(self, store: MachineStore):
        self.store = store

    async def patch(self, machine: ScvmmMachine):
        """Recompute Ready and persist the record.

        The step counter is hidden while the machine is being deleted.
        """
        set_summary(machine, step_counter=not machine.deleting)
        await self.store.patch_machine(machine)

    async def record_error(
        self,
        machine: ScvmmMachine,
        condition_type: ConditionType,
        reason: str,
        error: BaseException,
        message: str = "",
    ) -> ReconcileError:
        """Record a failed step with Error severity and return the error to raise."""
        message = message or str(error)
        machine.status.ready = False
        mark_false(machine, condition_type, reason, ConditionSeverity.ERROR, message)
        try:
            await self.patch(machine)
        except Exception as e:
            logger.error(f"Failed to patch machine {machine.key}: {e}")
        return ReconcileError(reason, message)

    async def patch_reason(
        self,
        machine: ScvmmMachine,
        condition_type: ConditionType,
        reason: str,
        message: str = "",
        requeue_after: Optional[float] = None,
        error: Optional[BaseException] = None,
        severity: ConditionSeverity = ConditionSeverity.INFO,
    ) -> ReconcileResult:
        """Record a blocking or failing condition and map it to an outcome.

        With ``error`` the condition gets Error severity and a
        ``ReconcileError`` is raised after the patch; otherwise the result
        requeues after ``requeue_after`` seconds, if given.
        """
        if error is not None:
            raise await self.record_error(machine, condition_type, reason, error, message) from error
        machine.status.ready = False
        mark_false(machine, condition_type, reason, severity, message)
        await self.patch(machine)
        return ReconcileResult(requeue_after=requeue_after)

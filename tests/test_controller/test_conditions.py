"""Tests for condition bookkeeping."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from scvmm.controller.conditions import (
    ConditionProjector,
    get_condition,
    mark_false,
    mark_true,
    set_summary,
    summarize,
)
from scvmm.controller.result import ReconcileError
from scvmm.models.condition import ConditionSeverity, ConditionType
from scvmm.models.machine import ScvmmMachine


@pytest.fixture
def machine():
    return ScvmmMachine.model_validate({"metadata": {"name": "web"}})


class TestConditions:
    """Test setting conditions."""

    def test_transition_time_kept_while_status_unchanged(self, machine):
        mark_false(machine, ConditionType.VM_CREATED, "VmCreating")
        first = get_condition(machine, ConditionType.VM_CREATED)
        first.last_transition_time = datetime(2026, 1, 1, tzinfo=timezone.utc)

        mark_false(machine, ConditionType.VM_CREATED, "VmUpdating")

        updated = get_condition(machine, ConditionType.VM_CREATED)
        assert updated.reason == "VmUpdating"
        assert updated.last_transition_time == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert len(machine.status.conditions) == 1

    def test_transition_time_changes_on_flip(self, machine):
        mark_false(machine, ConditionType.VM_CREATED, "VmCreating")
        get_condition(machine, ConditionType.VM_CREATED).last_transition_time = datetime(2026, 1, 1, tzinfo=timezone.utc)

        mark_true(machine, ConditionType.VM_CREATED)

        created = get_condition(machine, ConditionType.VM_CREATED)
        assert created.status is True
        assert created.last_transition_time > datetime(2026, 1, 1, tzinfo=timezone.utc)


class TestSummary:
    """Test the Ready summary."""

    def test_no_inputs(self, machine):
        assert summarize(machine) is None

    def test_all_true(self, machine):
        mark_true(machine, ConditionType.VM_CREATED)
        mark_true(machine, ConditionType.VM_RUNNING)

        ready = summarize(machine)

        assert ready.status is True
        assert ready.reason == ""

    def test_step_counter(self, machine):
        mark_true(machine, ConditionType.VM_CREATED)
        mark_false(machine, ConditionType.VM_RUNNING, "VmStarting")

        ready = summarize(machine)

        assert ready.status is False
        assert ready.reason == "VmStarting"
        assert ready.severity == ConditionSeverity.INFO
        assert ready.message == "1 of 2 completed"

    def test_most_severe_input_wins(self, machine):
        mark_false(machine, ConditionType.VM_CREATED, "VmCreating")
        mark_false(machine, ConditionType.VM_RUNNING, "VmFailed", ConditionSeverity.ERROR, "boom")

        ready = summarize(machine, step_counter=False)

        assert ready.reason == "VmFailed"
        assert ready.severity == ConditionSeverity.ERROR
        assert ready.message == "boom"

    def test_ties_follow_condition_order(self, machine):
        mark_false(machine, ConditionType.VM_RUNNING, "VmStarting", message="running")
        mark_false(machine, ConditionType.VM_CREATED, "VmDeleting", message="created")

        ready = summarize(machine, step_counter=False)

        assert ready.reason == "VmDeleting"
        assert ready.message == "created"

    def test_set_summary_removes_stale_ready(self, machine):
        mark_true(machine, ConditionType.VM_CREATED)
        set_summary(machine)
        assert get_condition(machine, ConditionType.READY) is not None

        machine.status.conditions = [c for c in machine.status.conditions if c.type == ConditionType.READY]
        set_summary(machine)

        assert get_condition(machine, ConditionType.READY) is None


@pytest.mark.asyncio
class TestConditionProjector:
    """Test the patch path."""

    async def test_patch_recomputes_summary(self, machine):
        store = AsyncMock()
        projector = ConditionProjector(store)
        mark_true(machine, ConditionType.VM_CREATED)

        await projector.patch(machine)

        store.patch_machine.assert_awaited_once_with(machine)
        assert get_condition(machine, ConditionType.READY).message == "1 of 2 completed"

    async def test_patch_reason_requeue(self, machine):
        projector = ConditionProjector(AsyncMock())
        machine.status.ready = True

        result = await projector.patch_reason(machine, ConditionType.VM_RUNNING, "VmStarting", requeue_after=30)

        assert result.requeue_after == 30
        assert machine.status.ready is False
        running = get_condition(machine, ConditionType.VM_RUNNING)
        assert running.severity == ConditionSeverity.INFO

    async def test_patch_reason_error_raises_after_patch(self, machine):
        store = AsyncMock()
        projector = ConditionProjector(store)

        with pytest.raises(ReconcileError) as exc_info:
            await projector.patch_reason(
                machine, ConditionType.VM_CREATED, "WaitingForBootstrapData",
                "Failed to get bootstrap data", error=RuntimeError("secret missing"),
            )

        store.patch_machine.assert_awaited_once()
        assert exc_info.value.reason == "WaitingForBootstrapData"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        created = get_condition(machine, ConditionType.VM_CREATED)
        assert created.severity == ConditionSeverity.ERROR
        assert created.message == "Failed to get bootstrap data"

    async def test_record_error_survives_patch_failure(self, machine):
        store = AsyncMock()
        store.patch_machine.side_effect = OSError("disk full")
        projector = ConditionProjector(store)

        error = await projector.record_error(machine, ConditionType.VM_CREATED, "VmFailed", RuntimeError("boom"))

        assert isinstance(error, ReconcileError)
        assert error.message == "boom"

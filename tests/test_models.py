"""
领域模型测试
"""
import pytest

from automation_engine.exceptions import StateTransitionError
from automation_engine.models import (
    Execution, ExecutionStatus, ExecutionLogEntry, ResumePoint, StepType, utcnow
)

from conftest import make_step, make_workflow


def test_status_only_moves_forward():
    execution = Execution()

    execution.mark_running()
    execution.wait(ResumePoint(step_id="delay", wake_at=utcnow()))
    execution.mark_running()
    execution.complete()

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.resume_point is None
    for target in ExecutionStatus:
        with pytest.raises(StateTransitionError):
            execution.transition_to(target)


def test_pending_cannot_complete_directly():
    execution = Execution()

    with pytest.raises(StateTransitionError):
        execution.complete()


def test_fail_records_message():
    execution = Execution()
    execution.mark_running()

    execution.fail("workflow has no entry step")

    assert execution.is_terminal_state()
    assert execution.error_message == "workflow has no entry step"
    assert execution.completed_at is not None


def test_abort_fails_from_any_state():
    execution = Execution()
    execution.mark_running()
    execution.complete()

    execution.abort("store down")

    assert execution.status == ExecutionStatus.FAILED
    assert execution.error_message == "store down"
    assert execution.resume_point is None


def test_log_entry_serialization():
    entry = ExecutionLogEntry(step_id="a", step_name="A", step_type="EMAIL", error="No recipient found")

    data = entry.to_dict()

    assert data["stepId"] == "a"
    assert data["error"] == "No recipient found"
    assert "result" not in data
    assert ExecutionLogEntry.from_dict(data).timestamp == entry.timestamp


def test_entry_step_and_children():
    workflow = make_workflow(
        make_step("b", StepType.EMAIL, parent_id="a", position=2),
        make_step("a", StepType.TRIGGER),
        make_step("c", StepType.DELAY, parent_id="a", position=1),
    )

    assert workflow.get_entry_step().id == "a"
    assert [step.id for step in workflow.get_children("a")] == ["c", "b"]
    assert workflow.validate() == []


def test_stop_on_error_defaults_to_true():
    assert make_step("a", StepType.EMAIL).stop_on_error
    assert make_step("a", StepType.EMAIL, stopOnError=True).stop_on_error
    assert not make_step("a", StepType.EMAIL, stopOnError=False).stop_on_error

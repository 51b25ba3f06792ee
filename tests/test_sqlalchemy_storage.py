"""
SQLAlchemy 存储测试（SQLite 文件数据库）
"""
from datetime import timedelta

import pytest
import pytest_asyncio

from automation_engine.config import EngineConfig
from automation_engine.core.engine import AutomationEngine
from automation_engine.exceptions import AutomationEngineError
from automation_engine.models import (
    StepType, TriggerType, ExecutionStatus, ExecutionLogEntry, ResumePoint, utcnow
)
from automation_engine.storage.sqlalchemy_repository import (
    DatabaseManager,
    SQLAlchemyWorkflowRepository,
    SQLAlchemyExecutionRepository,
    SQLAlchemyRecordStore
)

from conftest import make_step, make_workflow, make_execution


@pytest_asyncio.fixture
async def db_manager(tmp_path):
    """每个测试使用独立的 SQLite 数据库文件"""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'automation.db'}")
    await manager.initialize(create_tables=True)
    yield manager
    await manager.close()


@pytest.fixture
def workflow_repo(db_manager):
    return SQLAlchemyWorkflowRepository(db_manager)


@pytest.fixture
def execution_repo(db_manager):
    return SQLAlchemyExecutionRepository(db_manager)


@pytest.fixture
def record_store(db_manager):
    return SQLAlchemyRecordStore(db_manager)


def _workflow(**kwargs):
    return make_workflow(
        make_step("trigger", StepType.TRIGGER),
        make_step("tag", StepType.TAG_ASSIGNMENT, parent_id="trigger", tagsToAdd=["vip"]),
        **kwargs
    )


class TestWorkflowRepository:
    """工作流仓库测试"""

    @pytest.mark.asyncio
    async def test_save_and_get(self, workflow_repo):
        workflow = _workflow(trigger_config={"intervalMinutes": 15})
        workflow.steps[1].branch = "true"

        await workflow_repo.save(workflow)
        loaded = await workflow_repo.get(workflow.id)

        assert loaded.name == workflow.name
        assert loaded.trigger_config == {"intervalMinutes": 15}
        assert [step.id for step in loaded.steps] == ["trigger", "tag"]
        tag = loaded.get_step("tag")
        assert tag.parent_id == "trigger"
        assert tag.branch == "true"
        assert tag.config == {"tagsToAdd": ["vip"]}

    @pytest.mark.asyncio
    async def test_save_replaces_steps(self, workflow_repo):
        workflow = _workflow()
        await workflow_repo.save(workflow)

        workflow.steps = workflow.steps[:1]
        workflow.is_paused = True
        await workflow_repo.save(workflow)
        loaded = await workflow_repo.get(workflow.id)

        assert [step.id for step in loaded.steps] == ["trigger"]
        assert loaded.is_paused

    @pytest.mark.asyncio
    async def test_list_eligible(self, workflow_repo):
        active = _workflow()
        paused = _workflow(is_paused=True)
        inactive = _workflow(is_active=False)
        other = _workflow(trigger_type=TriggerType.FORM_SUBMITTED)
        for workflow in (active, paused, inactive, other):
            await workflow_repo.save(workflow)

        eligible = await workflow_repo.list_eligible(TriggerType.LEAD_CREATED)

        assert [workflow.id for workflow in eligible] == [active.id]

    @pytest.mark.asyncio
    async def test_record_outcome(self, workflow_repo):
        workflow = _workflow()
        await workflow_repo.save(workflow)
        executed_at = utcnow()

        await workflow_repo.record_outcome(workflow.id, True, executed_at)
        await workflow_repo.record_outcome(workflow.id, False)
        await workflow_repo.record_outcome(workflow.id, True, executed_at)
        loaded = await workflow_repo.get(workflow.id)

        assert loaded.execution_count == 3
        assert loaded.success_count == 2
        assert loaded.failure_count == 1
        assert loaded.last_executed_at == executed_at
        assert not await workflow_repo.record_outcome("missing", True)


class TestExecutionRepository:
    """执行仓库测试"""

    @pytest.mark.asyncio
    async def test_claim_is_conditional(self, workflow_repo, execution_repo):
        workflow = _workflow()
        await workflow_repo.save(workflow)
        execution = make_execution(workflow)
        await execution_repo.create(execution)

        first = await execution_repo.claim(execution.id)
        second = await execution_repo.claim(execution.id)

        assert first is not None
        assert first.status == ExecutionStatus.RUNNING
        assert second is None

    @pytest.mark.asyncio
    async def test_list_pending_honours_not_before(self, workflow_repo, execution_repo):
        workflow = _workflow()
        await workflow_repo.save(workflow)
        due = make_execution(workflow)
        later = make_execution(workflow)
        later.not_before = utcnow() + timedelta(hours=1)
        await execution_repo.create(due)
        await execution_repo.create(later)

        pending = await execution_repo.list_pending(10, utcnow())

        assert [execution.id for execution in pending] == [due.id]

    @pytest.mark.asyncio
    async def test_update_round_trips_log_and_resume_point(self, workflow_repo, execution_repo):
        workflow = _workflow()
        await workflow_repo.save(workflow)
        execution = make_execution(workflow)
        await execution_repo.create(execution)

        execution = await execution_repo.claim(execution.id)
        execution.append_log(ExecutionLogEntry(step_id="trigger", step_type="TRIGGER",
                                               result={"success": True, "triggered": True}))
        wake_at = utcnow() + timedelta(minutes=5)
        execution.wait(ResumePoint(step_id="delay", pending_step_ids=["next"],
                                   visited_step_ids=["trigger", "delay"], wake_at=wake_at))
        assert await execution_repo.update(execution)

        loaded = await execution_repo.get(execution.id)
        assert loaded.status == ExecutionStatus.WAITING
        assert loaded.execution_log[0].result == {"success": True, "triggered": True}
        assert loaded.resume_point.pending_step_ids == ["next"]
        assert loaded.resume_point.wake_at == wake_at

        assert await execution_repo.list_waiting_due(utcnow()) == []
        due = await execution_repo.list_waiting_due(wake_at + timedelta(seconds=1))
        assert [e.id for e in due] == [execution.id]

    @pytest.mark.asyncio
    async def test_terminal_executions_are_not_overwritten(self, workflow_repo, execution_repo):
        workflow = _workflow()
        await workflow_repo.save(workflow)
        execution = make_execution(workflow)
        await execution_repo.create(execution)
        execution = await execution_repo.claim(execution.id)
        execution.complete()
        assert await execution_repo.update(execution)

        stale = await execution_repo.get(execution.id)
        stale.status = ExecutionStatus.RUNNING

        assert not await execution_repo.update(stale)
        assert (await execution_repo.get(execution.id)).status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_list_waiting_for_event(self, workflow_repo, execution_repo):
        workflow = _workflow()
        await workflow_repo.save(workflow)
        execution = make_execution(workflow)
        await execution_repo.create(execution)
        execution = await execution_repo.claim(execution.id)
        execution.wait(ResumePoint(step_id="wait", event_type="EMAIL_OPENED",
                                   wake_at=utcnow() + timedelta(days=1)))
        await execution_repo.update(execution)

        found = await execution_repo.list_waiting_for_event("EMAIL_OPENED", "LEAD", "lead-1")
        missed = await execution_repo.list_waiting_for_event("EMAIL_CLICKED", "LEAD", "lead-1")

        assert [e.id for e in found] == [execution.id]
        assert missed == []


class TestRecordStore:
    """通用记录存储测试"""

    @pytest.mark.asyncio
    async def test_versioned_update(self, record_store):
        lead = await record_store.insert("leads", {"name": "Ada", "email": "ada@example.com"})
        assert lead["version"] == 1
        assert lead["tags"] == []

        assert await record_store.update("leads", lead["id"], {"tags": ["vip"]}, expected_version=1)
        assert not await record_store.update("leads", lead["id"], {"tags": []}, expected_version=1)

        stored = await record_store.fetch_by_id("leads", lead["id"])
        assert stored["tags"] == ["vip"]
        assert stored["version"] == 2

    @pytest.mark.asyncio
    async def test_increment_and_filter(self, record_store):
        lead = await record_store.insert("leads", {"name": "Ada", "lead_score": 10, "status": "NEW"})
        await record_store.insert("leads", {"name": "Bob", "status": "LOST"})

        assert await record_store.increment("leads", lead["id"], "lead_score", 5)
        matches = await record_store.fetch_by_filter("leads", {"status": "NEW"})

        assert [row["lead_score"] for row in matches] == [15]

    @pytest.mark.asyncio
    async def test_rejects_unknown_tables_and_columns(self, record_store):
        with pytest.raises(AutomationEngineError):
            await record_store.fetch_by_id("accounts", "1")
        with pytest.raises(AutomationEngineError):
            await record_store.insert("leads", {"favourite_colour": "blue"})


@pytest.mark.asyncio
async def test_engine_runs_against_database(tmp_path):
    """数据库后端的端到端执行"""
    config = EngineConfig(database_url=f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}")
    engine = await AutomationEngine.from_database(config)
    try:
        lead = await engine.records.insert("leads", {"name": "Ada", "email": "ada@example.com"})
        workflow = make_workflow(
            make_step("trigger", StepType.TRIGGER),
            make_step("email", StepType.EMAIL, parent_id="trigger", subject="Hi"),
            make_step("tag", StepType.TAG_ASSIGNMENT, parent_id="email", tagsToAdd=["welcomed"]),
            make_step("task", StepType.TASK_CREATION, parent_id="tag", dueDate="2026-05-01T10:00:00Z"),
        )
        await engine.register_workflow(workflow)

        routed = await engine.route_event("LEAD_CREATED", {"entityType": "LEAD", "entityId": lead["id"]})
        assert routed.workflows_triggered == 1
        assert await engine.run_pending() == 1

        execution = await engine.get_execution(routed.execution_id)
        assert execution.status == ExecutionStatus.COMPLETED
        assert [entry.step_id for entry in execution.execution_log] == ["trigger", "email", "tag", "task"]

        stored_lead = await engine.records.fetch_by_id("leads", lead["id"])
        assert stored_lead["tags"] == ["welcomed"]
        tasks = await engine.records.fetch_by_filter("tasks", {"entity_id": lead["id"]})
        assert len(tasks) == 1 and tasks[0]["auto_created"] is True

        stats = await engine.get_workflow_stats(workflow.id)
        assert stats["executionCount"] == 1
        assert stats["successCount"] == 1
    finally:
        await engine.close()

"""
工作流图解释器

从入口步骤开始按广度优先顺序遍历步骤树，逐个调用步骤执行器，
记录执行日志，并在结束时写回执行状态和工作流统计。
"""
import asyncio
import logging
import time
from collections import deque
from typing import Deque, Optional, Set, List

from ..config import EngineConfig
from ..exceptions import (
    CycleDetectedError, StepTimeoutError, WorkflowLoadError, AutomationEngineError
)
from ..models.common import utcnow
from ..models.workflow import Workflow, Step
from ..models.execution import (
    Execution, ExecutionStatus, ExecutionLogEntry, ResumePoint, StepResult
)
from ..storage.repository import WorkflowRepository, ExecutionRepository
from ..integrations import event_bus as topics
from ..integrations.event_bus import EventBus
from .executors import ExecutorRegistry
from .retry import RetryPolicy


logger = logging.getLogger(__name__)


class WorkflowInterpreter:
    """工作流解释器"""

    def __init__(
        self,
        workflow_repo: WorkflowRepository,
        execution_repo: ExecutionRepository,
        executors: ExecutorRegistry,
        event_bus: Optional[EventBus] = None,
        retry_policy: Optional[RetryPolicy] = None,
        config: Optional[EngineConfig] = None
    ):
        self.workflow_repo = workflow_repo
        self.execution_repo = execution_repo
        self.executors = executors
        self.event_bus = event_bus
        self.config = config or EngineConfig()
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)
        self.step_timeout = self.config.step_timeout

    async def execute(self, execution: Execution) -> Execution:
        """加载工作流后运行（调度器入口）"""
        self._ensure_running(execution)
        try:
            workflow = await self._load_workflow(execution)
            if workflow is None:
                return execution
            if execution.resume_point is not None:
                return await self._resume(execution, workflow)
            return await self._run(execution, workflow)
        except Exception as e:
            await self._abort(execution, e)
            return execution

    async def run(self, execution: Execution, workflow: Workflow) -> Execution:
        """从入口步骤开始执行"""
        self._ensure_running(execution)
        try:
            return await self._run(execution, workflow)
        except Exception as e:
            await self._abort(execution, e)
            return execution

    async def resume(self, execution: Execution, workflow: Optional[Workflow] = None) -> Execution:
        """从持久化的恢复游标继续执行"""
        self._ensure_running(execution)
        try:
            if workflow is None:
                workflow = await self._load_workflow(execution)
                if workflow is None:
                    return execution
            return await self._resume(execution, workflow)
        except Exception as e:
            await self._abort(execution, e)
            return execution

    async def _run(self, execution: Execution, workflow: Workflow) -> Execution:
        execution.started_at = execution.started_at or utcnow()

        entry = workflow.get_entry_step()
        if entry is None:
            await self._fail_fatal(
                execution,
                WorkflowLoadError(workflow.id, "workflow has no entry step")
            )
            return execution

        logger.info(f"Starting execution {execution.id} of workflow {workflow.id}")
        await self._publish(topics.EXECUTION_STARTED, execution.summary())

        return await self._walk(execution, workflow, deque([entry.id]), set())

    async def _resume(self, execution: Execution, workflow: Workflow) -> Execution:
        point = execution.resume_point
        step = workflow.get_step(point.step_id) if point else None
        if step is None:
            await self._fail_fatal(
                execution,
                AutomationEngineError(f"Execution {execution.id} has no valid resume point")
            )
            return execution

        logger.info(f"Resuming execution {execution.id} at step '{step.id}'")

        queue: Deque[str] = deque(point.pending_step_ids)
        visited: Set[str] = set(point.visited_step_ids)
        execution.resume_point = None
        started = time.monotonic()

        try:
            result = await asyncio.wait_for(
                self.executors.resume(step, execution, point),
                timeout=self.step_timeout
            )
        except asyncio.TimeoutError:
            result, error = None, StepTimeoutError(step.id, self.step_timeout)
        except Exception as e:
            result, error = None, e
        else:
            error = None

        if not await self._record_step(execution, workflow, step, result, error, queue):
            queue.clear()

        return await self._walk(execution, workflow, queue, visited, started)

    async def _walk(
        self,
        execution: Execution,
        workflow: Workflow,
        queue: Deque[str],
        visited: Set[str],
        started: float = None
    ) -> Execution:
        """广度优先遍历，直到队列为空、出错停止或挂起"""
        started = started if started is not None else time.monotonic()

        while queue:
            step_id = queue.popleft()
            if step_id in visited:
                error = CycleDetectedError(step_id)
                step = workflow.get_step(step_id)
                execution.append_log(self._log_entry(step, step_id=step_id, error=str(error)))
                self._add_elapsed(execution, started)
                await self._fail(execution, str(error))
                return execution

            visited.add(step_id)
            step = workflow.get_step(step_id)
            if step is None:
                continue

            error: Optional[Exception] = None
            result: Optional[StepResult] = None
            try:
                result = await asyncio.wait_for(
                    self.executors.execute(step, execution),
                    timeout=self.step_timeout
                )
            except asyncio.TimeoutError:
                error = StepTimeoutError(step.id, self.step_timeout)
            except Exception as e:
                error = e

            if result is not None and result.requests_suspension:
                self._add_elapsed(execution, started)
                await self._suspend(execution, step, result, queue, visited)
                return execution

            if not await self._record_step(execution, workflow, step, result, error, queue):
                logger.info(
                    f"Stopping execution {execution.id} after failed step '{step.id}'"
                )
                break

        self._add_elapsed(execution, started)
        await self._complete(execution)
        return execution

    async def _record_step(
        self,
        execution: Execution,
        workflow: Workflow,
        step: Step,
        result: Optional[StepResult],
        error: Optional[Exception],
        queue: Deque[str]
    ) -> bool:
        """
        写入步骤日志并入队子步骤

        Returns:
            是否继续遍历
        """
        if error is not None:
            logger.error(
                f"Step '{step.id}' of execution {execution.id} raised: {error}",
                exc_info=error
            )
            entry = self._log_entry(step, error=str(error))
        elif not result.success:
            logger.warning(f"Step '{step.id}' of execution {execution.id} failed: {result.error}")
            entry = self._log_entry(step, result=result.to_dict(), error=result.error)
        else:
            entry = self._log_entry(step, result=result.to_dict())

        execution.append_log(entry)
        await self._publish(topics.EXECUTION_STEP, {
            "executionId": execution.id,
            "workflowId": execution.workflow_id,
            "entry": entry.to_dict()
        })

        if error is not None or not result.success:
            if step.stop_on_error:
                return False
            # 出错继续：失败步骤没有分支选择，子步骤全部入队
            queue.extend(child.id for child in workflow.get_children(step.id))
            return True

        queue.extend(child.id for child in self.route_children(workflow, step, result))
        return True

    @staticmethod
    def route_children(workflow: Workflow, step: Step, result: StepResult) -> List[Step]:
        """按分支标签筛选子步骤；没有标签的子步骤总是执行"""
        children = workflow.get_children(step.id)
        selected = result.branch_selected
        if selected is None:
            return children
        selected = str(selected).lower()
        return [
            child for child in children
            if child.branch is None or str(child.branch).lower() == selected
        ]

    async def _suspend(
        self,
        execution: Execution,
        step: Step,
        result: StepResult,
        queue: Deque[str],
        visited: Set[str]
    ):
        point = ResumePoint(
            step_id=step.id,
            pending_step_ids=list(queue),
            visited_step_ids=sorted(visited),
            wake_at=result.wake_at,
            event_type=result.wait_event_type
        )
        execution.wait(point)
        await self.execution_repo.update(execution)

        logger.info(
            f"Execution {execution.id} waiting at step '{step.id}' "
            f"(wake_at={point.wake_at}, event={point.event_type})"
        )
        await self._publish(topics.EXECUTION_WAITING, {
            **execution.summary(),
            "resumePoint": point.to_dict()
        })

    async def _complete(self, execution: Execution):
        execution.complete()
        await self.execution_repo.update(execution)
        await self.workflow_repo.record_outcome(
            execution.workflow_id, succeeded=True, executed_at=execution.completed_at
        )

        logger.info(
            f"Execution {execution.id} completed in {execution.execution_time_ms}ms "
            f"with {len(execution.execution_log)} log entries"
        )
        await self._publish(topics.EXECUTION_COMPLETED, execution.summary())

    async def _fail(self, execution: Execution, message: str):
        execution.fail(message)
        await self._record_failure(execution, message)

    async def _record_failure(self, execution: Execution, message: str):
        await self.execution_repo.update(execution)
        await self.workflow_repo.record_outcome(execution.workflow_id, succeeded=False)

        logger.error(f"Execution {execution.id} failed: {message}")
        await self._publish(topics.EXECUTION_FAILED, {
            **execution.summary(),
            "error": message
        })

        retry = self.retry_policy.next_attempt(execution)
        if retry is not None:
            try:
                await self.execution_repo.create(retry)
            except Exception as e:
                logger.error(f"Failed to enqueue retry of execution {execution.id}: {e}", exc_info=True)

    async def _abort(self, execution: Execution, error: Exception):
        """遍历之外抛出的异常（如存储写入失败）：记为 FAILED 并计入失败次数"""
        logger.error(f"Execution {execution.id} aborted: {error}", exc_info=error)
        message = str(error) or type(error).__name__
        execution.append_log(ExecutionLogEntry(error=message))
        execution.abort(message)
        try:
            await self._record_failure(execution, message)
        except Exception as e:
            logger.error(f"Failed to record failure of execution {execution.id}: {e}", exc_info=True)

    async def _fail_fatal(self, execution: Execution, error: Exception):
        """加载失败等致命错误：日志只保留一条错误记录"""
        execution.execution_log = [ExecutionLogEntry(error=str(error))]
        await self._fail(execution, str(error))

    async def _load_workflow(self, execution: Execution) -> Optional[Workflow]:
        try:
            workflow = await self.workflow_repo.get(execution.workflow_id)
        except Exception as e:
            logger.error(f"Failed to load workflow {execution.workflow_id}: {e}", exc_info=True)
            await self._fail_fatal(execution, WorkflowLoadError(execution.workflow_id, str(e)))
            return None

        if workflow is None:
            await self._fail_fatal(execution, WorkflowLoadError(execution.workflow_id, "not found"))
            return None
        return workflow

    def _ensure_running(self, execution: Execution):
        """直接调用时（未经调度器认领）补做状态转换"""
        if execution.status in (ExecutionStatus.PENDING, ExecutionStatus.WAITING):
            execution.mark_running()

    @staticmethod
    def _add_elapsed(execution: Execution, started: float):
        execution.execution_time_ms += int((time.monotonic() - started) * 1000)

    @staticmethod
    def _log_entry(
        step: Optional[Step],
        step_id: str = None,
        result=None,
        error: str = None
    ) -> ExecutionLogEntry:
        return ExecutionLogEntry(
            step_id=step.id if step else step_id,
            step_name=step.name if step else None,
            step_type=step.type.value if step else None,
            result=result,
            error=error
        )

    async def _publish(self, topic: str, payload):
        if self.event_bus is not None:
            await self.event_bus.publish(topic, payload)

"""
执行调度器

由若干相互独立的轮询循环组成：待执行实例、消息队列、定时触发扫描和挂起恢复扫描。
每个循环体也可以作为单次 tick 直接调用。
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from ..config import EngineConfig
from ..models.common import utcnow
from ..models.workflow import Workflow, TriggerType
from ..models.execution import ExecutionStatus
from ..storage.repository import WorkflowRepository, ExecutionRepository
from ..integrations.delivery import MessageDelivery
from .interpreter import WorkflowInterpreter
from .router import EventRouter


logger = logging.getLogger(__name__)


class IntervalSchedule:
    """
    默认定时触发判定

    trigger_config.intervalMinutes 距上次触发已过去时触发；缺失或非法时从不触发。
    """

    def __init__(self):
        self.last_fired: Dict[str, datetime] = {}

    def __call__(self, workflow: Workflow, now: datetime) -> bool:
        return self.should_run(workflow, now)

    def should_run(self, workflow: Workflow, now: datetime) -> bool:
        try:
            interval = float(workflow.trigger_config.get("intervalMinutes"))
        except (TypeError, ValueError):
            return False
        if interval <= 0:
            return False

        last = self.last_fired.get(workflow.id) or workflow.last_executed_at
        return last is None or now - last >= timedelta(minutes=interval)

    def mark_fired(self, workflow: Workflow, now: datetime):
        """入队成功后记录触发时间"""
        self.last_fired[workflow.id] = now


class ExecutionScheduler:
    """执行调度器"""

    def __init__(
        self,
        workflow_repo: WorkflowRepository,
        execution_repo: ExecutionRepository,
        interpreter: WorkflowInterpreter,
        router: EventRouter,
        delivery: MessageDelivery,
        config: Optional[EngineConfig] = None,
        should_run: Optional[Callable[[Workflow, datetime], bool]] = None
    ):
        self.workflow_repo = workflow_repo
        self.execution_repo = execution_repo
        self.interpreter = interpreter
        self.router = router
        self.delivery = delivery
        self.config = config or EngineConfig()
        self.should_run = should_run or IntervalSchedule()

        self._tasks: List[asyncio.Task] = []
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    async def start(self):
        """启动所有循环，重复调用无副作用"""
        if self._tasks:
            return

        self._stop_event.clear()
        loops = [
            ("execution", self.run_execution_tick, self.config.execution_poll_interval),
            ("message", self.run_message_tick, self.config.message_poll_interval),
            ("schedule", self.run_schedule_tick, self.config.schedule_sweep_interval),
            ("resume", self.run_resume_tick, self.config.resume_sweep_interval),
        ]
        self._tasks = [
            asyncio.create_task(self._loop(name, tick, interval), name=f"scheduler-{name}")
            for name, tick, interval in loops
        ]
        logger.info("Execution scheduler started")

    async def stop(self):
        """停止所有循环并等待当前 tick 结束"""
        if not self._tasks:
            return

        self._stop_event.set()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Execution scheduler stopped")

    async def _loop(self, name: str, tick: Callable, interval: float):
        while not self._stop_event.is_set():
            try:
                await tick()
            except Exception as e:
                logger.error(f"Scheduler {name} loop error: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def run_execution_tick(self) -> int:
        """认领并执行一批 PENDING 执行，返回实际执行数量"""
        pending = await self.execution_repo.list_pending(
            self.config.execution_batch_size, utcnow()
        )

        processed = 0
        for candidate in pending:
            execution = await self.execution_repo.claim(candidate.id, ExecutionStatus.PENDING)
            if execution is None:
                logger.debug(f"Execution {candidate.id} already claimed, skipping")
                continue

            processed += 1
            try:
                await self.interpreter.execute(execution)
            except Exception as e:
                logger.error(f"Error processing execution {execution.id}: {e}", exc_info=True)

        return processed

    async def run_message_tick(self) -> int:
        """冲刷消息队列"""
        return await self.delivery.flush_queued(self.config.message_batch_size)

    async def run_schedule_tick(self, now: datetime = None) -> int:
        """扫描定时触发的工作流，返回入队数量"""
        now = now or utcnow()
        workflows = await self.workflow_repo.list_eligible(TriggerType.SCHEDULED_TIME)

        enqueued = 0
        for workflow in workflows:
            try:
                if not self.should_run(workflow, now):
                    continue
                result = await self.router.trigger_workflow(
                    workflow.id, {"scheduledAt": now.isoformat()}
                )
                if result.success:
                    enqueued += 1
                    mark_fired = getattr(self.should_run, "mark_fired", None)
                    if mark_fired is not None:
                        mark_fired(workflow, now)
                else:
                    logger.warning(f"Scheduled workflow {workflow.id} not enqueued: {result.error}")
            except Exception as e:
                logger.error(f"Error checking scheduled workflow {workflow.id}: {e}", exc_info=True)

        return enqueued

    async def run_resume_tick(self, now: datetime = None) -> int:
        """恢复唤醒时间已到的 WAITING 执行"""
        due = await self.execution_repo.list_waiting_due(now or utcnow())

        resumed = 0
        for candidate in due:
            execution = await self.execution_repo.claim(candidate.id, ExecutionStatus.WAITING)
            if execution is None:
                continue

            resumed += 1
            try:
                await self.interpreter.execute(execution)
            except Exception as e:
                logger.error(f"Error resuming execution {execution.id}: {e}", exc_info=True)

        return resumed

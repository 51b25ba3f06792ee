"""
自动化引擎

组装仓库、执行器、解释器、路由器和调度器，对外提供启动、停止和事件入口。
"""
import logging
from datetime import datetime
from typing import Dict, Any, Optional, Callable

from ..config import EngineConfig
from ..models.workflow import Workflow
from ..models.execution import Execution, ExecutionStatus
from ..storage.repository import (
    WorkflowRepository, ExecutionRepository,
    InMemoryWorkflowRepository, InMemoryExecutionRepository
)
from ..storage.record_store import RecordStore, InMemoryRecordStore
from ..integrations.delivery import MessageDelivery, QueuedMessageDelivery
from ..integrations.event_bus import EventBus
from ..integrations.webhook import WebhookClient
from .executors import ExecutorRegistry
from .interpreter import WorkflowInterpreter
from .retry import RetryPolicy
from .router import EventRouter, RouteResult
from .scheduler import ExecutionScheduler


logger = logging.getLogger(__name__)


class AutomationEngine:
    """自动化工作流执行引擎"""

    def __init__(
        self,
        workflow_repo: WorkflowRepository,
        execution_repo: ExecutionRepository,
        records: RecordStore,
        delivery: Optional[MessageDelivery] = None,
        config: Optional[EngineConfig] = None,
        event_bus: Optional[EventBus] = None,
        webhook_client: Optional[WebhookClient] = None,
        executors: Optional[ExecutorRegistry] = None,
        should_run: Optional[Callable[[Workflow, datetime], bool]] = None
    ):
        self.config = config or EngineConfig()
        self.workflow_repo = workflow_repo
        self.execution_repo = execution_repo
        self.records = records
        self.delivery = delivery or QueuedMessageDelivery()
        self.event_bus = event_bus or EventBus()
        self.db_manager = None

        self.executors = executors or ExecutorRegistry.default(
            records,
            self.delivery,
            webhook_client or WebhookClient(timeout=self.config.webhook_timeout),
            self.config
        )
        self.interpreter = WorkflowInterpreter(
            workflow_repo,
            execution_repo,
            self.executors,
            event_bus=self.event_bus,
            retry_policy=RetryPolicy.from_config(self.config),
            config=self.config
        )
        self.router = EventRouter(workflow_repo, execution_repo)
        self.scheduler = ExecutionScheduler(
            workflow_repo,
            execution_repo,
            self.interpreter,
            self.router,
            self.delivery,
            config=self.config,
            should_run=should_run
        )

    @classmethod
    def in_memory(cls, config: Optional[EngineConfig] = None, **kwargs) -> "AutomationEngine":
        """全部使用内存实现（测试和本地试运行）"""
        return cls(
            InMemoryWorkflowRepository(),
            InMemoryExecutionRepository(),
            kwargs.pop("records", None) or InMemoryRecordStore(),
            config=config,
            **kwargs
        )

    @classmethod
    async def from_database(
        cls,
        config: Optional[EngineConfig] = None,
        create_tables: bool = True,
        **kwargs
    ) -> "AutomationEngine":
        """使用 SQLAlchemy 持久化"""
        from ..storage.sqlalchemy_repository import (
            DatabaseManager,
            SQLAlchemyWorkflowRepository,
            SQLAlchemyExecutionRepository,
            SQLAlchemyRecordStore
        )

        config = config or EngineConfig()
        db_manager = DatabaseManager(config.database_url)
        await db_manager.initialize(create_tables=create_tables)

        engine = cls(
            SQLAlchemyWorkflowRepository(db_manager),
            SQLAlchemyExecutionRepository(db_manager),
            SQLAlchemyRecordStore(db_manager),
            config=config,
            **kwargs
        )
        engine.db_manager = db_manager
        return engine

    async def start(self):
        """启动后台调度循环"""
        await self.scheduler.start()
        logger.info("Automation engine started")

    async def stop(self):
        """停止后台调度循环"""
        await self.scheduler.stop()
        logger.info("Automation engine stopped")

    async def close(self):
        """停止调度并释放数据库连接"""
        await self.stop()
        if self.db_manager is not None:
            await self.db_manager.close()

    @property
    def is_running(self) -> bool:
        return self.scheduler.is_running

    async def route_event(self, event_type: str, event_data: Dict[str, Any] = None) -> RouteResult:
        """外部事件入口"""
        return await self.router.route_event(event_type, event_data)

    async def trigger_workflow(self, workflow_id: str, trigger_data: Dict[str, Any] = None) -> RouteResult:
        return await self.router.trigger_workflow(workflow_id, trigger_data)

    async def register_workflow(self, workflow: Workflow) -> str:
        """保存工作流定义"""
        workflow_id = await self.workflow_repo.save(workflow)
        logger.info(f"Registered workflow {workflow_id} ({workflow.trigger_type.value})")
        return workflow_id

    async def get_execution(self, execution_id: str) -> Optional[Execution]:
        return await self.execution_repo.get(execution_id)

    async def get_workflow_stats(self, workflow_id: str) -> Optional[Dict[str, Any]]:
        """工作流执行统计"""
        workflow = await self.workflow_repo.get(workflow_id)
        if workflow is None:
            return None

        executions = await self.execution_repo.list_by_workflow(workflow_id, limit=10000)
        by_status = {status.value: 0 for status in ExecutionStatus}
        for execution in executions:
            by_status[execution.status.value] += 1

        success_rate = (
            workflow.success_count / workflow.execution_count
            if workflow.execution_count else 0.0
        )
        return {
            "workflowId": workflow.id,
            "name": workflow.name,
            "triggerType": workflow.trigger_type.value,
            "isActive": workflow.is_active,
            "isPaused": workflow.is_paused,
            "executionCount": workflow.execution_count,
            "successCount": workflow.success_count,
            "failureCount": workflow.failure_count,
            "successRate": round(success_rate, 4),
            "lastExecutedAt": workflow.last_executed_at.isoformat() if workflow.last_executed_at else None,
            "executionsByStatus": by_status
        }

    async def run_pending(self) -> int:
        """立即处理一批待执行实例（不依赖后台循环）"""
        return await self.scheduler.run_execution_tick()

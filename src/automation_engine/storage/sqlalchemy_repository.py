"""
SQLAlchemy 仓库实现
"""
import logging
from typing import Optional, List, Dict, Any
from datetime import datetime
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine, async_sessionmaker
from sqlalchemy.orm import selectinload
from sqlalchemy import select, update, delete, insert, and_, DateTime

from ..exceptions import AutomationEngineError
from ..models.common import generate_id, utcnow, parse_datetime
from ..models.workflow import Workflow, Step, StepType, TriggerType
from ..models.execution import Execution, ExecutionStatus, ExecutionLogEntry, ResumePoint
from .repository import WorkflowRepository, ExecutionRepository
from .record_store import RecordStore
from .sqlalchemy_models import (
    WorkflowRecord,
    StepRecord,
    ExecutionRecord,
    Base
)


logger = logging.getLogger(__name__)


TERMINAL_STATUSES = (ExecutionStatus.COMPLETED.value, ExecutionStatus.FAILED.value)


class DatabaseManager:
    """数据库管理器"""

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self.async_session_maker = None

    async def initialize(self, create_tables: bool = True):
        """初始化数据库连接"""
        engine_options = {"echo": self.echo, "pool_pre_ping": True}
        # SQLite 使用单连接池，不支持连接池大小参数
        if not self.database_url.startswith("sqlite"):
            engine_options.update(pool_size=20, max_overflow=10)

        self.engine = create_async_engine(self.database_url, **engine_options)
        self.async_session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        if create_tables:
            await self.create_tables()

        logger.info(f"Database initialized: {self.engine.url.render_as_string(hide_password=True)}")

    async def create_tables(self):
        """创建表（开发环境）"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        """关闭数据库连接"""
        if self.engine:
            await self.engine.dispose()
            self.engine = None

    @asynccontextmanager
    async def get_session(self):
        """获取数据库会话"""
        if self.async_session_maker is None:
            raise AutomationEngineError("Database manager is not initialized")

        async with self.async_session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


class SQLAlchemyWorkflowRepository(WorkflowRepository):
    """SQLAlchemy 工作流仓库实现"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def save(self, workflow: Workflow) -> str:
        """保存工作流，已存在时整体替换步骤"""
        async with self.db.get_session() as session:
            existing = await session.get(WorkflowRecord, workflow.id)
            if existing is None:
                session.add(WorkflowRecord(
                    id=workflow.id,
                    name=workflow.name,
                    trigger_type=workflow.trigger_type.value,
                    trigger_config=workflow.trigger_config,
                    is_active=workflow.is_active,
                    is_paused=workflow.is_paused,
                    execution_count=workflow.execution_count,
                    success_count=workflow.success_count,
                    failure_count=workflow.failure_count,
                    last_executed_at=workflow.last_executed_at
                ))
            else:
                existing.name = workflow.name
                existing.trigger_type = workflow.trigger_type.value
                existing.trigger_config = workflow.trigger_config
                existing.is_active = workflow.is_active
                existing.is_paused = workflow.is_paused
                # 步骤简化处理：删除后重建
                await session.execute(
                    delete(StepRecord).where(StepRecord.workflow_id == workflow.id)
                )

            await session.flush()

            for step in workflow.steps:
                step.workflow_id = workflow.id
                session.add(StepRecord(
                    workflow_id=workflow.id,
                    step_id=step.id,
                    step_name=step.name,
                    step_type=step.type.value,
                    step_config=step.config,
                    position=step.position,
                    parent_id=step.parent_id,
                    branch=step.branch
                ))

            await session.flush()
            return workflow.id

    async def get(self, workflow_id: str) -> Optional[Workflow]:
        """获取工作流（含步骤）"""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(WorkflowRecord)
                .options(selectinload(WorkflowRecord.steps))
                .where(WorkflowRecord.id == workflow_id)
            )
            record = result.scalar_one_or_none()
            if not record:
                return None
            return self._db_to_workflow(record)

    async def list_eligible(self, trigger_type: TriggerType) -> List[Workflow]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(WorkflowRecord)
                .options(selectinload(WorkflowRecord.steps))
                .where(
                    and_(
                        WorkflowRecord.trigger_type == trigger_type.value,
                        WorkflowRecord.is_active.is_(True),
                        WorkflowRecord.is_paused.is_(False)
                    )
                )
                .order_by(WorkflowRecord.created_at)
            )
            return [self._db_to_workflow(r) for r in result.scalars().all()]

    async def record_outcome(
        self,
        workflow_id: str,
        succeeded: bool,
        executed_at: datetime = None
    ) -> bool:
        """以自增表达式更新计数，避免读-改-写竞争"""
        values = {"execution_count": WorkflowRecord.execution_count + 1}
        if succeeded:
            values["success_count"] = WorkflowRecord.success_count + 1
            values["last_executed_at"] = executed_at or utcnow()
        else:
            values["failure_count"] = WorkflowRecord.failure_count + 1

        async with self.db.get_session() as session:
            result = await session.execute(
                update(WorkflowRecord)
                .where(WorkflowRecord.id == workflow_id)
                .values(**values)
            )
            return result.rowcount > 0

    def _db_to_workflow(self, record: WorkflowRecord) -> Workflow:
        """数据库模型转换为领域模型"""
        steps = [
            Step(
                id=s.step_id,
                type=StepType(s.step_type),
                name=s.step_name or "",
                workflow_id=record.id,
                config=s.step_config or {},
                position=s.position,
                parent_id=s.parent_id,
                branch=s.branch
            )
            for s in record.steps
        ]
        return Workflow(
            id=record.id,
            name=record.name,
            trigger_type=TriggerType(record.trigger_type),
            trigger_config=record.trigger_config or {},
            is_active=record.is_active,
            is_paused=record.is_paused,
            steps=steps,
            execution_count=record.execution_count or 0,
            success_count=record.success_count or 0,
            failure_count=record.failure_count or 0,
            last_executed_at=record.last_executed_at
        )


class SQLAlchemyExecutionRepository(ExecutionRepository):
    """SQLAlchemy 执行仓库实现"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def create(self, execution: Execution) -> str:
        async with self.db.get_session() as session:
            session.add(ExecutionRecord(
                id=execution.id,
                workflow_id=execution.workflow_id,
                created_at=execution.created_at,
                **self._execution_values(execution)
            ))
            await session.flush()
            return execution.id

    async def get(self, execution_id: str) -> Optional[Execution]:
        async with self.db.get_session() as session:
            record = await session.get(ExecutionRecord, execution_id)
            return self._db_to_execution(record) if record else None

    async def list_pending(self, limit: int, now: datetime) -> List[Execution]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(ExecutionRecord)
                .where(
                    and_(
                        ExecutionRecord.status == ExecutionStatus.PENDING.value,
                        (ExecutionRecord.not_before.is_(None)) | (ExecutionRecord.not_before <= now)
                    )
                )
                .order_by(ExecutionRecord.created_at)
                .limit(limit)
            )
            return [self._db_to_execution(r) for r in result.scalars().all()]

    async def claim(
        self,
        execution_id: str,
        expected_status: ExecutionStatus = ExecutionStatus.PENDING
    ) -> Optional[Execution]:
        """条件更新认领：只有一个调用方能看到 rowcount == 1"""
        async with self.db.get_session() as session:
            result = await session.execute(
                update(ExecutionRecord)
                .where(
                    and_(
                        ExecutionRecord.id == execution_id,
                        ExecutionRecord.status == expected_status.value
                    )
                )
                .values(status=ExecutionStatus.RUNNING.value, updated_at=utcnow())
            )
            if result.rowcount != 1:
                return None

            record = await session.get(ExecutionRecord, execution_id)
            await session.refresh(record)
            return self._db_to_execution(record)

    async def update(
        self,
        execution: Execution,
        expected_status: ExecutionStatus = None
    ) -> bool:
        """终止状态的执行不再被覆盖"""
        conditions = [
            ExecutionRecord.id == execution.id,
            ExecutionRecord.status.notin_(TERMINAL_STATUSES)
        ]
        if expected_status is not None:
            conditions.append(ExecutionRecord.status == expected_status.value)

        async with self.db.get_session() as session:
            result = await session.execute(
                update(ExecutionRecord)
                .where(and_(*conditions))
                .values(updated_at=utcnow(), **self._execution_values(execution))
            )
            return result.rowcount > 0

    async def list_waiting_due(self, now: datetime, limit: int = 100) -> List[Execution]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(ExecutionRecord)
                .where(
                    and_(
                        ExecutionRecord.status == ExecutionStatus.WAITING.value,
                        ExecutionRecord.wake_at.is_not(None),
                        ExecutionRecord.wake_at <= now
                    )
                )
                .order_by(ExecutionRecord.wake_at)
                .limit(limit)
            )
            return [self._db_to_execution(r) for r in result.scalars().all()]

    async def list_waiting_for_event(
        self,
        event_type: str,
        entity_type: Optional[str],
        entity_id: Optional[str]
    ) -> List[Execution]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(ExecutionRecord)
                .where(
                    and_(
                        ExecutionRecord.status == ExecutionStatus.WAITING.value,
                        ExecutionRecord.wait_event_type == event_type,
                        ExecutionRecord.trigger_entity_type == entity_type,
                        ExecutionRecord.trigger_entity_id == entity_id
                    )
                )
                .order_by(ExecutionRecord.created_at)
            )
            return [self._db_to_execution(r) for r in result.scalars().all()]

    async def list_by_workflow(
        self,
        workflow_id: str,
        status: ExecutionStatus = None,
        limit: int = 100
    ) -> List[Execution]:
        async with self.db.get_session() as session:
            query = select(ExecutionRecord).where(ExecutionRecord.workflow_id == workflow_id)
            if status:
                query = query.where(ExecutionRecord.status == status.value)
            query = query.order_by(ExecutionRecord.created_at).limit(limit)

            result = await session.execute(query)
            return [self._db_to_execution(r) for r in result.scalars().all()]

    def _execution_values(self, execution: Execution) -> Dict[str, Any]:
        """可变列；恢复游标的唤醒时间和等待事件冗余到独立列以便查询"""
        point = execution.resume_point
        return {
            "status": execution.status.value,
            "trigger_entity_type": execution.trigger_entity_type,
            "trigger_entity_id": execution.trigger_entity_id,
            "trigger_data": execution.trigger_data,
            "started_at": execution.started_at,
            "completed_at": execution.completed_at,
            "execution_time_ms": execution.execution_time_ms,
            "execution_log": [entry.to_dict() for entry in execution.execution_log],
            "attempt": execution.attempt,
            "retry_of": execution.retry_of,
            "not_before": execution.not_before,
            "resume_point": point.to_dict() if point else None,
            "wake_at": point.wake_at if point else None,
            "wait_event_type": point.event_type if point else None,
            "error_message": execution.error_message,
        }

    def _db_to_execution(self, record: ExecutionRecord) -> Execution:
        return Execution(
            id=record.id,
            workflow_id=record.workflow_id,
            status=ExecutionStatus(record.status),
            trigger_entity_type=record.trigger_entity_type,
            trigger_entity_id=record.trigger_entity_id,
            trigger_data=record.trigger_data or {},
            started_at=record.started_at,
            completed_at=record.completed_at,
            execution_time_ms=record.execution_time_ms or 0,
            execution_log=[ExecutionLogEntry.from_dict(e) for e in (record.execution_log or [])],
            attempt=record.attempt or 1,
            retry_of=record.retry_of,
            not_before=record.not_before,
            resume_point=ResumePoint.from_dict(record.resume_point),
            error_message=record.error_message,
            created_at=record.created_at
        )


class SQLAlchemyRecordStore(RecordStore):
    """
    基于 SQLAlchemy Core 的通用记录存储

    表结构取自 Base.metadata，按列名读写。
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def _table(self, table: str):
        try:
            return Base.metadata.tables[table]
        except KeyError:
            raise AutomationEngineError(f"Unknown table: {table}")

    def _prepare(self, table_obj, values: Dict[str, Any]) -> Dict[str, Any]:
        """检查列名，并把 ISO 字符串转换为日期时间"""
        prepared = {}
        for key, value in values.items():
            if key not in table_obj.c:
                raise AutomationEngineError(f"Unknown column '{key}' in table '{table_obj.name}'")
            if isinstance(table_obj.c[key].type, DateTime) and isinstance(value, str):
                value = parse_datetime(value)
            prepared[key] = value
        return prepared

    async def fetch_by_id(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        table_obj = self._table(table)
        async with self.db.get_session() as session:
            result = await session.execute(
                select(table_obj).where(table_obj.c.id == str(record_id))
            )
            row = result.mappings().first()
            return dict(row) if row else None

    async def fetch_by_filter(
        self,
        table: str,
        filters: Dict[str, Any] = None,
        limit: int = None
    ) -> List[Dict[str, Any]]:
        table_obj = self._table(table)
        query = select(table_obj)
        for key, value in self._prepare(table_obj, filters or {}).items():
            query = query.where(table_obj.c[key] == value)
        if limit is not None:
            query = query.limit(limit)

        async with self.db.get_session() as session:
            result = await session.execute(query)
            return [dict(row) for row in result.mappings().all()]

    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        table_obj = self._table(table)
        values = self._prepare(table_obj, values)
        values.setdefault("id", generate_id())

        async with self.db.get_session() as session:
            await session.execute(insert(table_obj).values(**values))
            result = await session.execute(
                select(table_obj).where(table_obj.c.id == values["id"])
            )
            return dict(result.mappings().one())

    async def update(
        self,
        table: str,
        record_id: str,
        values: Dict[str, Any],
        expected_version: int = None
    ) -> bool:
        table_obj = self._table(table)
        values = self._prepare(table_obj, values)
        conditions = [table_obj.c.id == str(record_id)]

        if "version" in table_obj.c:
            if expected_version is not None:
                conditions.append(table_obj.c.version == expected_version)
            values["version"] = table_obj.c.version + 1
        if "updated_at" in table_obj.c:
            values["updated_at"] = utcnow()

        async with self.db.get_session() as session:
            result = await session.execute(
                update(table_obj).where(and_(*conditions)).values(**values)
            )
            return result.rowcount > 0

    async def increment(self, table: str, record_id: str, column: str, amount: int = 1) -> bool:
        table_obj = self._table(table)
        if column not in table_obj.c:
            raise AutomationEngineError(f"Unknown column '{column}' in table '{table}'")

        async with self.db.get_session() as session:
            result = await session.execute(
                update(table_obj)
                .where(table_obj.c.id == str(record_id))
                .values({column: table_obj.c[column] + amount})
            )
            return result.rowcount > 0

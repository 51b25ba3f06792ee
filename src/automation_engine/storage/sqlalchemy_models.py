"""
SQLAlchemy 数据库模型定义
"""
from sqlalchemy import (
    Column, String, Text, Boolean, Integer, BigInteger, Float,
    DateTime, ForeignKey, UniqueConstraint, CheckConstraint, Index, JSON
)
from sqlalchemy.orm import declarative_base, relationship

from ..models.common import generate_id, utcnow


Base = declarative_base()


class WorkflowRecord(Base):
    """自动化工作流模型"""
    __tablename__ = 'automation_workflows'

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False, default='')
    trigger_type = Column(String(50), nullable=False)
    trigger_config = Column(JSON, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    is_paused = Column(Boolean, nullable=False, default=False)
    execution_count = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    failure_count = Column(Integer, nullable=False, default=0)
    last_executed_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # 关系
    steps = relationship(
        "StepRecord",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="StepRecord.position"
    )
    executions = relationship("ExecutionRecord", back_populates="workflow")

    # 约束
    __table_args__ = (
        Index('idx_automation_workflows_trigger', 'trigger_type', 'is_active', 'is_paused'),
    )


class StepRecord(Base):
    """工作流步骤模型"""
    __tablename__ = 'workflow_steps'

    id = Column(String(36), primary_key=True, default=generate_id)
    workflow_id = Column(String(36), ForeignKey('automation_workflows.id', ondelete='CASCADE'), nullable=False)
    step_id = Column(String(255), nullable=False)
    step_name = Column(String(255))
    step_type = Column(String(50), nullable=False)
    step_config = Column(JSON, default=dict)
    position = Column(Integer, nullable=False, default=0)
    parent_id = Column(String(255))
    branch = Column(String(50))

    # 关系
    workflow = relationship("WorkflowRecord", back_populates="steps")

    # 约束
    __table_args__ = (
        UniqueConstraint('workflow_id', 'step_id', name='unique_workflow_step'),
        Index('idx_workflow_steps_workflow_id', 'workflow_id'),
    )


class ExecutionRecord(Base):
    """执行实例模型"""
    __tablename__ = 'automation_executions'

    id = Column(String(36), primary_key=True, default=generate_id)
    workflow_id = Column(String(36), ForeignKey('automation_workflows.id'), nullable=False)
    status = Column(String(20), nullable=False)
    trigger_entity_type = Column(String(50))
    trigger_entity_id = Column(String(255))
    trigger_data = Column(JSON, default=dict)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    execution_time_ms = Column(BigInteger, default=0)
    execution_log = Column(JSON, default=list)
    attempt = Column(Integer, nullable=False, default=1)
    retry_of = Column(String(36))
    not_before = Column(DateTime)
    resume_point = Column(JSON)
    wake_at = Column(DateTime)
    wait_event_type = Column(String(100))
    error_message = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # 关系
    workflow = relationship("WorkflowRecord", back_populates="executions")

    # 约束
    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'RUNNING', 'WAITING', 'COMPLETED', 'FAILED')",
            name='check_execution_status'
        ),
        Index('idx_automation_executions_status', 'status', 'created_at'),
        Index('idx_automation_executions_workflow_id', 'workflow_id'),
        Index('idx_automation_executions_wake_at', 'status', 'wake_at'),
        Index('idx_automation_executions_wait_event', 'wait_event_type', 'trigger_entity_id'),
    )


# CRM 实体表，供 SQLAlchemyRecordStore 使用

class LeadRecord(Base):
    """线索"""
    __tablename__ = 'leads'

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255))
    email = Column(String(255))
    phone = Column(String(50))
    company = Column(String(255))
    status = Column(String(50))
    source = Column(String(100))
    lead_score = Column(Float, default=0)
    is_active = Column(Boolean, default=True)
    assigned_to = Column(String(36))
    tags = Column(JSON, default=list)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ContactRecord(Base):
    """联系人"""
    __tablename__ = 'contacts'

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255))
    email = Column(String(255))
    phone = Column(String(50))
    company = Column(String(255))
    status = Column(String(50))
    is_active = Column(Boolean, default=True)
    assigned_to = Column(String(36))
    tags = Column(JSON, default=list)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class DealRecord(Base):
    """商机"""
    __tablename__ = 'deals'

    id = Column(String(36), primary_key=True, default=generate_id)
    title = Column(String(255))
    value = Column(Float, default=0)
    stage = Column(String(100))
    status = Column(String(50))
    close_date = Column(DateTime)
    assigned_to = Column(String(36))
    tags = Column(JSON, default=list)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class TaskRecord(Base):
    """任务"""
    __tablename__ = 'tasks'

    id = Column(String(36), primary_key=True, default=generate_id)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    assigned_to_id = Column(String(36))
    due_date = Column(DateTime)
    entity_type = Column(String(50))
    entity_id = Column(String(255))
    auto_created = Column(Boolean, default=False)
    priority = Column(String(20), default='MEDIUM')
    status = Column(String(20), default='PENDING')
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('idx_tasks_entity', 'entity_type', 'entity_id'),
    )

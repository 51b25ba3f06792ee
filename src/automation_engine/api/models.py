"""
API 请求和响应模型
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from ..models.common import utcnow
from ..models.execution import Execution


class EventRequest(BaseModel):
    """外部事件"""
    event_type: str = Field(..., description="事件类型", examples=["LEAD_CREATED"])
    event_data: Dict[str, Any] = Field(
        default_factory=dict,
        description="事件数据，至少包含 entityType / entityId",
        examples=[{"entityType": "LEAD", "entityId": "lead-1"}]
    )


class RouteResponse(BaseModel):
    """事件路由结果"""
    success: bool = Field(..., description="是否成功")
    error: Optional[str] = Field(None, description="错误信息")
    workflows_triggered: int = Field(0, description="触发的工作流数量")
    execution_ids: List[str] = Field(default_factory=list, description="创建的执行ID")
    executions_resumed: int = Field(0, description="被唤醒的挂起执行数量")


class TriggerRequest(BaseModel):
    """手动触发工作流"""
    trigger_data: Dict[str, Any] = Field(default_factory=dict, description="触发数据")


class WorkflowCreateRequest(BaseModel):
    """工作流定义（与定义文件格式相同）"""
    definition: Dict[str, Any] = Field(..., description="工作流定义")


class WorkflowResponse(BaseModel):
    """工作流响应"""
    id: str = Field(..., description="工作流ID")
    name: str = Field(..., description="工作流名称")
    trigger_type: str = Field(..., description="触发类型")
    is_active: bool = Field(..., description="是否激活")
    is_paused: bool = Field(..., description="是否暂停")
    step_count: int = Field(..., description="步骤数量")


class WorkflowStatsResponse(BaseModel):
    """工作流统计"""
    workflow_id: str
    name: str
    trigger_type: str
    is_active: bool
    is_paused: bool
    execution_count: int
    success_count: int
    failure_count: int
    success_rate: float
    last_executed_at: Optional[datetime] = None
    executions_by_status: Dict[str, int] = Field(default_factory=dict)


class ExecutionResponse(BaseModel):
    """执行详情"""
    id: str = Field(..., description="执行ID")
    workflow_id: str = Field(..., description="工作流ID")
    status: str = Field(..., description="执行状态")
    trigger_entity_type: Optional[str] = None
    trigger_entity_id: Optional[str] = None
    attempt: int = 1
    retry_of: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    execution_time_ms: int = 0
    error_message: Optional[str] = None
    resume_point: Optional[Dict[str, Any]] = None
    execution_log: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_execution(cls, execution: Execution) -> "ExecutionResponse":
        return cls(
            id=execution.id,
            workflow_id=execution.workflow_id,
            status=execution.status.value,
            trigger_entity_type=execution.trigger_entity_type,
            trigger_entity_id=execution.trigger_entity_id,
            attempt=execution.attempt,
            retry_of=execution.retry_of,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            execution_time_ms=execution.execution_time_ms,
            error_message=execution.error_message,
            resume_point=execution.resume_point.to_dict() if execution.resume_point else None,
            execution_log=[entry.to_dict() for entry in execution.execution_log]
        )


class HealthCheckResponse(BaseModel):
    """健康检查响应"""
    status: str = Field(..., description="健康状态", examples=["healthy", "unhealthy"])
    version: str = Field(..., description="版本号")
    timestamp: datetime = Field(default_factory=utcnow, description="时间戳")
    checks: Dict[str, bool] = Field(default_factory=dict, description="各组件检查结果")


class ErrorResponse(BaseModel):
    """错误响应"""
    error: str = Field(..., description="错误类型")
    message: str = Field(..., description="错误信息")
    request_id: Optional[str] = Field(None, description="请求ID")


class LifecycleEventResponse(BaseModel):
    """执行生命周期事件"""
    topic: str = Field(..., description="事件主题", examples=["execution.completed"])
    timestamp: datetime
    payload: Dict[str, Any] = Field(default_factory=dict)

"""
工作流执行模型
"""
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List
from enum import Enum
from datetime import datetime

from .common import generate_id, utcnow, isoformat, parse_datetime
from ..exceptions import StateTransitionError


class ExecutionStatus(Enum):
    """执行状态"""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    WAITING = "WAITING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# 合法的状态转换；COMPLETED / FAILED 为终止状态
ALLOWED_TRANSITIONS = {
    ExecutionStatus.PENDING: {ExecutionStatus.RUNNING},
    ExecutionStatus.RUNNING: {
        ExecutionStatus.WAITING,
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED
    },
    ExecutionStatus.WAITING: {ExecutionStatus.RUNNING},
    ExecutionStatus.COMPLETED: set(),
    ExecutionStatus.FAILED: set(),
}


@dataclass
class StepResult:
    """步骤执行结果"""
    success: bool = True
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    # 挂起请求：延迟到指定时间或等待事件
    wake_at: Optional[datetime] = None
    wait_event_type: Optional[str] = None

    @classmethod
    def ok(cls, **data) -> "StepResult":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: str, **data) -> "StepResult":
        return cls(success=False, data=data, error=error)

    @property
    def branch_selected(self) -> Optional[str]:
        return self.data.get("branchSelected")

    @property
    def requests_suspension(self) -> bool:
        return self.success and (self.wake_at is not None or self.wait_event_type is not None)

    def to_dict(self) -> Dict[str, Any]:
        result = {"success": self.success, **self.data}
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class ExecutionLogEntry:
    """执行日志条目"""
    step_id: Optional[str] = None
    step_name: Optional[str] = None
    step_type: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "stepId": self.step_id,
            "stepName": self.step_name,
            "stepType": self.step_type,
            "timestamp": isoformat(self.timestamp)
        }
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionLogEntry":
        return cls(
            step_id=data.get("stepId"),
            step_name=data.get("stepName"),
            step_type=data.get("stepType"),
            result=data.get("result"),
            error=data.get("error"),
            timestamp=parse_datetime(data.get("timestamp")) or utcnow()
        )


@dataclass
class ResumePoint:
    """挂起执行的恢复游标"""
    step_id: str
    pending_step_ids: List[str] = field(default_factory=list)
    visited_step_ids: List[str] = field(default_factory=list)
    wake_at: Optional[datetime] = None
    event_type: Optional[str] = None
    matched_event: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stepId": self.step_id,
            "pendingStepIds": list(self.pending_step_ids),
            "visitedStepIds": list(self.visited_step_ids),
            "wakeAt": isoformat(self.wake_at),
            "eventType": self.event_type,
            "matchedEvent": self.matched_event
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["ResumePoint"]:
        if not data:
            return None
        return cls(
            step_id=data["stepId"],
            pending_step_ids=list(data.get("pendingStepIds") or []),
            visited_step_ids=list(data.get("visitedStepIds") or []),
            wake_at=parse_datetime(data.get("wakeAt")),
            event_type=data.get("eventType"),
            matched_event=data.get("matchedEvent")
        )


@dataclass
class Execution:
    """工作流执行实例"""
    id: str = field(default_factory=generate_id)
    workflow_id: str = ""
    status: ExecutionStatus = ExecutionStatus.PENDING
    trigger_entity_type: Optional[str] = None
    trigger_entity_id: Optional[str] = None
    trigger_data: Dict[str, Any] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    execution_time_ms: int = 0
    execution_log: List[ExecutionLogEntry] = field(default_factory=list)
    attempt: int = 1
    retry_of: Optional[str] = None
    not_before: Optional[datetime] = None
    resume_point: Optional[ResumePoint] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def transition_to(self, target: ExecutionStatus):
        """状态转换，只允许单调前进"""
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise StateTransitionError(self.status.value, target.value)
        self.status = target

    def mark_running(self):
        """认领后进入运行状态"""
        self.transition_to(ExecutionStatus.RUNNING)

    def complete(self):
        """完成执行"""
        self.transition_to(ExecutionStatus.COMPLETED)
        self.completed_at = utcnow()
        self.resume_point = None

    def fail(self, error_message: str):
        """执行失败"""
        self.transition_to(ExecutionStatus.FAILED)
        self.error_message = error_message
        self.completed_at = utcnow()
        self.resume_point = None

    def abort(self, error_message: str):
        """
        持久化失败后强制结束为 FAILED

        内存中的状态可能已经前进到 COMPLETED / WAITING 但没有写入存储，
        存储中的状态仍是 RUNNING，因此这里不做转换校验。
        """
        self.status = ExecutionStatus.FAILED
        self.error_message = error_message
        self.completed_at = utcnow()
        self.resume_point = None

    def wait(self, resume_point: ResumePoint):
        """挂起等待恢复"""
        self.transition_to(ExecutionStatus.WAITING)
        self.resume_point = resume_point

    def append_log(self, entry: ExecutionLogEntry):
        self.execution_log.append(entry)

    def is_terminal_state(self) -> bool:
        """是否为终止状态"""
        return self.status in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)

    def is_due(self, now: datetime) -> bool:
        """是否到达可调度时间"""
        return self.not_before is None or self.not_before <= now

    def summary(self) -> Dict[str, Any]:
        """执行摘要（用于 webhook 默认请求体和 API 响应）"""
        return {
            "executionId": self.id,
            "workflowId": self.workflow_id,
            "status": self.status.value,
            "triggerEntityType": self.trigger_entity_type,
            "triggerEntityId": self.trigger_entity_id,
            "attempt": self.attempt,
            "startedAt": isoformat(self.started_at),
            "completedAt": isoformat(self.completed_at),
            "executionTimeMs": self.execution_time_ms
        }

"""
失败执行的重试策略
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..models.common import utcnow
from ..models.execution import Execution, ExecutionStatus


logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """重试策略（指数退避）"""
    max_attempts: int = 1        # 含首次执行；1 表示不重试
    initial_delay: float = 60.0  # 秒
    backoff_factor: float = 2.0
    max_delay: float = 3600.0    # 秒

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(
            max_attempts=config.retry_max_attempts,
            initial_delay=config.retry_initial_delay,
            backoff_factor=config.retry_backoff_factor,
            max_delay=config.retry_max_delay
        )

    def should_retry(self, execution: Execution) -> bool:
        """只有失败且未用尽次数的执行才重试"""
        return (
            execution.status == ExecutionStatus.FAILED
            and execution.attempt < self.max_attempts
        )

    def calculate_delay(self, attempt: int) -> float:
        """第 attempt 次执行失败后的等待秒数"""
        delay = self.initial_delay * (self.backoff_factor ** max(attempt - 1, 0))
        return min(delay, self.max_delay)

    def next_attempt(self, execution: Execution, now: datetime = None) -> Optional[Execution]:
        """
        构造重试用的新执行实例

        Returns:
            不需要重试时返回 None
        """
        if not self.should_retry(execution):
            return None

        now = now or utcnow()
        delay = self.calculate_delay(execution.attempt)
        retry = Execution(
            workflow_id=execution.workflow_id,
            trigger_entity_type=execution.trigger_entity_type,
            trigger_entity_id=execution.trigger_entity_id,
            trigger_data=dict(execution.trigger_data),
            started_at=now,
            attempt=execution.attempt + 1,
            retry_of=execution.id,
            not_before=now + timedelta(seconds=delay)
        )

        logger.info(
            f"Scheduling retry {retry.attempt}/{self.max_attempts} of execution "
            f"{execution.id} after {delay}s"
        )
        return retry

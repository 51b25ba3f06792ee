"""
消息发送

引擎只负责把邮件放入发送队列，实际投递由可插拔的传输函数完成，
消息循环按批次冲刷队列。
"""
import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional

from ..models.common import generate_id, utcnow


logger = logging.getLogger(__name__)


@dataclass
class OutboundMessage:
    """待发送消息"""
    to: str
    subject: str
    body: str
    from_address: str
    id: str = field(default_factory=generate_id)
    status: str = "PENDING"
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    sent_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "to": self.to,
            "subject": self.subject,
            "body": self.body,
            "from": self.from_address,
            "status": self.status,
            "error": self.error
        }


class MessageDelivery(ABC):
    """消息发送接口"""

    @abstractmethod
    async def send_message(self, to: str, subject: str, body: str, from_address: str) -> str:
        """提交一封邮件，返回消息ID"""
        pass

    @abstractmethod
    async def flush_queued(self, limit: int) -> int:
        """发送最多 limit 条排队消息，返回处理数量"""
        pass


async def log_transport(message: OutboundMessage):
    """默认传输：只记录日志"""
    logger.info(f"Delivering message {message.id} to {message.to}: {message.subject}")


class QueuedMessageDelivery(MessageDelivery):
    """进程内队列实现"""

    def __init__(self, transport: Callable = None):
        self.transport = transport or log_transport
        self.queue: Deque[OutboundMessage] = deque()
        self.sent: List[OutboundMessage] = []
        self.failed: List[OutboundMessage] = []
        self._lock = asyncio.Lock()

    async def send_message(self, to: str, subject: str, body: str, from_address: str) -> str:
        message = OutboundMessage(
            to=to,
            subject=subject,
            body=body,
            from_address=from_address
        )
        async with self._lock:
            self.queue.append(message)

        logger.debug(f"Queued message {message.id} for {to}")
        return message.id

    async def flush_queued(self, limit: int) -> int:
        async with self._lock:
            batch = [self.queue.popleft() for _ in range(min(limit, len(self.queue)))]

        for message in batch:
            try:
                result = self.transport(message)
                if inspect.isawaitable(result):
                    await result
                message.status = "SENT"
                message.sent_at = utcnow()
                self.sent.append(message)
            except Exception as e:
                message.status = "FAILED"
                message.error = str(e)
                self.failed.append(message)
                logger.error(f"Failed to deliver message {message.id}: {e}", exc_info=True)

        return len(batch)

    @property
    def pending_count(self) -> int:
        return len(self.queue)

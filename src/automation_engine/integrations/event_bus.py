"""
执行生命周期事件总线

解释器在执行开始、每个步骤结束、挂起、完成和失败时发布事件。
订阅者按主题接收，主题 "*" 接收全部事件；最近的事件保留在有界历史中供监控接口查询。
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Callable, Deque, Optional

from ..models.common import utcnow, isoformat


logger = logging.getLogger(__name__)


EXECUTION_STARTED = "execution.started"
EXECUTION_STEP = "execution.step"
EXECUTION_WAITING = "execution.waiting"
EXECUTION_COMPLETED = "execution.completed"
EXECUTION_FAILED = "execution.failed"

WILDCARD = "*"
DEFAULT_HISTORY_SIZE = 200


@dataclass
class Event:
    """生命周期事件"""
    topic: str
    payload: Dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def execution_id(self) -> Optional[str]:
        return self.payload.get("executionId")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "timestamp": isoformat(self.timestamp),
            "payload": self.payload
        }


class EventBus:
    """进程内事件总线"""

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE):
        self.subscribers: Dict[str, List[Callable]] = {}
        self.history: Deque[Event] = deque(maxlen=history_size)

    async def publish(self, topic: str, payload: Dict[str, Any]) -> Event:
        """发布事件，单个订阅者出错不影响其他订阅者和发布方"""
        event = Event(topic=topic, payload=payload)
        self.history.append(event)

        subscribers = self.subscribers.get(topic, []) + self.subscribers.get(WILDCARD, [])
        if subscribers:
            await asyncio.gather(*(self._notify(subscriber, event) for subscriber in subscribers))

        logger.debug(f"Published {topic} for execution {event.execution_id} to {len(subscribers)} subscribers")
        return event

    def subscribe(self, topic: str, handler: Callable):
        """订阅主题，handler 可以是普通函数或协程函数"""
        self.subscribers.setdefault(topic, []).append(handler)
        logger.info(f"Subscribed {getattr(handler, '__name__', handler)} to '{topic}'")

    def unsubscribe(self, topic: str, handler: Callable):
        handlers = self.subscribers.get(topic)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self.subscribers[topic]

    def recent(self, limit: int = 50, execution_id: str = None) -> List[Event]:
        """最近的事件，新事件在前"""
        events = [
            event for event in reversed(self.history)
            if execution_id is None or event.execution_id == execution_id
        ]
        return events[:limit]

    async def _notify(self, subscriber: Callable, event: Event):
        try:
            result = subscriber(event)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"Subscriber failed for {event.topic}: {e}", exc_info=True)

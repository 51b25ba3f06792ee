"""External system integrations"""

# Event Bus
from .event_bus import (
    EventBus,
    Event,
    EXECUTION_STARTED,
    EXECUTION_STEP,
    EXECUTION_WAITING,
    EXECUTION_COMPLETED,
    EXECUTION_FAILED
)

# Delivery
from .delivery import MessageDelivery, QueuedMessageDelivery, OutboundMessage

# Webhook
from .webhook import WebhookClient

__all__ = [
    # Event Bus
    "EventBus",
    "Event",
    "EXECUTION_STARTED",
    "EXECUTION_STEP",
    "EXECUTION_WAITING",
    "EXECUTION_COMPLETED",
    "EXECUTION_FAILED",

    # Delivery
    "MessageDelivery",
    "QueuedMessageDelivery",
    "OutboundMessage",

    # Webhook
    "WebhookClient"
]

# launchsniper/events.py
import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .models import Trade


class EventKind(Enum):
    SNIPE_EXECUTED = "snipeExecuted"
    SNIPE_FAILED = "snipeFailed"
    SNIPE_ERROR = "snipeError"
    TRADE_EXITED = "tradeExited"
    PROFIT_UPDATED = "profitUpdated"


class FailureStage(Enum):
    """Where an execution attempt went wrong."""
    REJECTED_BEFORE_BROADCAST = "rejected_before_broadcast"
    REVERTED = "reverted"
    CONFIRMATION_TIMEOUT = "confirmation_timeout"


@dataclass(frozen=True)
class TradeEvent:
    kind: EventKind
    trade: Optional[Trade] = None
    cause: Optional[BaseException] = None
    stage: Optional[FailureStage] = None
    total_profit: float = 0.0
    timestamp: float = field(default_factory=time.time)


class EventBus:
    """
    Fan-out channel from the engines to observers (audit log, dashboard).
    Every subscriber gets its own queue; publishing never blocks the pipeline.
    """
    def __init__(self, maxsize: int = 1000):
        self._maxsize = maxsize
        self._subscribers: List[asyncio.Queue] = []
        self.dropped = 0

    def subscribe(self) -> asyncio.Queue:
        queue = asyncio.Queue(maxsize=self._maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: TradeEvent):
        for queue in self._subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # Full queue: this subscriber misses the event
                self.dropped += 1

    def snipe_executed(self, trade: Trade):
        self.publish(TradeEvent(EventKind.SNIPE_EXECUTED, trade))

    def snipe_failed(self, trade: Trade, stage: FailureStage = FailureStage.REVERTED):
        self.publish(TradeEvent(EventKind.SNIPE_FAILED, trade, stage=stage))

    def snipe_error(self, trade: Trade, cause: BaseException, stage: FailureStage):
        self.publish(TradeEvent(EventKind.SNIPE_ERROR, trade, cause=cause, stage=stage))

    def trade_exited(self, trade: Trade, total_profit: float):
        self.publish(TradeEvent(EventKind.TRADE_EXITED, trade, total_profit=total_profit))

    def profit_updated(self, total_profit: float):
        self.publish(TradeEvent(EventKind.PROFIT_UPDATED, total_profit=total_profit))

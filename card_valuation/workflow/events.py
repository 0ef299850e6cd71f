"""Terminal event emitted once per identification."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List

from pydantic import BaseModel, Field

from card_valuation.models import IdentificationResult, WorkflowStatus, utcnow

logger = logging.getLogger(__name__)

EVENT_TYPE = "CardValuationCompleted"


class CardValuationCompleted(BaseModel):
    event_type: str = EVENT_TYPE
    execution_id: str
    status: WorkflowStatus
    result: IdentificationResult
    emitted_at: datetime = Field(default_factory=utcnow)


class EventSink(ABC):
    @abstractmethod
    def emit(self, event: CardValuationCompleted) -> None:
        pass


class LoggingEventSink(EventSink):
    """Default sink: one INFO line per completed execution."""

    def emit(self, event: CardValuationCompleted) -> None:
        result = event.result
        name = result.card_metadata.card_name if result.card_metadata else None
        median = result.valuation.value_median if result.valuation else None
        logger.info(f"{event.event_type}: execution={event.execution_id} status={event.status.value} "
                    f"card={name!r} median={median}")


class CollectingEventSink(EventSink):
    """Keeps events in memory (tests, batch runs)."""

    def __init__(self):
        self.events: List[CardValuationCompleted] = []

    def emit(self, event: CardValuationCompleted) -> None:
        self.events.append(event)

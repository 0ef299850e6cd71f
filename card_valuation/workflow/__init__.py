from card_valuation.workflow.coordinator import WorkflowCoordinator, build_default_coordinator, price_query_for
from card_valuation.workflow.events import CardValuationCompleted, CollectingEventSink, EventSink, LoggingEventSink
from card_valuation.workflow.store import BaseWorkflowStore, InMemoryWorkflowStore, SqlWorkflowStore

__all__ = [
    "WorkflowCoordinator",
    "build_default_coordinator",
    "price_query_for",
    "CardValuationCompleted",
    "CollectingEventSink",
    "EventSink",
    "LoggingEventSink",
    "BaseWorkflowStore",
    "InMemoryWorkflowStore",
    "SqlWorkflowStore",
]

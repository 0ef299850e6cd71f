"""
Durable storage of workflow executions.

Every stage outcome is written as its own record as soon as the stage
finishes, so a restarted execution can reload completed stages instead of
recomputing them.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from card_valuation.database import db as db_ops
from card_valuation.database.schema import WorkflowExecutionRecord
from card_valuation.models import (
    IdentifyRequest, Stage, StageResult, StageStatus, WorkflowExecution, WorkflowStatus, utcnow
)

logger = logging.getLogger(__name__)


class BaseWorkflowStore(ABC):
    """Abstract execution store supporting per-stage partial updates."""

    @abstractmethod
    def create(self, execution: WorkflowExecution) -> None:
        pass

    @abstractmethod
    def get(self, execution_id: str) -> Optional[WorkflowExecution]:
        pass

    @abstractmethod
    def save_stage(self, execution_id: str, result: StageResult) -> None:
        """Insert or replace the result for one stage."""
        pass

    @abstractmethod
    def set_status(self, execution_id: str, status: WorkflowStatus) -> None:
        pass

    def list_recent(self, status: Optional[WorkflowStatus] = None, limit: int = 50) -> List[WorkflowExecution]:
        return []


class InMemoryWorkflowStore(BaseWorkflowStore):
    """Process-local store; returns copies so callers never share state."""

    def __init__(self):
        self._executions: Dict[str, WorkflowExecution] = {}
        self._lock = threading.Lock()

    def create(self, execution: WorkflowExecution) -> None:
        with self._lock:
            self._executions[execution.id] = execution.model_copy(deep=True)

    def get(self, execution_id: str) -> Optional[WorkflowExecution]:
        with self._lock:
            execution = self._executions.get(execution_id)
            return execution.model_copy(deep=True) if execution is not None else None

    def save_stage(self, execution_id: str, result: StageResult) -> None:
        with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None:
                raise KeyError(f"Unknown execution: {execution_id}")
            execution.stage_results[result.stage] = result.model_copy(deep=True)
            execution.updated_at = result.completed_at

    def set_status(self, execution_id: str, status: WorkflowStatus) -> None:
        with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None:
                raise KeyError(f"Unknown execution: {execution_id}")
            execution.status = status
            execution.updated_at = utcnow()

    def list_recent(self, status: Optional[WorkflowStatus] = None, limit: int = 50) -> List[WorkflowExecution]:
        with self._lock:
            executions = [e for e in self._executions.values() if status is None or e.status == status]
        executions.sort(key=lambda e: e.created_at, reverse=True)
        return [e.model_copy(deep=True) for e in executions[:limit]]


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class SqlWorkflowStore(BaseWorkflowStore):
    """Store backed by workflow_executions + stage_results."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create(self, execution: WorkflowExecution) -> None:
        db = self._session_factory()
        try:
            db_ops.create_execution(
                db,
                execution.id,
                execution.input.image_ref,
                execution.input.model_dump(mode="json"),
                execution.status.value,
            )
            for result in execution.stage_results.values():
                self._save(db, execution.id, result)
        finally:
            db.close()

    def get(self, execution_id: str) -> Optional[WorkflowExecution]:
        db = self._session_factory()
        try:
            record = db_ops.get_execution(db, execution_id)
            if record is None:
                return None
            return self._to_model(record, db_ops.get_stage_results(db, execution_id))
        finally:
            db.close()

    @staticmethod
    def _save(db, execution_id: str, result: StageResult) -> None:
        db_ops.save_stage_result(
            db,
            execution_id,
            result.stage.value,
            result.status.value,
            result.output,
            result.error,
            result.attempts,
            result.completed_at,
        )

    def save_stage(self, execution_id: str, result: StageResult) -> None:
        db = self._session_factory()
        try:
            self._save(db, execution_id, result)
        finally:
            db.close()

    def set_status(self, execution_id: str, status: WorkflowStatus) -> None:
        db = self._session_factory()
        try:
            db_ops.update_execution_status(db, execution_id, status.value)
        finally:
            db.close()

    def list_recent(self, status: Optional[WorkflowStatus] = None, limit: int = 50) -> List[WorkflowExecution]:
        db = self._session_factory()
        try:
            records = db_ops.list_executions(db, status.value if status else None, limit)
            return [self._to_model(r, db_ops.get_stage_results(db, r.id)) for r in records]
        finally:
            db.close()

    @staticmethod
    def _to_model(record: WorkflowExecutionRecord, stage_rows) -> WorkflowExecution:
        stage_results = {}
        for row in stage_rows:
            stage = Stage(row.stage)
            stage_results[stage] = StageResult(
                stage=stage,
                status=StageStatus(row.status),
                output=row.output,
                error=row.error,
                attempts=row.attempts,
                completed_at=_as_utc(row.completed_at),
            )
        return WorkflowExecution(
            id=record.id,
            input=IdentifyRequest.model_validate(record.input_json),
            stage_results=stage_results,
            status=WorkflowStatus(record.status),
            created_at=_as_utc(record.created_at),
            updated_at=_as_utc(record.updated_at),
        )

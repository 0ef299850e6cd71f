"""
card_valuation/database/db.py: Database operations
Helper functions for the price cache and workflow execution tables
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from card_valuation.database.schema import (
    CacheEntryRecord, StageResultRecord, WorkflowExecutionRecord
)


@contextmanager
def transaction(db: Session):
    """
    Context manager for database transactions
    Automatically commits on success, rolls back on exception

    Usage:
        with transaction(db):
            db.add(some_object)
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Cache entries
# ---------------------------------------------------------------------------

def get_live_cache_entry(db: Session, key: str, now: datetime) -> Optional[CacheEntryRecord]:
    """Get a cache entry that has not expired yet"""
    entry = db.query(CacheEntryRecord).filter(CacheEntryRecord.key == key).first()
    if entry is None or _as_utc(entry.expires_at) <= now:
        return None
    return entry


def upsert_cache_entry(db: Session, key: str, payload: Any, created_at: datetime, expires_at: datetime) -> None:
    """Insert or overwrite a cache entry (last writer wins)"""
    with transaction(db):
        entry = db.get(CacheEntryRecord, key)
        if entry is None:
            db.add(CacheEntryRecord(key=key, payload=payload, created_at=created_at, expires_at=expires_at))
        else:
            entry.payload = payload
            entry.created_at = created_at
            entry.expires_at = expires_at


def delete_expired_cache_entries(db: Session, now: datetime) -> int:
    """Delete expired entries, returns number removed"""
    with transaction(db):
        return db.query(CacheEntryRecord).filter(CacheEntryRecord.expires_at <= now).delete()


# ---------------------------------------------------------------------------
# Workflow executions
# ---------------------------------------------------------------------------

def create_execution(db: Session, execution_id: str, image_ref: str, input_json: Dict[str, Any], status: str) -> WorkflowExecutionRecord:
    """Create a new execution record"""
    record = WorkflowExecutionRecord(
        id=execution_id, image_ref=image_ref, input_json=input_json, status=status
    )
    with transaction(db):
        db.add(record)
    return record


def get_execution(db: Session, execution_id: str) -> Optional[WorkflowExecutionRecord]:
    """Get execution by ID"""
    return db.query(WorkflowExecutionRecord).filter(WorkflowExecutionRecord.id == execution_id).first()


def get_stage_results(db: Session, execution_id: str) -> List[StageResultRecord]:
    """Get all stage rows for an execution, oldest first"""
    return db.query(StageResultRecord).filter(
        StageResultRecord.execution_id == execution_id
    ).order_by(StageResultRecord.completed_at).all()


def save_stage_result(
    db: Session,
    execution_id: str,
    stage: str,
    status: str,
    output: Optional[Dict[str, Any]],
    error: Optional[str],
    attempts: int,
    completed_at: datetime
) -> None:
    """
    Insert or replace the row for one stage

    Only the stage row and the parent's updated_at are touched, so a crash
    between stages leaves every earlier stage intact.
    """
    with transaction(db):
        row = db.query(StageResultRecord).filter(
            and_(StageResultRecord.execution_id == execution_id, StageResultRecord.stage == stage)
        ).first()
        if row is None:
            row = StageResultRecord(execution_id=execution_id, stage=stage)
            db.add(row)
        row.status = status
        row.output = output
        row.error = error
        row.attempts = attempts
        row.completed_at = completed_at

        execution = db.get(WorkflowExecutionRecord, execution_id)
        if execution is not None:
            execution.updated_at = completed_at


def update_execution_status(db: Session, execution_id: str, status: str) -> None:
    """Set execution status"""
    with transaction(db):
        execution = db.get(WorkflowExecutionRecord, execution_id)
        if execution is not None:
            execution.status = status
            execution.updated_at = datetime.now(timezone.utc)


def list_executions(db: Session, status: Optional[str] = None, limit: int = 50) -> List[WorkflowExecutionRecord]:
    """Most recent executions, optionally filtered by status"""
    query = db.query(WorkflowExecutionRecord)
    if status:
        query = query.filter(WorkflowExecutionRecord.status == status)
    return query.order_by(WorkflowExecutionRecord.created_at.desc()).limit(limit).all()

"""
card_valuation/database/schema.py: Database schema definitions using SQLAlchemy
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from card_valuation.config import DATABASE_PATH

Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


class CacheEntryRecord(Base):
    """Cross-request price cache entry."""
    __tablename__ = "cache_entries"

    key = Column(String(512), primary_key=True)  # '<source>:<name>|<set>'
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<CacheEntryRecord(key='{self.key}', expires_at={self.expires_at})>"


class WorkflowExecutionRecord(Base):
    """One identification request."""
    __tablename__ = "workflow_executions"

    id = Column(String(64), primary_key=True)
    image_ref = Column(String(1024), nullable=False)
    input_json = Column(JSON, nullable=False)
    status = Column(String(16), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    stage_results = relationship(
        "StageResultRecord", back_populates="execution", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<WorkflowExecutionRecord(id={self.id}, status='{self.status}')>"


class StageResultRecord(Base):
    """Persisted outcome of one stage (one row per execution+stage)."""
    __tablename__ = "stage_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    execution_id = Column(
        String(64), ForeignKey("workflow_executions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    stage = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False)
    output = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    attempts = Column(Integer, default=1, nullable=False)
    completed_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    execution = relationship("WorkflowExecutionRecord", back_populates="stage_results")

    def __repr__(self):
        return f"<StageResultRecord(execution_id={self.execution_id}, stage='{self.stage}', status='{self.status}')>"


def create_session_factory(database_url: str = None) -> sessionmaker:
    """
    Build an engine + session factory and create missing tables.

    Args:
        database_url: SQLAlchemy URL; defaults to the configured SQLite file.
                      'sqlite://' gives a shared in-memory database (tests).
    """
    if database_url is None:
        database_url = f"sqlite:///{DATABASE_PATH}"

    kwargs = {"echo": False}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(database_url, **kwargs)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(database_url: str = None) -> sessionmaker:
    """Initialize database - create all tables."""
    return create_session_factory(database_url)

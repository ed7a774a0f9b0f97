"""Sync run ledger model."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, Index, Text, text
from sqlmodel import Field, SQLModel


class RunStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"


IN_FLIGHT_STATUSES = (RunStatus.PENDING, RunStatus.RUNNING)
TERMINAL_STATUSES = (RunStatus.SUCCESS, RunStatus.WARNING, RunStatus.ERROR)

_IN_FLIGHT_WHERE = text("status IN ('PENDING', 'RUNNING')")


class SyncRun(SQLModel, table=True):
    """Records each sync attempt for audit and polling."""

    # At most one in-flight run per connection, enforced by the database.
    __table_args__ = (
        Index(
            "uq_syncrun_in_flight",
            "connection_id",
            unique=True,
            sqlite_where=_IN_FLIGHT_WHERE,
            postgresql_where=_IN_FLIGHT_WHERE,
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    connection_id: int = Field(foreign_key="connection.id", ondelete="CASCADE", index=True)
    project_id: str = Field(index=True)
    triggered_by: Optional[str] = None
    status: RunStatus = Field(default=RunStatus.PENDING)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    stats: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

"""Connection model: one configured link between a project and a platform."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class PlatformKind(str, Enum):
    SUPABASE = "supabase"  # database backend
    VERCEL = "vercel"      # hosting / deployment platform
    OPENAPI = "openapi"    # generic HTTP API described by a spec document


class ConnectionStatus(str, Enum):
    CONNECTED = "CONNECTED"
    WARNING = "WARNING"
    ERROR = "ERROR"


class Connection(SQLModel, table=True):
    """
    A project's link to one external platform.

    `config` is public and readable by any member. `secret_ciphertext` is
    the encrypted credential JSON and is never serialized to clients.
    `last_synced_at` / `last_sync_error` mirror the latest settled run.
    """

    __table_args__ = (
        UniqueConstraint("project_id", "platform_kind", name="uq_connection_project_kind"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: str = Field(index=True)
    platform_kind: PlatformKind
    display_name: str
    status: ConnectionStatus = Field(default=ConnectionStatus.CONNECTED)
    config: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    secret_ciphertext: str = Field(sa_column=Column(Text, nullable=False))
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    last_synced_at: Optional[datetime] = None
    last_sync_error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

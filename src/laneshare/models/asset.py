"""Mirrored external objects: the current snapshot for each connection."""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from laneshare.models.connection import PlatformKind


class Asset(SQLModel, table=True):
    """
    One normalized object from an external platform (a table, a deployment,
    an endpoint, ...). Rows are only ever bulk-replaced, never edited.
    """

    __table_args__ = (
        UniqueConstraint("connection_id", "asset_type", "asset_key", name="uq_asset_key"),
        Index("ix_asset_connection_type", "connection_id", "asset_type"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    connection_id: int = Field(foreign_key="connection.id", ondelete="CASCADE")
    project_id: str = Field(index=True)
    platform_kind: PlatformKind
    asset_type: str
    asset_key: str
    name: str
    data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    updated_at: datetime = Field(default_factory=datetime.utcnow)

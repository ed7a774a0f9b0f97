"""
Connection store operations: validate, connect, disconnect, list.

All of these are synchronous from the caller's point of view and either
succeed completely or raise with nothing persisted.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from laneshare.config import get_settings
from laneshare.connectors.base import ConnectorAdapter, ValidationResult
from laneshare.connectors.registry import AdapterRegistry
from laneshare.crypto import SecretCodec
from laneshare.errors import ConflictError, NotFoundError, ValidationFailure
from laneshare.models.asset import Asset
from laneshare.models.connection import Connection, ConnectionStatus, PlatformKind
from laneshare.models.sync import RunStatus, SyncRun
from laneshare.sync import assets as asset_store
from laneshare.sync import ledger

logger = logging.getLogger(__name__)

RECENT_RUNS_PER_CONNECTION = 5


def _format_errors(exc: ValidationError) -> str:
    # Built from loc/msg only: pydantic's own str() echoes input values,
    # which may be secrets.
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "payload"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def parse_payload(
    adapter: ConnectorAdapter, config: Optional[Dict[str, Any]], secret: Optional[Dict[str, Any]]
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Check config and secret against the adapter's payload models.

    Raises:
        ValidationFailure: with a message that never includes secret values.
    """
    try:
        parsed_config = adapter.config_model.model_validate(config or {})
    except ValidationError as exc:
        raise ValidationFailure(f"Invalid config: {_format_errors(exc)}") from None
    try:
        parsed_secret = adapter.secret_model.model_validate(secret or {})
    except ValidationError as exc:
        raise ValidationFailure(f"Invalid credentials: {_format_errors(exc)}") from None
    return parsed_config.model_dump(exclude_none=True), parsed_secret.model_dump(exclude_none=True)


def public_view(connection: Connection) -> Dict[str, Any]:
    """Connection fields safe to return to any project member (no secret)."""
    return {
        "id": connection.id,
        "project_id": connection.project_id,
        "platform_kind": PlatformKind(connection.platform_kind).value,
        "display_name": connection.display_name,
        "status": ConnectionStatus(connection.status).value,
        "config": connection.config,
        "created_by": connection.created_by,
        "created_at": connection.created_at,
        "updated_at": connection.updated_at,
        "last_synced_at": connection.last_synced_at,
        "last_sync_error": connection.last_sync_error,
    }


def run_view(run: SyncRun) -> Dict[str, Any]:
    return {
        "id": run.id,
        "connection_id": run.connection_id,
        "triggered_by": run.triggered_by,
        "status": RunStatus(run.status).value,
        "created_at": run.created_at,
        "started_at": run.started_at,
        "finished_at": run.finished_at,
        "stats": run.stats,
        "error": run.error,
    }


class ConnectionService:
    """Validate, persist, list and remove platform connections."""

    def __init__(
        self,
        engine,
        registry: AdapterRegistry,
        codec: SecretCodec,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            engine: SQLAlchemy engine.
            registry: Adapter lookup by platform kind.
            codec: Secret codec used to encrypt credentials before insert.
            timeout: Bound on each validation probe, in seconds. Defaults
                to the adapter_timeout_seconds setting.
        """
        self.engine = engine
        self.registry = registry
        self.codec = codec
        self.timeout = timeout if timeout is not None else get_settings().adapter_timeout_seconds

    # ─── Validate / connect ───────────────────────────────────────────────────

    async def validate(
        self,
        kind: PlatformKind,
        config: Optional[Dict[str, Any]],
        secret: Optional[Dict[str, Any]],
    ) -> ValidationResult:
        """Read-only probe. Payload problems come back as valid=False, not exceptions."""
        adapter = self.registry.get(kind)
        try:
            parsed_config, parsed_secret = parse_payload(adapter, config, secret)
        except ValidationFailure as exc:
            return ValidationResult(valid=False, error=str(exc))
        return await self._probe(adapter, parsed_config, parsed_secret)

    async def connect(
        self,
        project_id: str,
        kind: PlatformKind,
        config: Optional[Dict[str, Any]],
        secret: Optional[Dict[str, Any]],
        display_name: str,
        actor_id: Optional[str] = None,
    ) -> Connection:
        """
        Validate, then persist a new connection with its secret encrypted.

        Raises:
            ConflictError: the project already has a connection of this kind.
            ValidationFailure: bad payload or the platform rejected the probe.
        """
        kind = PlatformKind(kind)
        adapter = self.registry.get(kind)
        if not display_name or not display_name.strip():
            raise ValidationFailure("Display name is required")
        parsed_config, parsed_secret = parse_payload(adapter, config, secret)

        if self.get_by_kind(project_id, kind) is not None:
            raise ConflictError(
                f"A {kind.value} connection already exists for this project. Disconnect it first."
            )

        result = await self._probe(adapter, parsed_config, parsed_secret)
        if not result.valid:
            raise ValidationFailure(result.error or "Connection validation failed")

        connection = Connection(
            project_id=project_id,
            platform_kind=kind,
            display_name=display_name.strip()[:100],
            status=ConnectionStatus.CONNECTED,
            config=adapter.prepare_config(parsed_config, result.metadata),
            secret_ciphertext=self.codec.encrypt_json(parsed_secret),
            created_by=actor_id,
        )
        with Session(self.engine) as s:
            s.add(connection)
            try:
                s.commit()
            except IntegrityError:
                s.rollback()
                raise ConflictError(
                    f"A {kind.value} connection already exists for this project. Disconnect it first."
                ) from None
            s.refresh(connection)

        logger.info(
            "Connected %s for project %s (connection %s)", kind.value, project_id, connection.id
        )
        return connection

    async def _probe(
        self, adapter: ConnectorAdapter, config: Dict[str, Any], secret: Dict[str, Any]
    ) -> ValidationResult:
        try:
            return await asyncio.wait_for(
                adapter.validate_connection(config, secret), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            return ValidationResult(
                valid=False,
                error=f"Validation timed out after {self.timeout:g}s. The platform may be unreachable.",
            )
        except Exception as exc:
            logger.exception("Unexpected error validating %s", adapter.platform_kind.value)
            return ValidationResult(valid=False, error=f"Connection failed: {exc}")

    # ─── Disconnect ───────────────────────────────────────────────────────────

    def disconnect(self, connection_id: int) -> None:
        """
        Delete a connection together with its assets and runs, atomically.

        Raises:
            NotFoundError: if the connection does not exist.
        """
        with Session(self.engine) as s:
            connection = s.get(Connection, connection_id)
            if connection is None:
                raise NotFoundError(f"Connection {connection_id} not found")
            s.exec(delete(Asset).where(Asset.connection_id == connection_id))
            s.exec(delete(SyncRun).where(SyncRun.connection_id == connection_id))
            s.delete(connection)
            s.commit()
        logger.info("Disconnected connection %s", connection_id)

    def disconnect_kind(self, project_id: str, kind: PlatformKind) -> None:
        connection = self.get_by_kind(project_id, kind)
        if connection is None:
            raise NotFoundError(
                f"No {PlatformKind(kind).value} connection found for this project"
            )
        self.disconnect(connection.id)

    # ─── Reads ────────────────────────────────────────────────────────────────

    def get_connection(self, connection_id: int) -> Optional[Connection]:
        with Session(self.engine) as s:
            return s.get(Connection, connection_id)

    def get_by_kind(self, project_id: str, kind: PlatformKind) -> Optional[Connection]:
        with Session(self.engine) as s:
            return s.exec(
                select(Connection).where(
                    Connection.project_id == project_id,
                    Connection.platform_kind == PlatformKind(kind),
                )
            ).first()

    def list_connections(self, project_id: str) -> List[Dict[str, Any]]:
        """
        Public view of each project connection, with its most recent runs
        (newest first) and asset counts by type.
        """
        with Session(self.engine) as s:
            connections = s.exec(
                select(Connection)
                .where(Connection.project_id == project_id)
                .order_by(Connection.platform_kind)
            ).all()
            counts = asset_store.count_assets(s, [c.id for c in connections])
            summaries = []
            for connection in connections:
                summary = public_view(connection)
                summary["recent_runs"] = [
                    run_view(r)
                    for r in ledger.recent_runs(s, connection.id, RECENT_RUNS_PER_CONNECTION)
                ]
                summary["asset_counts"] = counts[connection.id]
                summaries.append(summary)
        return summaries

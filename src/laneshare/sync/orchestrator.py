"""
SyncOrchestrator: runs one adapter sync per run and records the outcome.

Flow for a single sync:
  1. start_sync: insert SyncRun (status=PENDING) and return it to the caller
  2. run_sync (background): claim PENDING -> RUNNING
  3. Decrypt the connection secret and call adapter.sync under a timeout
  4. In one transaction: settle the run, replace the connection's assets,
     update the connection status
  5. On any failure: settle the run as ERROR, mark the connection ERROR,
     leave the assets alone

run_sync never raises. Completion is only observable through the SyncRun
and Connection rows.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlmodel import Session

from laneshare.config import get_settings
from laneshare.connectors.base import SyncResult, dedupe_assets
from laneshare.connectors.registry import AdapterRegistry
from laneshare.crypto import SecretCodec
from laneshare.errors import DecryptionError, LaneShareError, NotFoundError
from laneshare.models.connection import Connection, ConnectionStatus, PlatformKind
from laneshare.models.sync import IN_FLIGHT_STATUSES, RunStatus, SyncRun
from laneshare.sync import assets as asset_store
from laneshare.sync import ledger

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Creates sync runs and executes them against the platform adapters."""

    def __init__(
        self,
        engine,
        registry: AdapterRegistry,
        codec: SecretCodec,
        timeout: Optional[float] = None,
        batch_size: Optional[int] = None,
    ):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
            registry: Adapter lookup by platform kind.
            codec: Secret codec; the only place stored secrets are decrypted.
            timeout: Bound on each adapter.sync call, in seconds.
            batch_size: Asset insert batch size.
        """
        settings = get_settings()
        self.engine = engine
        self.registry = registry
        self.codec = codec
        self.timeout = timeout if timeout is not None else settings.adapter_timeout_seconds
        self.batch_size = batch_size or settings.asset_batch_size

    def start_sync(self, connection_id: int, actor_id: Optional[str] = None) -> SyncRun:
        """
        Record a PENDING run for the connection.

        Returns:
            The new SyncRun. The caller schedules run_sync(run.id).

        Raises:
            NotFoundError: the connection does not exist.
            ConflictError: a run is already PENDING or RUNNING; its id is
                on the exception.
        """
        with Session(self.engine) as s:
            connection = s.get(Connection, connection_id)
            if connection is None:
                raise NotFoundError(f"Connection {connection_id} not found")
            run = ledger.create_pending(s, connection, actor_id)
        logger.info("Sync run %s queued for connection %s", run.id, connection_id)
        return run

    async def run_sync(self, run_id: int) -> None:
        """
        Execute a PENDING run to completion. Safe to schedule as a detached task.
        """
        try:
            await self._execute(run_id)
        except Exception as exc:
            logger.exception("Sync run %s failed unexpectedly", run_id)
            self._fail(run_id, f"Unexpected error during sync: {exc}")

    def expire_stale_runs(self, max_age: Optional[timedelta] = None) -> int:
        """
        Demote runs stuck in PENDING/RUNNING for longer than `max_age` to ERROR.

        Such runs belong to a process that died mid-sync. Their connections
        are marked ERROR as well.

        Returns:
            Number of runs expired.
        """
        if max_age is None:
            max_age = timedelta(minutes=get_settings().stale_run_minutes)
        cutoff = datetime.utcnow() - max_age
        minutes = int(max_age.total_seconds() // 60)
        message = f"Sync did not finish within {minutes} minutes and was abandoned"

        with Session(self.engine) as s:
            expired = [(run.id, run.connection_id) for run in ledger.expire_stale(s, cutoff, message)]
            for _, connection_id in expired:
                connection = s.get(Connection, connection_id)
                if connection is not None:
                    self._mark_connection(connection, ConnectionStatus.ERROR, message)
                    s.add(connection)
            s.commit()

        for run_id, connection_id in expired:
            logger.warning("Expired stale sync run %s for connection %s", run_id, connection_id)
        return len(expired)

    # ─── Internal helpers ─────────────────────────────────────────────────────

    async def _execute(self, run_id: int) -> None:
        with Session(self.engine) as s:
            if not ledger.claim(s, run_id):
                logger.info("Sync run %s is no longer pending; skipping", run_id)
                return
            run = ledger.get_run(s, run_id)
            connection = s.get(Connection, run.connection_id)
            if connection is None:
                return
            connection_id = connection.id
            kind = PlatformKind(connection.platform_kind)
            config = dict(connection.config or {})
            ciphertext = connection.secret_ciphertext

        logger.info("Sync run %s started (%s connection %s)", run_id, kind.value, connection_id)

        try:
            adapter = self.registry.get(kind)
        except NotFoundError as exc:
            self._fail(run_id, str(exc))
            return

        secret: Optional[Dict[str, Any]] = None
        try:
            secret = self.codec.decrypt_json(ciphertext)
            result = await asyncio.wait_for(adapter.sync(config, secret), timeout=self.timeout)
        except DecryptionError as exc:
            self._fail(run_id, str(exc))
            return
        except asyncio.TimeoutError:
            self._fail(
                run_id,
                f"Sync timed out after {self.timeout:g}s. The platform may be unreachable.",
            )
            return
        except LaneShareError as exc:
            self._fail(run_id, str(exc))
            return
        finally:
            del secret

        if not result.success:
            self._fail(run_id, result.error or "Sync failed", stats=result.stats)
            return
        self._complete(run_id, result)

    def _complete(self, run_id: int, result: SyncResult) -> None:
        """Settle the run and replace the asset set in one transaction."""
        assets, dropped = dedupe_assets(result.assets)
        warnings = list(result.warnings)
        if dropped:
            warnings.append(f"Dropped {dropped} duplicate assets with repeated keys")
        status = RunStatus.WARNING if warnings else RunStatus.SUCCESS

        stats = dict(result.stats)
        stats["assets"] = len(assets)
        stats["warnings"] = warnings

        with Session(self.engine) as s:
            if not ledger.settle(s, run_id, status, stats=stats):
                s.rollback()
                logger.warning("Sync run %s was settled elsewhere; discarding result", run_id)
                return
            run = ledger.get_run(s, run_id)
            connection = s.get(Connection, run.connection_id) if run else None
            if connection is None:
                s.rollback()
                return

            asset_store.replace_assets(s, connection, assets, batch_size=self.batch_size)
            if warnings:
                self._mark_connection(connection, ConnectionStatus.WARNING, "\n".join(warnings))
            else:
                self._mark_connection(connection, ConnectionStatus.CONNECTED, None)
            connection.last_synced_at = datetime.utcnow()
            s.add(connection)
            s.commit()

        logger.info(
            "Sync run %s finished %s with %d assets (%d warnings)",
            run_id, status.value, len(assets), len(warnings),
        )

    def _fail(
        self, run_id: int, message: str, stats: Optional[Dict[str, Any]] = None
    ) -> None:
        """Settle an in-flight run as ERROR and mark its connection. Assets are untouched."""
        with Session(self.engine) as s:
            if not ledger.settle(
                s,
                run_id,
                RunStatus.ERROR,
                stats=stats,
                error=message,
                from_statuses=IN_FLIGHT_STATUSES,
            ):
                s.rollback()
                return
            run = ledger.get_run(s, run_id)
            connection = s.get(Connection, run.connection_id) if run else None
            if connection is not None:
                self._mark_connection(connection, ConnectionStatus.ERROR, message)
                s.add(connection)
            s.commit()
        logger.error("Sync run %s failed: %s", run_id, message)

    @staticmethod
    def _mark_connection(
        connection: Connection, status: ConnectionStatus, error: Optional[str]
    ) -> None:
        connection.status = status
        connection.last_sync_error = error
        connection.updated_at = datetime.utcnow()

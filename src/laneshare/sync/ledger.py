"""
Run ledger: the per-connection history of sync runs.

Every status write here is a conditional UPDATE keyed on the current status,
so a run only moves forward (PENDING -> RUNNING -> terminal) and a terminal
row is never overwritten. The at-most-one-in-flight rule is backed by the
partial unique index on SyncRun; the pre-check only produces a nicer error.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from laneshare.errors import ConflictError
from laneshare.models.connection import Connection
from laneshare.models.sync import IN_FLIGHT_STATUSES, TERMINAL_STATUSES, RunStatus, SyncRun


def in_flight_run(session: Session, connection_id: int) -> Optional[SyncRun]:
    """The PENDING or RUNNING run for a connection, if any."""
    return session.exec(
        select(SyncRun).where(
            SyncRun.connection_id == connection_id,
            col(SyncRun.status).in_(IN_FLIGHT_STATUSES),
        )
    ).first()


def create_pending(
    session: Session, connection: Connection, actor_id: Optional[str]
) -> SyncRun:
    """
    Insert a PENDING run and commit.

    Raises:
        ConflictError: a run is already in flight; `run_id` names it.
    """
    existing = in_flight_run(session, connection.id)
    if existing is not None:
        raise ConflictError(
            f"A sync is already in progress for this connection (run {existing.id})",
            run_id=existing.id,
        )

    run = SyncRun(
        connection_id=connection.id,
        project_id=connection.project_id,
        triggered_by=actor_id,
        status=RunStatus.PENDING,
    )
    session.add(run)
    try:
        session.commit()
    except IntegrityError:
        # Lost the race to a concurrent request; the unique index rejected us.
        session.rollback()
        existing = in_flight_run(session, connection.id)
        raise ConflictError(
            "A sync is already in progress for this connection",
            run_id=existing.id if existing else None,
        ) from None
    session.refresh(run)
    return run


def claim(session: Session, run_id: int) -> bool:
    """Move a run PENDING -> RUNNING. Returns False if someone else moved it first."""
    result = session.exec(
        update(SyncRun)
        .where(SyncRun.id == run_id, SyncRun.status == RunStatus.PENDING)
        .values(status=RunStatus.RUNNING, started_at=datetime.utcnow())
    )
    session.commit()
    return result.rowcount == 1


def settle(
    session: Session,
    run_id: int,
    status: RunStatus,
    *,
    stats: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
    from_statuses: Sequence[RunStatus] = (RunStatus.RUNNING,),
) -> bool:
    """
    Write a terminal status without committing.

    Returns:
        True if the row was still in one of `from_statuses` and is now
        terminal; False if it was already settled (or deleted), in which
        case the caller must roll back whatever else it staged.
    """
    if status not in TERMINAL_STATUSES:
        raise ValueError(f"{status} is not a terminal run status")
    result = session.exec(
        update(SyncRun)
        .where(SyncRun.id == run_id, col(SyncRun.status).in_(from_statuses))
        .values(
            status=status,
            finished_at=datetime.utcnow(),
            stats=stats or {},
            error=error if status == RunStatus.ERROR else None,
        )
    )
    return result.rowcount == 1


def get_run(session: Session, run_id: int) -> Optional[SyncRun]:
    return session.get(SyncRun, run_id)


def recent_runs(session: Session, connection_id: int, limit: int = 5) -> List[SyncRun]:
    """Newest first."""
    return list(
        session.exec(
            select(SyncRun)
            .where(SyncRun.connection_id == connection_id)
            .order_by(col(SyncRun.created_at).desc(), col(SyncRun.id).desc())
            .limit(limit)
        ).all()
    )


def stale_runs(session: Session, cutoff: datetime) -> List[SyncRun]:
    """In-flight runs created before `cutoff`."""
    return list(
        session.exec(
            select(SyncRun).where(
                col(SyncRun.status).in_(IN_FLIGHT_STATUSES),
                SyncRun.created_at < cutoff,
            )
        ).all()
    )


def expire_stale(session: Session, cutoff: datetime, message: str) -> List[SyncRun]:
    """
    Settle in-flight runs created before `cutoff` as ERROR, without committing.

    Returns the runs that were actually expired; a run that settled on its
    own between the read and the write is skipped.
    """
    expired = []
    for run in stale_runs(session, cutoff):
        if settle(
            session,
            run.id,
            RunStatus.ERROR,
            stats=run.stats,
            error=message,
            from_statuses=IN_FLIGHT_STATUSES,
        ):
            expired.append(run)
    return expired

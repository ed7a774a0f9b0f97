"""
Asset store: the current mirrored snapshot per connection.

`replace_assets` is the only write path. It stages a delete of every asset
for the connection followed by batched inserts of the new set, inside the
caller's transaction; nothing is committed here.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, or_
from sqlmodel import Session, col, select

from laneshare.connectors.base import DiscoveredAsset
from laneshare.models.asset import Asset
from laneshare.models.connection import Connection, PlatformKind

MAX_PAGE_SIZE = 500


def replace_assets(
    session: Session,
    connection: Connection,
    assets: Sequence[DiscoveredAsset],
    batch_size: int = 100,
) -> int:
    """
    Stage the replacement of a connection's asset set.

    The delete is flushed before the first insert so old and new rows never
    coexist under the same key. Returns the number of rows staged.
    """
    session.exec(delete(Asset).where(Asset.connection_id == connection.id))
    session.flush()

    now = datetime.utcnow()
    for start in range(0, len(assets), batch_size):
        batch = assets[start:start + batch_size]
        session.add_all([
            Asset(
                connection_id=connection.id,
                project_id=connection.project_id,
                platform_kind=connection.platform_kind,
                asset_type=a.asset_type,
                asset_key=a.asset_key,
                name=a.name,
                data=a.data,
                updated_at=now,
            )
            for a in batch
        ])
        session.flush()
    return len(assets)


def count_assets(session: Session, connection_ids: Iterable[int]) -> Dict[int, Dict]:
    """
    Asset counts per connection: {connection_id: {"total": n, "by_type": {...}}}.
    Connections without assets are included with zero counts.
    """
    ids = list(connection_ids)
    counts: Dict[int, Dict] = {cid: {"total": 0, "by_type": {}} for cid in ids}
    if not ids:
        return counts
    rows = session.exec(
        select(Asset.connection_id, Asset.asset_type, func.count())
        .where(col(Asset.connection_id).in_(ids))
        .group_by(Asset.connection_id, Asset.asset_type)
    ).all()
    for connection_id, asset_type, n in rows:
        entry = counts[connection_id]
        entry["by_type"][asset_type] = n
        entry["total"] += n
    return counts


def list_assets(
    session: Session,
    project_id: str,
    *,
    platform_kind: Optional[PlatformKind] = None,
    asset_type: Optional[str] = None,
    query: Optional[str] = None,
    connection_id: Optional[int] = None,
    limit: int = 100,
    offset: int = 0,
) -> Tuple[List[Asset], int]:
    """
    Filtered, paginated asset listing for a project.

    `query` matches name or asset_key case-insensitively. `limit` is capped
    at MAX_PAGE_SIZE.

    Returns:
        (page of assets, total matching count)
    """
    conditions = [Asset.project_id == project_id]
    if platform_kind is not None:
        conditions.append(Asset.platform_kind == platform_kind)
    if asset_type:
        conditions.append(Asset.asset_type == asset_type)
    if connection_id is not None:
        conditions.append(Asset.connection_id == connection_id)
    if query:
        pattern = f"%{query.lower()}%"
        conditions.append(or_(
            func.lower(Asset.name).like(pattern),
            func.lower(Asset.asset_key).like(pattern),
        ))

    total = session.exec(select(func.count()).select_from(Asset).where(*conditions)).one()
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    rows = session.exec(
        select(Asset)
        .where(*conditions)
        .order_by(col(Asset.asset_type), col(Asset.asset_key))
        .offset(max(0, offset))
        .limit(limit)
    ).all()
    return list(rows), total


def _endpoint_matches(data: Dict, needle: str) -> bool:
    fields = (data.get("path"), data.get("operation_id"), data.get("summary"))
    return any(needle in str(value).lower() for value in fields if value)


def list_endpoints(
    session: Session,
    connection_id: int,
    *,
    query: Optional[str] = None,
    tag: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> Tuple[List[Asset], int, List[str]]:
    """
    Endpoint assets of one OpenAPI connection, ordered by path then method.

    `query` matches path, operation id or summary case-insensitively; `tag`
    keeps endpoints carrying that tag. Filtering happens on the decoded JSON
    payloads so it behaves the same on every database.

    Returns:
        (page of endpoint assets, total matching count, sorted tags across
        all of the connection's endpoints)
    """
    rows = session.exec(
        select(Asset).where(Asset.connection_id == connection_id, Asset.asset_type == "endpoint")
    ).all()

    all_tags = sorted({t for row in rows for t in (row.data.get("tags") or [])})

    matched = list(rows)
    if query:
        needle = query.lower()
        matched = [r for r in matched if _endpoint_matches(r.data, needle)]
    if tag:
        matched = [r for r in matched if tag in (r.data.get("tags") or [])]
    matched.sort(key=lambda r: (r.data.get("path") or "", r.data.get("method") or ""))

    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = max(0, offset)
    return matched[offset:offset + limit], len(matched), all_tags

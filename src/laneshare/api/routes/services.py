"""Connected-service routes: validate, connect, sync, disconnect, list, poll."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, Request
from pydantic import BaseModel, Field, ValidationError
from sqlmodel import Session

from laneshare.connectors.vercel import VercelSecret
from laneshare.errors import AdapterError, NotFoundError, ValidationFailure
from laneshare.models.connection import ConnectionStatus, PlatformKind
from laneshare.models.sync import RunStatus
from laneshare.sync import assets as asset_store
from laneshare.sync import ledger
from laneshare.sync.connections import ConnectionService, public_view, run_view
from laneshare.sync.orchestrator import SyncOrchestrator

router = APIRouter()


# ─── Request / response models ────────────────────────────────────────────────

class ValidateRequest(BaseModel):
    config: Dict[str, Any] = Field(default_factory=dict)
    secret: Dict[str, Any] = Field(default_factory=dict)


class ConnectRequest(ValidateRequest):
    display_name: str


class VercelDiscoverRequest(BaseModel):
    secret: Dict[str, Any] = Field(default_factory=dict)
    team_id: Optional[str] = None


class ValidateResponse(BaseModel):
    valid: bool
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RunResponse(BaseModel):
    id: int
    connection_id: int
    triggered_by: Optional[str]
    status: str
    created_at: datetime
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    stats: Dict[str, Any]
    error: Optional[str]


class AssetCounts(BaseModel):
    total: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)


class ConnectionResponse(BaseModel):
    id: int
    project_id: str
    platform_kind: str
    display_name: str
    status: str
    config: Dict[str, Any]
    created_by: Optional[str]
    created_at: datetime
    updated_at: datetime
    last_synced_at: Optional[datetime]
    last_sync_error: Optional[str]


class ConnectionSummaryResponse(ConnectionResponse):
    recent_runs: List[RunResponse] = Field(default_factory=list)
    asset_counts: AssetCounts = Field(default_factory=AssetCounts)


class SyncStartedResponse(BaseModel):
    sync_run_id: int
    status: str
    message: str


class AssetResponse(BaseModel):
    id: int
    connection_id: int
    platform_kind: str
    asset_type: str
    asset_key: str
    name: str
    data: Dict[str, Any]
    updated_at: datetime


class AssetPageResponse(BaseModel):
    items: List[AssetResponse]
    total: int
    limit: int
    offset: int


class EndpointResponse(BaseModel):
    id: int
    asset_key: str
    method: Optional[str] = None
    path: Optional[str] = None
    operation_id: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    deprecated: bool = False
    parameters: List[Dict[str, Any]] = Field(default_factory=list)
    request_body: Optional[Dict[str, Any]] = None
    responses: Dict[str, Any] = Field(default_factory=dict)


class EndpointSourceResponse(BaseModel):
    id: int
    display_name: str
    status: str
    spec_title: Optional[str] = None
    spec_version: Optional[str] = None
    last_synced_at: Optional[datetime] = None


class EndpointPageResponse(BaseModel):
    endpoints: List[EndpointResponse]
    total: int
    connection: Optional[EndpointSourceResponse] = None
    tags: List[str]
    limit: int
    offset: int
    has_more: bool


# ─── Dependencies ─────────────────────────────────────────────────────────────

def get_connection_service(request: Request) -> ConnectionService:
    return request.app.state.connection_service


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator


def get_session(request: Request):
    """Yield a DB session bound to the app's engine."""
    with Session(request.app.state.engine) as session:
        yield session


def _require_connection(service: ConnectionService, project_id: str, kind: PlatformKind):
    connection = service.get_by_kind(project_id, kind)
    if connection is None:
        raise NotFoundError(f"No {kind.value} connection found for this project")
    return connection


# ─── Routes ───────────────────────────────────────────────────────────────────

@router.get("", response_model=List[ConnectionSummaryResponse])
def list_connections(
    project_id: str,
    service: ConnectionService = Depends(get_connection_service),
):
    """All connections for the project with recent runs and asset counts."""
    return service.list_connections(project_id)


@router.get("/assets", response_model=AssetPageResponse)
def list_assets(
    project_id: str,
    platform_kind: Optional[PlatformKind] = None,
    asset_type: Optional[str] = None,
    q: Optional[str] = None,
    connection_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=asset_store.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
):
    """Filtered, paginated view of the mirrored assets."""
    rows, total = asset_store.list_assets(
        session,
        project_id,
        platform_kind=platform_kind,
        asset_type=asset_type,
        query=q,
        connection_id=connection_id,
        limit=limit,
        offset=offset,
    )
    items = [
        AssetResponse(
            id=a.id,
            connection_id=a.connection_id,
            platform_kind=PlatformKind(a.platform_kind).value,
            asset_type=a.asset_type,
            asset_key=a.asset_key,
            name=a.name,
            data=a.data,
            updated_at=a.updated_at,
        )
        for a in rows
    ]
    return AssetPageResponse(items=items, total=total, limit=limit, offset=offset)


@router.get("/openapi/endpoints", response_model=EndpointPageResponse)
def list_openapi_endpoints(
    project_id: str,
    q: Optional[str] = None,
    tag: Optional[str] = None,
    limit: int = Query(100, ge=1, le=asset_store.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    service: ConnectionService = Depends(get_connection_service),
    session: Session = Depends(get_session),
):
    """Browse the mirrored endpoints of the project's OpenAPI connection."""
    connection = service.get_by_kind(project_id, PlatformKind.OPENAPI)
    if connection is None:
        return EndpointPageResponse(
            endpoints=[], total=0, tags=[], limit=limit, offset=offset, has_more=False
        )

    rows, total, tags = asset_store.list_endpoints(
        session, connection.id, query=q, tag=tag, limit=limit, offset=offset
    )
    endpoints = [
        EndpointResponse(
            id=row.id,
            asset_key=row.asset_key,
            method=row.data.get("method"),
            path=row.data.get("path"),
            operation_id=row.data.get("operation_id"),
            summary=row.data.get("summary"),
            description=row.data.get("description"),
            tags=row.data.get("tags") or [],
            deprecated=bool(row.data.get("deprecated")),
            parameters=row.data.get("parameters") or [],
            request_body=row.data.get("request_body"),
            responses=row.data.get("responses") or {},
        )
        for row in rows
    ]
    config = connection.config or {}
    return EndpointPageResponse(
        endpoints=endpoints,
        total=total,
        connection=EndpointSourceResponse(
            id=connection.id,
            display_name=connection.display_name,
            status=ConnectionStatus(connection.status).value,
            spec_title=config.get("spec_title"),
            spec_version=config.get("spec_version"),
            last_synced_at=connection.last_synced_at,
        ),
        tags=tags,
        limit=limit,
        offset=offset,
        has_more=total > offset + limit,
    )


@router.get("/runs/{run_id}", response_model=RunResponse)
def get_run(project_id: str, run_id: int, session: Session = Depends(get_session)):
    """Poll a sync run."""
    run = ledger.get_run(session, run_id)
    if run is None or run.project_id != project_id:
        raise NotFoundError(f"Sync run {run_id} not found")
    return run_view(run)


@router.post("/vercel/discover")
async def discover_vercel(
    project_id: str,
    body: VercelDiscoverRequest,
    request: Request,
):
    """
    Teams and projects visible to a Vercel token, for picking what to
    connect. Nothing is persisted.
    """
    try:
        secret = VercelSecret.model_validate(body.secret)
    except ValidationError:
        raise ValidationFailure("A Vercel token is required") from None
    token = secret.token or secret.access_token
    adapter = request.app.state.registry.get(PlatformKind.VERCEL)
    teams = await adapter.fetch_teams(token)
    try:
        projects = await adapter.fetch_projects_for_selection(token, body.team_id)
    except AdapterError as exc:
        raise ValidationFailure(str(exc)) from None
    return {"teams": teams, "projects": projects}


@router.post("/{kind}/validate", response_model=ValidateResponse)
async def validate_connection(
    project_id: str,
    kind: PlatformKind,
    body: ValidateRequest,
    service: ConnectionService = Depends(get_connection_service),
):
    """Probe credentials without saving anything."""
    result = await service.validate(kind, body.config, body.secret)
    return ValidateResponse(valid=result.valid, error=result.error, metadata=result.metadata)


@router.post("/{kind}/connect", response_model=ConnectionResponse, status_code=201)
async def connect(
    project_id: str,
    kind: PlatformKind,
    body: ConnectRequest,
    x_actor_id: Optional[str] = Header(default=None),
    service: ConnectionService = Depends(get_connection_service),
):
    """Validate then persist a connection. The secret is stored encrypted."""
    connection = await service.connect(
        project_id, kind, body.config, body.secret, body.display_name, x_actor_id
    )
    return public_view(connection)


@router.post("/{kind}/sync", response_model=SyncStartedResponse, status_code=202)
def trigger_sync(
    project_id: str,
    kind: PlatformKind,
    background_tasks: BackgroundTasks,
    x_actor_id: Optional[str] = Header(default=None),
    service: ConnectionService = Depends(get_connection_service),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """
    Start a sync. Returns immediately with the PENDING run; poll
    /runs/{run_id} for the outcome.
    """
    connection = _require_connection(service, project_id, kind)
    run = orchestrator.start_sync(connection.id, x_actor_id)
    background_tasks.add_task(orchestrator.run_sync, run.id)
    return SyncStartedResponse(
        sync_run_id=run.id,
        status=RunStatus(run.status).value,
        message="Sync started",
    )


@router.post("/{kind}/disconnect")
def disconnect(
    project_id: str,
    kind: PlatformKind,
    service: ConnectionService = Depends(get_connection_service),
):
    """Remove the connection with all of its assets and run history."""
    service.disconnect_kind(project_id, kind)
    return {"message": f"Disconnected {kind.value}"}

"""
Vercel adapter: projects, recent deployments, domains and env var names.

Environment variable values are never requested or stored; only their keys,
targets and types are mirrored.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, model_validator

from laneshare.connectors.base import (
    ConnectorAdapter,
    DiscoveredAsset,
    SyncResult,
    ValidationResult,
)
from laneshare.connectors.http import DEFAULT_TIMEOUT_SECONDS, PlatformHttpClient
from laneshare.errors import AdapterAuthError, AdapterError, AdapterTransportError
from laneshare.models.connection import PlatformKind

VERCEL_API_BASE = "https://api.vercel.com"
MAX_DEPLOYMENTS_PER_PROJECT = 10


class VercelConfig(BaseModel):
    team_id: Optional[str] = None
    team_slug: Optional[str] = None
    project_ids: Optional[List[str]] = None


class VercelSecret(BaseModel):
    token: Optional[str] = None
    access_token: Optional[str] = None

    @model_validator(mode="after")
    def _require_token(self) -> "VercelSecret":
        if not (self.token or self.access_token):
            raise ValueError("Vercel token is required")
        return self


def _token(secret: Dict[str, Any]) -> Optional[str]:
    return secret.get("token") or secret.get("access_token")


def _ms_to_iso(value: Optional[int]) -> Optional[str]:
    if not value:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()


class VercelAdapter(ConnectorAdapter):
    """Hosting-platform adapter for Vercel accounts and teams."""

    platform_kind = PlatformKind.VERCEL
    config_model = VercelConfig
    secret_model = VercelSecret

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self._timeout = timeout
        self._transport = transport

    def _client(self, token: str) -> PlatformHttpClient:
        return PlatformHttpClient(
            "Vercel",
            base_url=VERCEL_API_BASE,
            headers={"Authorization": f"Bearer {token}"},
            timeout=self._timeout,
            transport=self._transport,
        )

    @staticmethod
    def _team_params(team_id: Optional[str], **extra: Any) -> Dict[str, Any]:
        params = {k: v for k, v in extra.items() if v is not None}
        if team_id:
            params["teamId"] = team_id
        return params

    async def validate_connection(
        self, config: Dict[str, Any], secret: Dict[str, Any]
    ) -> ValidationResult:
        token = _token(secret)
        if not token:
            return ValidationResult(valid=False, error="Vercel token is required")

        team_id = config.get("team_id")
        try:
            async with self._client(token) as http:
                user_data = await http.get_json("/v2/user", what="fetching the current user")
                if team_id:
                    try:
                        await http.get_json(f"/v2/teams/{team_id}", what="checking team access")
                    except AdapterTransportError:
                        raise
                    except AdapterError:
                        return ValidationResult(
                            valid=False,
                            error="Cannot access the specified team. Please check your permissions.",
                        )
        except AdapterAuthError:
            return ValidationResult(
                valid=False,
                error="Invalid Vercel token. Please check your credentials.",
            )
        except AdapterError as exc:
            self.logger.warning("Validation failed: %s", exc)
            return ValidationResult(valid=False, error=f"Connection failed: {exc}")

        user = user_data.get("user", {}) if isinstance(user_data, dict) else {}
        return ValidationResult(
            valid=True,
            metadata={
                "username": user.get("username"),
                "name": user.get("name"),
                "team_id": team_id,
                "validated_at": datetime.utcnow().isoformat(),
            },
        )

    async def sync(self, config: Dict[str, Any], secret: Dict[str, Any]) -> SyncResult:
        stats: Dict[str, Any] = {"projects": 0, "deployments": 0, "domains": 0, "env_vars": 0}
        assets: List[DiscoveredAsset] = []
        warnings: List[str] = []

        token = _token(secret)
        if not token:
            return SyncResult(success=False, stats=stats, error="Vercel token is required")

        team_id = config.get("team_id")
        try:
            async with self._client(token) as http:
                projects = await self._fetch_projects(http, team_id, config.get("project_ids"))
                stats["projects"] = len(projects)

                for project in projects:
                    assets.append(self._project_asset(project))
                    project_id = project["id"]
                    project_name = project.get("name", project_id)

                    deployments = await self._optional(
                        http,
                        "/v6/deployments",
                        self._team_params(team_id, projectId=project_id, limit=MAX_DEPLOYMENTS_PER_PROJECT),
                        "deployments",
                        f"deployments for project {project_name}",
                        warnings,
                    )
                    stats["deployments"] += len(deployments)
                    for deployment in deployments:
                        uid = deployment["uid"]
                        assets.append(DiscoveredAsset(
                            asset_type="deployment",
                            asset_key=f"deployment:{uid}",
                            name=f"{project_name}@{uid[:8]}",
                            data={
                                "id": uid,
                                "name": deployment.get("name"),
                                "url": deployment.get("url"),
                                "state": deployment.get("state") or deployment.get("readyState"),
                                "created_at": _ms_to_iso(deployment.get("created")),
                                "ready": _ms_to_iso(deployment.get("ready")),
                                "target": deployment.get("target"),
                            },
                        ))

                    domains = await self._optional(
                        http,
                        f"/v9/projects/{project_id}/domains",
                        self._team_params(team_id),
                        "domains",
                        f"domains for project {project_name}",
                        warnings,
                    )
                    stats["domains"] += len(domains)
                    for domain in domains:
                        assets.append(DiscoveredAsset(
                            asset_type="domain",
                            asset_key=f"domain:{domain['name']}",
                            name=domain["name"],
                            data={
                                "name": domain["name"],
                                "project_id": domain.get("projectId", project_id),
                                "verified": bool(domain.get("verified")),
                                "configured": bool(domain.get("configured", domain.get("verified"))),
                            },
                        ))

                    env_vars = await self._optional(
                        http,
                        f"/v9/projects/{project_id}/env",
                        self._team_params(team_id),
                        "envs",
                        f"environment variables for project {project_name}",
                        warnings,
                    )
                    stats["env_vars"] += len(env_vars)
                    for env_var in env_vars:
                        # Never store the value.
                        assets.append(DiscoveredAsset(
                            asset_type="env_var",
                            asset_key=f"env:{project_id}:{env_var['key']}",
                            name=env_var["key"],
                            data={
                                "key": env_var["key"],
                                "target": env_var.get("target") or [],
                                "type": env_var.get("type"),
                            },
                        ))
        except AdapterError as exc:
            self.logger.error("Sync failed: %s", exc)
            return SyncResult(success=False, assets=[], stats=stats, error=str(exc))

        self.logger.info("Sync completed: %s", self.redact({"stats": stats}))
        return SyncResult(success=True, assets=assets, stats=stats, warnings=warnings)

    # ─── Auxiliary lookups (used by the connect dialog) ───────────────────────

    async def fetch_teams(self, token: str) -> List[Dict[str, Any]]:
        """Teams visible to the token; empty list if they cannot be listed."""
        try:
            async with self._client(token) as http:
                data = await http.get_json("/v2/teams", what="listing teams")
        except AdapterError as exc:
            self.logger.warning("Could not list teams: %s", exc)
            return []
        return [
            {"id": t["id"], "slug": t.get("slug"), "name": t.get("name")}
            for t in data.get("teams", [])
        ]

    async def fetch_projects_for_selection(
        self, token: str, team_id: Optional[str] = None
    ) -> List[Dict[str, str]]:
        async with self._client(token) as http:
            projects = await self._fetch_projects(http, team_id, None)
        return [{"id": p["id"], "name": p.get("name", p["id"])} for p in projects]

    # ─── Internal helpers ─────────────────────────────────────────────────────

    async def _fetch_projects(
        self,
        http: PlatformHttpClient,
        team_id: Optional[str],
        project_ids: Optional[List[str]],
    ) -> List[Dict[str, Any]]:
        data = await http.get_json(
            "/v9/projects", params=self._team_params(team_id), what="listing projects"
        )
        projects = data.get("projects", []) if isinstance(data, dict) else []
        if project_ids:
            projects = [p for p in projects if p.get("id") in project_ids]
        return projects

    async def _optional(
        self,
        http: PlatformHttpClient,
        path: str,
        params: Dict[str, Any],
        list_key: str,
        label: str,
        warnings: List[str],
    ) -> List[Dict[str, Any]]:
        """Fetch a per-project sub-resource; a failure is recorded as a warning."""
        try:
            data = await http.get_json(path, params=params, what=f"listing {label}")
        except (AdapterAuthError, AdapterTransportError):
            raise
        except AdapterError as exc:
            self.logger.warning("Could not fetch %s: %s", label, exc)
            warnings.append(f"Could not fetch {label}: {exc}")
            return []
        return data.get(list_key, []) if isinstance(data, dict) else []

    @staticmethod
    def _project_asset(project: Dict[str, Any]) -> DiscoveredAsset:
        link = project.get("link") or {}
        return DiscoveredAsset(
            asset_type="vercel_project",
            asset_key=f"vercel:{project['id']}",
            name=project.get("name", project["id"]),
            data={
                "id": project["id"],
                "name": project.get("name"),
                "framework": project.get("framework"),
                "git_repo": (
                    {"repo": link.get("repo"), "type": link.get("type")} if link else None
                ),
            },
        )

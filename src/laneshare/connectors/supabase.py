"""
Supabase adapter: introspects an external Supabase project's schema.

Validation probes PostgREST with the service role key. Sync reads catalog
metadata through an `exec_sql(query text)` RPC that must be installed in the
target project (see the introspection setup SQL shipped with the web app),
plus storage buckets through the storage API.

Each catalog category is fetched independently. Losing one category is a
warning; an auth rejection or an unreachable project fails the sync.
"""
import re
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, Field, field_validator

from laneshare.connectors.base import (
    ConnectorAdapter,
    DiscoveredAsset,
    SyncResult,
    ValidationResult,
)
from laneshare.connectors.http import DEFAULT_TIMEOUT_SECONDS, PlatformHttpClient
from laneshare.errors import (
    AdapterAuthError,
    AdapterError,
    AdapterNotFoundError,
    AdapterTransportError,
)
from laneshare.models.connection import PlatformKind

# ── Introspection SQL ─────────────────────────────────────────────────────────

_SYSTEM_SCHEMAS = (
    "'pg_catalog', 'information_schema', 'pg_toast', 'extensions', 'graphql', "
    "'graphql_public', 'net', 'pgsodium', 'pgsodium_masks', 'realtime', 'storage', "
    "'supabase_functions', 'supabase_migrations', 'vault', '_realtime'"
)

TABLES_QUERY = f"""
  SELECT t.table_schema, t.table_name
  FROM information_schema.tables t
  WHERE t.table_schema NOT IN ({_SYSTEM_SCHEMAS})
    AND t.table_type = 'BASE TABLE'
  ORDER BY t.table_schema, t.table_name
"""

COLUMNS_QUERY = f"""
  SELECT c.table_schema, c.table_name, c.column_name, c.data_type, c.udt_name,
         c.is_nullable, c.column_default, c.ordinal_position
  FROM information_schema.columns c
  WHERE c.table_schema NOT IN ({_SYSTEM_SCHEMAS})
  ORDER BY c.table_schema, c.table_name, c.ordinal_position
"""

PRIMARY_KEYS_QUERY = """
  SELECT kcu.table_schema, kcu.table_name, kcu.column_name
  FROM information_schema.table_constraints tc
  JOIN information_schema.key_column_usage kcu
    ON tc.constraint_name = kcu.constraint_name
   AND tc.table_schema = kcu.table_schema
  WHERE tc.constraint_type = 'PRIMARY KEY'
    AND tc.table_schema NOT IN ('pg_catalog', 'information_schema', 'pg_toast', 'extensions')
  ORDER BY kcu.table_schema, kcu.table_name, kcu.ordinal_position
"""

FOREIGN_KEYS_QUERY = """
  SELECT tc.table_schema, tc.table_name, kcu.column_name,
         ccu.table_schema AS foreign_table_schema,
         ccu.table_name AS foreign_table_name,
         ccu.column_name AS foreign_column_name
  FROM information_schema.table_constraints tc
  JOIN information_schema.key_column_usage kcu
    ON tc.constraint_name = kcu.constraint_name
   AND tc.table_schema = kcu.table_schema
  JOIN information_schema.constraint_column_usage ccu
    ON ccu.constraint_name = tc.constraint_name
   AND ccu.table_schema = tc.table_schema
  WHERE tc.constraint_type = 'FOREIGN KEY'
    AND tc.table_schema NOT IN ('pg_catalog', 'information_schema', 'pg_toast', 'extensions')
"""

POLICIES_QUERY = f"""
  SELECT pol.polname AS policy_name, nsp.nspname AS schema_name, cls.relname AS table_name,
         CASE pol.polcmd
           WHEN 'r' THEN 'SELECT' WHEN 'a' THEN 'INSERT' WHEN 'w' THEN 'UPDATE'
           WHEN 'd' THEN 'DELETE' WHEN '*' THEN 'ALL'
         END AS command,
         pg_get_expr(pol.polqual, pol.polrelid, true) AS definition,
         pg_get_expr(pol.polwithcheck, pol.polrelid, true) AS with_check,
         ARRAY(SELECT rolname FROM pg_roles WHERE oid = ANY(pol.polroles)) AS roles
  FROM pg_policy pol
  JOIN pg_class cls ON pol.polrelid = cls.oid
  JOIN pg_namespace nsp ON cls.relnamespace = nsp.oid
  WHERE nsp.nspname NOT IN ({_SYSTEM_SCHEMAS})
  ORDER BY nsp.nspname, cls.relname, pol.polname
"""

FUNCTIONS_QUERY = f"""
  SELECT p.proname AS function_name, n.nspname AS schema_name, l.lanname AS language,
         pg_get_function_result(p.oid) AS return_type,
         pg_get_function_identity_arguments(p.oid) AS arguments,
         (p.prorettype = 'pg_catalog.trigger'::pg_catalog.regtype) AS is_trigger
  FROM pg_proc p
  JOIN pg_namespace n ON p.pronamespace = n.oid
  JOIN pg_language l ON p.prolang = l.oid
  WHERE n.nspname NOT IN ({_SYSTEM_SCHEMAS})
    AND p.prokind = 'f'
  ORDER BY n.nspname, p.proname
  LIMIT 500
"""

TRIGGERS_QUERY = f"""
  SELECT t.tgname AS trigger_name, n.nspname AS schema_name, c.relname AS table_name,
         p.proname AS function_name,
         CASE t.tgtype & 66 WHEN 2 THEN 'BEFORE' WHEN 64 THEN 'INSTEAD OF' ELSE 'AFTER' END AS timing,
         CASE t.tgtype & 28
           WHEN 4 THEN 'INSERT' WHEN 8 THEN 'DELETE' WHEN 16 THEN 'UPDATE'
           WHEN 20 THEN 'INSERT OR UPDATE' WHEN 12 THEN 'INSERT OR DELETE'
           WHEN 24 THEN 'UPDATE OR DELETE' WHEN 28 THEN 'INSERT OR UPDATE OR DELETE'
         END AS event
  FROM pg_trigger t
  JOIN pg_class c ON t.tgrelid = c.oid
  JOIN pg_namespace n ON c.relnamespace = n.oid
  JOIN pg_proc p ON t.tgfoid = p.oid
  WHERE NOT t.tgisinternal
    AND n.nspname NOT IN ({_SYSTEM_SCHEMAS})
  ORDER BY n.nspname, c.relname, t.tgname
"""

# PostgREST / Postgres codes meaning "that table does not exist": the key works.
_MISSING_TABLE_CODES = {"PGRST116", "PGRST205", "42P01"}

_PROJECT_REF_RE = re.compile(r"^([a-z0-9]+)\.supabase\.co$", re.IGNORECASE)


# ── Payload models ────────────────────────────────────────────────────────────

class SupabaseConfig(BaseModel):
    supabase_url: str
    project_name: Optional[str] = None
    project_ref: Optional[str] = None

    @field_validator("supabase_url")
    @classmethod
    def _check_url(cls, v: str) -> str:
        parsed = urlparse(v.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("Invalid Supabase URL")
        return v.strip().rstrip("/")


class SupabaseSecret(BaseModel):
    service_role_key: str = Field(min_length=20)


def extract_project_ref(url: str) -> Optional[str]:
    """Project ref from https://<ref>.supabase.co, or None for custom hosts."""
    hostname = urlparse(url).hostname or ""
    match = _PROJECT_REF_RE.match(hostname)
    return match.group(1) if match else None


def _rows(data: Any) -> List[Dict[str, Any]]:
    """exec_sql may return a bare row list or {"rows": [...]}."""
    if isinstance(data, list):
        return [r for r in data if isinstance(r, dict)]
    if isinstance(data, dict) and isinstance(data.get("rows"), list):
        return [r for r in data["rows"] if isinstance(r, dict)]
    return []


# ── Adapter ───────────────────────────────────────────────────────────────────

class SupabaseAdapter(ConnectorAdapter):
    """Database-backend adapter for Supabase projects."""

    platform_kind = PlatformKind.SUPABASE
    config_model = SupabaseConfig
    secret_model = SupabaseSecret

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self._timeout = timeout
        self._transport = transport

    def _client(self, config: Dict[str, Any], secret: Dict[str, Any]) -> PlatformHttpClient:
        key = secret.get("service_role_key", "")
        return PlatformHttpClient(
            "Supabase",
            base_url=str(config["supabase_url"]).rstrip("/"),
            headers={"apikey": key, "Authorization": f"Bearer {key}"},
            timeout=self._timeout,
            transport=self._transport,
        )

    async def validate_connection(
        self, config: Dict[str, Any], secret: Dict[str, Any]
    ) -> ValidationResult:
        try:
            async with self._client(config, secret) as http:
                response = await http.request(
                    "GET",
                    "/rest/v1/_validation_check_",
                    params={"select": "*", "limit": "1"},
                    what="validating credentials",
                )
        except AdapterError as exc:
            self.logger.warning("Validation failed: %s", exc)
            return ValidationResult(valid=False, error=f"Connection failed: {exc}")

        metadata = {
            "supabase_url": config["supabase_url"],
            "project_ref": extract_project_ref(config["supabase_url"]),
            "validated_at": datetime.utcnow().isoformat(),
        }
        if response.status_code < 400:
            return ValidationResult(valid=True, metadata=metadata)

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        code = str(body.get("code") or "")
        message = str(body.get("message") or "")

        if response.status_code in (401, 403) or "jwt" in message.lower():
            return ValidationResult(
                valid=False,
                error="Invalid service role key. Please check your credentials.",
            )
        if code in _MISSING_TABLE_CODES or "does not exist" in message or "Could not find" in message:
            return ValidationResult(valid=True, metadata=metadata)
        if response.status_code == 404:
            return ValidationResult(
                valid=False,
                error="No Supabase REST API found at this URL. Check the project URL.",
            )
        return ValidationResult(
            valid=False,
            error=f"Supabase API error ({response.status_code}): {message or response.reason_phrase}",
        )

    async def sync(self, config: Dict[str, Any], secret: Dict[str, Any]) -> SyncResult:
        stats: Dict[str, Any] = {
            "tables": 0,
            "columns": 0,
            "policies": 0,
            "functions": 0,
            "triggers": 0,
            "buckets": 0,
        }
        assets: List[DiscoveredAsset] = []
        warnings: List[str] = []

        try:
            async with self._client(config, secret) as http:
                try:
                    tables = await self._fetch_tables(http)
                except AdapterNotFoundError:
                    tables = None
                    warnings.append(
                        "The exec_sql function is not installed in the Supabase project; "
                        "tables, policies, functions and triggers were not introspected."
                    )
                except (AdapterAuthError, AdapterTransportError):
                    raise
                except AdapterError as exc:
                    tables = []
                    warnings.append(f"Could not fetch tables: {exc}")

                if tables is not None:
                    assets.extend(tables)
                    stats["tables"] = len(tables)
                    stats["columns"] = sum(len(t.data.get("columns", [])) for t in tables)

                    policies = await self._collect("policies", self._fetch_policies, http, warnings)
                    assets.extend(policies)
                    stats["policies"] = len(policies)

                    functions = await self._collect("functions", self._fetch_functions, http, warnings)
                    assets.extend(functions)
                    stats["functions"] = sum(1 for f in functions if not f.data.get("is_trigger"))
                    stats["triggers"] = sum(1 for f in functions if f.data.get("is_trigger"))

                    triggers = await self._collect("triggers", self._fetch_triggers, http, warnings)
                    assets.extend(triggers)
                    stats["triggers"] += len(triggers)

                buckets = await self._collect("storage buckets", self._fetch_buckets, http, warnings)
                assets.extend(buckets)
                stats["buckets"] = len(buckets)

        except (AdapterAuthError, AdapterTransportError) as exc:
            self.logger.error("Sync failed: %s", exc)
            return SyncResult(success=False, stats=stats, error=str(exc))

        self.logger.info("Sync completed: %s", self.redact({"stats": stats}))
        return SyncResult(success=True, assets=assets, stats=stats, warnings=warnings)

    def prepare_config(
        self, config: Dict[str, Any], metadata: Dict[str, Any]
    ) -> Dict[str, Any]:
        prepared = {
            "supabase_url": config["supabase_url"],
            "project_ref": config.get("project_ref") or extract_project_ref(config["supabase_url"]),
        }
        if config.get("project_name"):
            prepared["project_name"] = config["project_name"]
        return prepared

    # ─── Internal helpers ─────────────────────────────────────────────────────

    async def _collect(
        self,
        label: str,
        fetch: Callable[[PlatformHttpClient], Awaitable[List[DiscoveredAsset]]],
        http: PlatformHttpClient,
        warnings: List[str],
    ) -> List[DiscoveredAsset]:
        """Run one category fetch; non-fatal failures become a warning."""
        try:
            return await fetch(http)
        except (AdapterAuthError, AdapterTransportError):
            raise
        except AdapterError as exc:
            self.logger.warning("Could not fetch %s: %s", label, exc)
            warnings.append(f"Could not fetch {label}: {exc}")
            return []

    async def _sql(self, http: PlatformHttpClient, query: str, what: str) -> List[Dict[str, Any]]:
        data = await http.post_json("/rest/v1/rpc/exec_sql", json={"query": query}, what=what)
        return _rows(data)

    async def _fetch_tables(self, http: PlatformHttpClient) -> List[DiscoveredAsset]:
        """Tables with their columns, primary keys and foreign keys."""
        tables = await self._sql(http, TABLES_QUERY, "listing tables")
        columns = await self._sql(http, COLUMNS_QUERY, "listing columns")
        pks = await self._sql(http, PRIMARY_KEYS_QUERY, "listing primary keys")
        fks = await self._sql(http, FOREIGN_KEYS_QUERY, "listing foreign keys")

        def _key(row: Dict[str, Any]) -> str:
            return f"{row.get('table_schema')}.{row.get('table_name')}"

        pk_by_table: Dict[str, List[str]] = {}
        for row in pks:
            pk_by_table.setdefault(_key(row), []).append(row["column_name"])

        fk_by_table: Dict[str, List[Dict[str, str]]] = {}
        for row in fks:
            fk_by_table.setdefault(_key(row), []).append({
                "column": row["column_name"],
                "references_table": f"{row['foreign_table_schema']}.{row['foreign_table_name']}",
                "references_column": row["foreign_column_name"],
            })

        cols_by_table: Dict[str, List[Dict[str, Any]]] = {}
        for row in columns:
            cols_by_table.setdefault(_key(row), []).append(row)

        assets = []
        for table in tables:
            table_key = _key(table)
            primary_key = pk_by_table.get(table_key, [])
            data: Dict[str, Any] = {
                "schema": table["table_schema"],
                "name": table["table_name"],
                "columns": [
                    {
                        "name": col["column_name"],
                        "type": col.get("udt_name") or col.get("data_type"),
                        "nullable": col.get("is_nullable") == "YES",
                        "default_value": col.get("column_default"),
                        "is_primary_key": col["column_name"] in primary_key,
                    }
                    for col in cols_by_table.get(table_key, [])
                ],
            }
            if primary_key:
                data["primary_key"] = primary_key
            if table_key in fk_by_table:
                data["foreign_keys"] = fk_by_table[table_key]
            assets.append(DiscoveredAsset(
                asset_type="table",
                asset_key=table_key,
                name=table["table_name"],
                data=data,
            ))
        return assets

    async def _fetch_policies(self, http: PlatformHttpClient) -> List[DiscoveredAsset]:
        rows = await self._sql(http, POLICIES_QUERY, "listing RLS policies")
        return [
            DiscoveredAsset(
                asset_type="policy",
                asset_key=f"{row['schema_name']}.{row['table_name']}.{row['policy_name']}",
                name=row["policy_name"],
                data={
                    "name": row["policy_name"],
                    "schema": row["schema_name"],
                    "table_name": row["table_name"],
                    "command": row.get("command"),
                    "definition": row.get("definition") or "",
                    "check": row.get("with_check"),
                    "roles": row.get("roles") or [],
                },
            )
            for row in rows
        ]

    async def _fetch_functions(self, http: PlatformHttpClient) -> List[DiscoveredAsset]:
        rows = await self._sql(http, FUNCTIONS_QUERY, "listing functions")
        assets = []
        for row in rows:
            is_trigger = bool(row.get("is_trigger"))
            assets.append(DiscoveredAsset(
                asset_type="trigger" if is_trigger else "function",
                asset_key=f"{row['schema_name']}.{row['function_name']}({row.get('arguments') or ''})",
                name=row["function_name"],
                data={
                    "name": row["function_name"],
                    "schema": row["schema_name"],
                    "language": row.get("language"),
                    "return_type": row.get("return_type"),
                    "arguments": row.get("arguments") or "",
                    "is_trigger": is_trigger,
                },
            ))
        return assets

    async def _fetch_triggers(self, http: PlatformHttpClient) -> List[DiscoveredAsset]:
        rows = await self._sql(http, TRIGGERS_QUERY, "listing triggers")
        return [
            DiscoveredAsset(
                asset_type="trigger",
                asset_key=f"{row['schema_name']}.{row['table_name']}.{row['trigger_name']}",
                name=row["trigger_name"],
                data={
                    "name": row["trigger_name"],
                    "schema": row["schema_name"],
                    "table_name": row["table_name"],
                    "function_name": row.get("function_name"),
                    "timing": row.get("timing"),
                    "event": row.get("event"),
                },
            )
            for row in rows
        ]

    async def _fetch_buckets(self, http: PlatformHttpClient) -> List[DiscoveredAsset]:
        buckets = await http.get_json("/storage/v1/bucket", what="listing storage buckets")
        assets = []
        for bucket in buckets if isinstance(buckets, list) else []:
            assets.append(DiscoveredAsset(
                asset_type="bucket",
                asset_key=f"bucket:{bucket['id']}",
                name=bucket.get("name") or bucket["id"],
                data={
                    "id": bucket["id"],
                    "name": bucket.get("name"),
                    "public": bool(bucket.get("public")),
                    "file_size_limit": bucket.get("file_size_limit"),
                    "allowed_mime_types": bucket.get("allowed_mime_types"),
                },
            ))
        return assets

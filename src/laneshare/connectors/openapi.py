"""
OpenAPI adapter: mirrors an HTTP API described by an OpenAPI/Swagger document.

The document URL may point straight at a JSON/YAML spec or at a Swagger UI
page; in the latter case a handful of conventional spec locations on the
same origin are probed. Optional secret headers (API keys, bearer tokens)
are sent with every fetch and never logged.
"""
import json
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional, Tuple
from urllib.parse import urljoin, urlparse

import httpx
import yaml
from pydantic import BaseModel, field_validator

from laneshare.connectors.base import (
    ConnectorAdapter,
    DiscoveredAsset,
    SyncResult,
    ValidationResult,
)
from laneshare.connectors.http import PlatformHttpClient
from laneshare.connectors.openapi_normalizer import (
    NormalizedSpec,
    compute_fingerprint,
    generate_slug,
    is_valid_spec,
    normalize_path,
    normalize_spec,
)
from laneshare.errors import (
    AdapterAuthError,
    AdapterError,
    AdapterNotFoundError,
    AdapterTransportError,
)
from laneshare.models.connection import PlatformKind

MAX_SPEC_SIZE = 10 * 1024 * 1024  # 10 MB
FETCH_TIMEOUT_SECONDS = 10.0

# Common Swagger UI spec locations, tried against the URL's origin.
SWAGGER_SPEC_LOCATIONS = (
    "/openapi.json",
    "/swagger.json",
    "/api-docs",
    "/swagger/v1/swagger.json",
    "/v1/swagger.json",
    "/v2/swagger.json",
    "/v3/swagger.json",
    "/api/swagger.json",
    "/api/openapi.json",
    "/docs/openapi.json",
)


class OpenApiConfig(BaseModel):
    openapi_url: str
    api_name: Optional[str] = None
    api_slug: Optional[str] = None
    format_hint: Literal["json", "yaml", "auto"] = "auto"
    spec_fingerprint: Optional[str] = None
    spec_version: Optional[str] = None
    spec_title: Optional[str] = None

    @field_validator("openapi_url")
    @classmethod
    def _check_url(cls, v: str) -> str:
        parsed = urlparse(v.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("Invalid URL format")
        return v.strip()


class OpenApiSecret(BaseModel):
    headers: Dict[str, str] = {}


def _json_safe(value: Any) -> Any:
    """YAML timestamps (`version: 2024-06-01`) become ISO strings; keys become strings."""
    if isinstance(value, dict):
        return {str(_json_safe(k)): _json_safe(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_json_safe(v) for v in value]
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _parse_document(text: str, format_hint: str) -> Any:
    """Parse JSON and/or YAML per the hint; None when nothing parses."""
    if format_hint in ("json", "auto"):
        try:
            return json.loads(text)
        except ValueError:
            if format_hint == "json":
                return None
    try:
        return _json_safe(yaml.safe_load(text))
    except yaml.YAMLError:
        return None


def _looks_like_page(url: str) -> bool:
    """A Swagger UI page (.html or an extensionless last segment) rather than a file."""
    last_segment = urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]
    return url.endswith(".html") or "." not in last_segment


class OpenApiAdapter(ConnectorAdapter):
    """Generic-API-spec adapter."""

    platform_kind = PlatformKind.OPENAPI
    config_model = OpenApiConfig
    secret_model = OpenApiSecret

    def __init__(
        self,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self._timeout = timeout
        self._transport = transport

    async def validate_connection(
        self, config: Dict[str, Any], secret: Dict[str, Any]
    ) -> ValidationResult:
        try:
            spec, final_url = await self.fetch_spec(
                config["openapi_url"], secret.get("headers"), config.get("format_hint", "auto")
            )
            normalized = normalize_spec(spec)
            fingerprint = compute_fingerprint(spec)
        except AdapterError as exc:
            self.logger.warning("Validation failed: %s", exc)
            return ValidationResult(valid=False, error=str(exc))
        except (TypeError, ValueError, KeyError, AttributeError) as exc:
            self.logger.exception("Could not read the API spec")
            return ValidationResult(valid=False, error=f"Could not read the API spec: {exc}")

        return ValidationResult(
            valid=True,
            metadata={
                "title": normalized.title,
                "version": normalized.version,
                "description": normalized.description,
                "base_url": normalized.base_url,
                "openapi_version": normalized.openapi_version,
                "endpoint_count": len(normalized.endpoints),
                "schema_count": len(normalized.schemas),
                "tag_count": len(normalized.tags),
                "security_scheme_count": len(normalized.security_schemes),
                "suggested_slug": generate_slug(normalized.title),
                "spec_fingerprint": fingerprint,
                "final_url": final_url,
                "validated_at": datetime.utcnow().isoformat(),
            },
        )

    async def sync(self, config: Dict[str, Any], secret: Dict[str, Any]) -> SyncResult:
        stats: Dict[str, Any] = {"endpoints": 0, "schemas": 0, "tags": 0, "security_schemes": 0}
        self.logger.info("Syncing spec from %s", config.get("openapi_url"))
        try:
            spec, _ = await self.fetch_spec(
                config["openapi_url"], secret.get("headers"), config.get("format_hint", "auto")
            )
        except AdapterError as exc:
            self.logger.error("Sync failed: %s", exc)
            return SyncResult(success=False, stats=stats, error=str(exc))

        try:
            normalized = normalize_spec(spec)
            fingerprint = compute_fingerprint(spec)
        except (TypeError, ValueError, KeyError, AttributeError) as exc:
            self.logger.exception("Could not read the API spec")
            return SyncResult(success=False, stats=stats, error=f"Could not read the API spec: {exc}")
        slug = config.get("api_slug") or generate_slug(normalized.title)

        stats.update({
            "endpoints": len(normalized.endpoints),
            "schemas": len(normalized.schemas),
            "tags": len(normalized.tags),
            "security_schemes": len(normalized.security_schemes),
            "spec_version": normalized.version,
            "spec_title": normalized.title,
            "base_url": normalized.base_url,
            "spec_fingerprint": fingerprint,
        })
        if config.get("spec_fingerprint"):
            stats["spec_changed"] = config["spec_fingerprint"] != fingerprint

        warnings = []
        if normalized.skipped:
            warnings.append(
                f"Skipped {len(normalized.skipped)} malformed path or operation entries: "
                + ", ".join(normalized.skipped[:10])
            )

        assets = self._build_assets(normalized, slug, fingerprint)
        self.logger.info("Sync completed: %s", self.redact({"stats": stats}))
        return SyncResult(success=True, assets=assets, stats=stats, warnings=warnings)

    def prepare_config(
        self, config: Dict[str, Any], metadata: Dict[str, Any]
    ) -> Dict[str, Any]:
        return {
            "openapi_url": config["openapi_url"],
            "api_name": config.get("api_name"),
            "api_slug": config.get("api_slug") or metadata.get("suggested_slug") or "api",
            "format_hint": config.get("format_hint", "auto"),
            "spec_fingerprint": metadata.get("spec_fingerprint"),
            "spec_version": metadata.get("version"),
            "spec_title": metadata.get("title"),
        }

    # ─── Spec fetching ────────────────────────────────────────────────────────

    async def fetch_spec(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        format_hint: str = "auto",
    ) -> Tuple[Dict[str, Any], str]:
        """
        Fetch and parse a spec, probing Swagger UI locations when needed.

        Returns:
            (parsed document, URL it was finally read from)

        Raises:
            AdapterAuthError: the server rejected the supplied headers.
            AdapterTransportError: timeout, network failure or 5xx.
            AdapterNotFoundError: no valid spec at the URL or probed locations.
            AdapterError: invalid URL or spec larger than MAX_SPEC_SIZE.
        """
        parsed_url = urlparse(url)
        if parsed_url.scheme not in ("http", "https") or not parsed_url.netloc:
            raise AdapterError("Invalid URL format")

        request_headers = {"Accept": "application/json, application/yaml, text/yaml, */*"}
        request_headers.update(headers or {})

        async with PlatformHttpClient(
            "API spec host",
            headers=request_headers,
            timeout=self._timeout,
            transport=self._transport,
        ) as http:
            spec, final_url = await self._try_fetch(http, url, format_hint)
            if spec is not None:
                return spec, final_url

            if _looks_like_page(final_url):
                origin = f"{parsed_url.scheme}://{parsed_url.netloc}"
                for location in SWAGGER_SPEC_LOCATIONS:
                    probe_url = urljoin(origin, location)
                    try:
                        spec, _ = await self._try_fetch(http, probe_url, format_hint)
                    except AdapterError:
                        continue
                    if spec is not None:
                        self.logger.info("Found spec at %s", probe_url)
                        return spec, probe_url

        raise AdapterNotFoundError(
            "Could not fetch OpenAPI spec. Ensure the URL points to a valid JSON or YAML spec file."
        )

    async def _try_fetch(
        self, http: PlatformHttpClient, url: str, format_hint: str
    ) -> Tuple[Optional[Dict[str, Any]], str]:
        response = await http.request("GET", url, what="fetching the API spec")
        final_url = str(response.url)

        if response.status_code in (401, 403):
            raise AdapterAuthError(
                f"The spec URL rejected the request ({response.status_code}). "
                "Check the configured auth headers."
            )
        if response.status_code == 429 or response.status_code >= 500:
            raise AdapterTransportError(
                f"The spec host is unavailable ({response.status_code})."
            )
        if response.status_code >= 400:
            return None, final_url

        content_length = response.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > MAX_SPEC_SIZE:
            raise AdapterError(
                f"Spec file too large ({int(content_length) // (1024 * 1024)}MB). "
                "Maximum size is 10MB."
            )
        if len(response.content) > MAX_SPEC_SIZE:
            raise AdapterError("Spec file too large. Maximum size is 10MB.")

        parsed = _parse_document(response.text, format_hint)
        if not is_valid_spec(parsed):
            return None, final_url
        return parsed, final_url

    # ─── Asset construction ───────────────────────────────────────────────────

    @staticmethod
    def _build_assets(
        normalized: NormalizedSpec, slug: str, fingerprint: str
    ) -> List[DiscoveredAsset]:
        assets = [
            DiscoveredAsset(
                asset_type="openapi_spec",
                asset_key=f"openapi:{slug}:spec",
                name=normalized.title,
                data={
                    "title": normalized.title,
                    "version": normalized.version,
                    "description": normalized.description,
                    "base_url": normalized.base_url,
                    "servers": normalized.servers,
                    "openapi_version": normalized.openapi_version,
                    "spec_fingerprint": fingerprint,
                    "endpoint_count": len(normalized.endpoints),
                    "schema_count": len(normalized.schemas),
                    "tag_count": len(normalized.tags),
                    "security_scheme_count": len(normalized.security_schemes),
                    "tags": normalized.tags,
                },
            )
        ]
        for endpoint in normalized.endpoints:
            method = endpoint["method"].lower()
            assets.append(DiscoveredAsset(
                asset_type="endpoint",
                asset_key=f"openapi:{slug}:{method}:{normalize_path(endpoint['path'])}",
                name=endpoint.get("operation_id") or f"{endpoint['method']} {endpoint['path']}",
                data=endpoint,
            ))
        for schema in normalized.schemas:
            assets.append(DiscoveredAsset(
                asset_type="schema",
                asset_key=f"openapi:{slug}:schema:{schema['name']}",
                name=schema["name"],
                data=schema,
            ))
        for scheme in normalized.security_schemes:
            assets.append(DiscoveredAsset(
                asset_type="security_scheme",
                asset_key=f"openapi:{slug}:security:{scheme['name']}",
                name=scheme["name"],
                data=scheme,
            ))
        return assets

"""
OpenAPI / Swagger document normalizer.

Converts a parsed OpenAPI 3.x or Swagger 2.0 document into plain dicts that
map directly onto Asset payloads. No network or DB access here; the adapter
handles fetching and the orchestrator handles persistence.

The two document generations differ in a few places, all handled here:

  Swagger 2.0:
    - `host` + `basePath` + `schemes` instead of `servers`
    - `definitions` / `securityDefinitions` instead of `components`
    - body parameters (`in: body`) instead of `requestBody`
    - response `schema` directly on the response object
    - `$ref`s point at `#/definitions/...`, rewritten to `#/components/schemas/...`
"""
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

HTTP_METHODS = ("get", "post", "put", "delete", "patch", "options", "head", "trace")


@dataclass
class NormalizedSpec:
    """A document reduced to the fields mirrored as assets."""
    title: str
    version: str
    description: Optional[str]
    openapi_version: str
    base_url: Optional[str]
    servers: List[Dict[str, Any]]
    endpoints: List[Dict[str, Any]]
    schemas: List[Dict[str, Any]]
    security_schemes: List[Dict[str, Any]]
    tags: List[Dict[str, Any]]
    skipped: List[str] = field(default_factory=list)  # operations that were not objects


def is_valid_spec(parsed: Any) -> bool:
    """True for an OpenAPI 3.x or Swagger 2.0 document with an info object."""
    if not isinstance(parsed, dict):
        return False
    openapi = parsed.get("openapi")
    if isinstance(openapi, str) and openapi.startswith("3."):
        return isinstance(parsed.get("info"), dict)
    if str(parsed.get("swagger")) == "2.0":
        return isinstance(parsed.get("info"), dict)
    return False


def normalize_schema_ref(schema: Any) -> Dict[str, Any]:
    """Reduce a JSON schema (or $ref) to the subset shown in the UI."""
    if not isinstance(schema, dict):
        return {}

    ref = schema.get("$ref")
    if isinstance(ref, str):
        if ref.startswith("#/definitions/"):
            ref = ref.replace("#/definitions/", "#/components/schemas/", 1)
        return {"$ref": ref}

    result: Dict[str, Any] = {}
    for key in ("type", "format", "description"):
        if schema.get(key):
            result[key] = str(schema[key])
    if isinstance(schema.get("enum"), list):
        result["enum"] = [str(v) for v in schema["enum"]]
    if "example" in schema:
        result["example"] = schema["example"]
    if isinstance(schema.get("required"), list):
        result["required"] = list(schema["required"])
    if schema.get("nullable") is True:
        result["nullable"] = True
    if isinstance(schema.get("items"), dict):
        result["items"] = normalize_schema_ref(schema["items"])
    if isinstance(schema.get("properties"), dict):
        result["properties"] = {
            name: normalize_schema_ref(prop) for name, prop in schema["properties"].items()
        }
    return result


def _normalize_parameter(param: Dict[str, Any]) -> Dict[str, Any]:
    # Swagger 2.0 non-body params carry type/format inline instead of under `schema`.
    schema_source = param.get("schema") if isinstance(param.get("schema"), dict) else param
    result = {
        "name": param.get("name"),
        "in": param.get("in"),
        "required": bool(param.get("required", False)),
        "schema": normalize_schema_ref(schema_source),
    }
    if param.get("description"):
        result["description"] = param["description"]
    if param.get("deprecated"):
        result["deprecated"] = True
    return result


def _normalize_content(content: Any) -> Dict[str, Any]:
    if not isinstance(content, dict):
        return {}
    return {
        media_type: (
            {"schema": normalize_schema_ref(media["schema"])}
            if isinstance(media, dict) and media.get("schema") is not None
            else {}
        )
        for media_type, media in content.items()
    }


def _normalize_responses_v3(responses: Dict[str, Any]) -> Dict[str, Any]:
    result = {}
    for code, response in responses.items():
        response = response if isinstance(response, dict) else {}
        entry: Dict[str, Any] = {"description": response.get("description")}
        content = _normalize_content(response.get("content"))
        if content:
            entry["content"] = content
        result[str(code)] = entry
    return result


def _normalize_responses_v2(responses: Dict[str, Any]) -> Dict[str, Any]:
    result = {}
    for code, response in responses.items():
        response = response if isinstance(response, dict) else {}
        entry: Dict[str, Any] = {"description": response.get("description")}
        if response.get("schema") is not None:
            entry["content"] = {
                "application/json": {"schema": normalize_schema_ref(response["schema"])}
            }
        result[str(code)] = entry
    return result


def _base_operation(path: str, method: str, op: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "method": method.upper(),
        "path": path,
        "operation_id": op.get("operationId"),
        "summary": op.get("summary"),
        "description": op.get("description"),
        "tags": op.get("tags") or [],
        "deprecated": bool(op.get("deprecated", False)),
        "security": op.get("security"),
    }


def normalize_operation_v3(path: str, method: str, op: Dict[str, Any]) -> Dict[str, Any]:
    endpoint = _base_operation(path, method, op)
    endpoint["parameters"] = [
        _normalize_parameter(p) for p in op.get("parameters") or [] if isinstance(p, dict)
    ]
    body = op.get("requestBody")
    if isinstance(body, dict):
        endpoint["request_body"] = {
            "description": body.get("description"),
            "required": bool(body.get("required", False)),
            "content": _normalize_content(body.get("content")),
        }
    if isinstance(op.get("responses"), dict):
        endpoint["responses"] = _normalize_responses_v3(op["responses"])
    return endpoint


def normalize_operation_v2(path: str, method: str, op: Dict[str, Any]) -> Dict[str, Any]:
    """Swagger 2.0 operation, with its first body parameter lifted into a request body."""
    endpoint = _base_operation(path, method, op)
    params = [p for p in op.get("parameters") or [] if isinstance(p, dict)]
    body_params = [p for p in params if p.get("in") == "body"]
    endpoint["parameters"] = [_normalize_parameter(p) for p in params if p.get("in") != "body"]
    if body_params:
        body = body_params[0]
        media_types = op.get("consumes") or ["application/json"]
        endpoint["request_body"] = {
            "description": body.get("description"),
            "required": bool(body.get("required", False)),
            "content": {media_types[0]: {"schema": normalize_schema_ref(body.get("schema"))}},
        }
    if isinstance(op.get("responses"), dict):
        endpoint["responses"] = _normalize_responses_v2(op["responses"])
    return endpoint


def normalize_security_scheme(name: str, scheme: Any) -> Dict[str, Any]:
    if not isinstance(scheme, dict):
        return {"name": name, "type": "unknown"}
    result = {"name": name, "type": str(scheme.get("type") or "unknown")}
    for key, out_key in (
        ("description", "description"),
        ("in", "in"),
        ("scheme", "scheme"),
        ("bearerFormat", "bearer_format"),
    ):
        if scheme.get(key):
            result[out_key] = str(scheme[key])
    if scheme.get("flows") is not None:
        result["flows"] = scheme["flows"]
    return result


def normalize_spec(spec: Dict[str, Any]) -> NormalizedSpec:
    """
    Normalize an OpenAPI 3.x or Swagger 2.0 document.

    Args:
        spec: Parsed document that passed is_valid_spec().

    Returns:
        NormalizedSpec; operations that are not objects are listed in `skipped`.
    """
    is_v3 = "openapi" in spec
    info = spec.get("info") or {}

    if is_v3:
        servers = [s for s in spec.get("servers") or [] if isinstance(s, dict)]
        base_url = servers[0].get("url") if servers else None
        raw_schemas = (spec.get("components") or {}).get("schemas") or {}
        raw_security = (spec.get("components") or {}).get("securitySchemes") or {}
    else:
        scheme = (spec.get("schemes") or ["https"])[0]
        base_url = f"{scheme}://{spec.get('host') or 'localhost'}{spec.get('basePath') or ''}"
        servers = [{"url": base_url}]
        raw_schemas = spec.get("definitions") or {}
        raw_security = spec.get("securityDefinitions") or {}

    endpoints: List[Dict[str, Any]] = []
    skipped: List[str] = []
    for path, path_item in (spec.get("paths") or {}).items():
        if not isinstance(path_item, dict):
            skipped.append(str(path))
            continue
        for method in HTTP_METHODS:
            if method not in path_item:
                continue
            op = path_item[method]
            if not isinstance(op, dict):
                skipped.append(f"{method.upper()} {path}")
                continue
            if is_v3:
                endpoints.append(normalize_operation_v3(path, method, op))
            else:
                endpoints.append(normalize_operation_v2(path, method, op))

    schemas = []
    for name, schema in raw_schemas.items():
        normalized = normalize_schema_ref(schema)
        entry = {"name": name, "schema": normalized}
        if normalized.get("description"):
            entry["description"] = normalized["description"]
        schemas.append(entry)

    return NormalizedSpec(
        title=str(info.get("title") or "Untitled API"),
        version=str(info.get("version") or "1.0.0"),
        description=info.get("description"),
        openapi_version=str(spec["openapi"]) if is_v3 else "2.0",
        base_url=base_url,
        servers=servers,
        endpoints=endpoints,
        schemas=schemas,
        security_schemes=[
            normalize_security_scheme(name, scheme) for name, scheme in raw_security.items()
        ],
        tags=[t for t in spec.get("tags") or [] if isinstance(t, dict)],
        skipped=skipped,
    )


def generate_slug(title: str) -> str:
    """URL-safe slug from an API title, at most 50 characters."""
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")[:50]
    return slug or "api"


def normalize_path(path: str) -> str:
    """Path form used inside asset keys: /pets/{id} -> /pets/_id_"""
    path = re.sub(r"\{([^}]+)\}", r"_\1_", path)
    return re.sub(r"[^a-zA-Z0-9_/-]", "", path).lower()


def compute_fingerprint(spec: Dict[str, Any]) -> str:
    """
    Deterministic 8-hex-digit djb2 hash of (title, version, sorted paths).

    Stable across syncs so an unchanged API keeps the same fingerprint.
    """
    info = spec.get("info") or {}
    payload = json.dumps(
        {
            "title": info.get("title"),
            "version": info.get("version"),
            "paths": sorted((spec.get("paths") or {}).keys()),
        },
        separators=(",", ":"),
    )
    value = 5381
    for ch in payload:
        value = ((value << 5) + value + ord(ch)) & 0xFFFFFFFF
    return f"{value:08x}"

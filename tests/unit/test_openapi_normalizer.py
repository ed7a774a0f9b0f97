"""Tests for OpenAPI / Swagger normalization helpers."""
import pytest

from laneshare.connectors.openapi_normalizer import (
    compute_fingerprint,
    generate_slug,
    is_valid_spec,
    normalize_path,
    normalize_schema_ref,
    normalize_security_scheme,
    normalize_spec,
)

PETSTORE_V3 = {
    "openapi": "3.0.3",
    "info": {"title": "Pet Store", "version": "1.2.0", "description": "Pets"},
    "servers": [{"url": "https://api.pets.test/v1"}],
    "tags": [{"name": "pets"}],
    "paths": {
        "/pets": {
            "get": {
                "operationId": "listPets",
                "tags": ["pets"],
                "parameters": [
                    {"name": "limit", "in": "query", "schema": {"type": "integer", "format": "int32"}}
                ],
                "responses": {
                    "200": {
                        "description": "ok",
                        "content": {
                            "application/json": {
                                "schema": {"type": "array", "items": {"$ref": "#/components/schemas/Pet"}}
                            }
                        },
                    }
                },
            },
            "post": {
                "operationId": "createPet",
                "requestBody": {
                    "required": True,
                    "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Pet"}}},
                },
                "responses": {"201": {"description": "created"}},
            },
        },
        "/pets/{petId}": {
            "get": {"operationId": "showPet", "responses": {"200": {"description": "ok"}}},
        },
    },
    "components": {
        "schemas": {
            "Pet": {
                "type": "object",
                "description": "A pet",
                "required": ["id"],
                "properties": {"id": {"type": "integer"}, "name": {"type": "string"}},
            }
        },
        "securitySchemes": {
            "bearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}
        },
    },
}

PETSTORE_V2 = {
    "swagger": "2.0",
    "info": {"title": "Legacy Pets", "version": "0.9"},
    "host": "legacy.pets.test",
    "basePath": "/api",
    "schemes": ["http"],
    "paths": {
        "/pets": {
            "post": {
                "operationId": "addPet",
                "consumes": ["application/xml"],
                "parameters": [
                    {"name": "body", "in": "body", "required": True,
                     "schema": {"$ref": "#/definitions/Pet"}},
                    {"name": "X-Trace", "in": "header", "type": "string"},
                ],
                "responses": {"200": {"description": "ok", "schema": {"$ref": "#/definitions/Pet"}}},
            }
        }
    },
    "definitions": {"Pet": {"type": "object"}},
    "securityDefinitions": {"api_key": {"type": "apiKey", "in": "header", "name": "api_key"}},
}


class TestIsValidSpec:
    def test_openapi_3(self):
        assert is_valid_spec(PETSTORE_V3)

    def test_swagger_2(self):
        assert is_valid_spec(PETSTORE_V2)

    @pytest.mark.parametrize("doc", [
        None,
        [],
        {"openapi": "2.0", "info": {}},
        {"openapi": "3.1.0"},
        {"swagger": "1.2", "info": {}},
        {"info": {"title": "x"}},
    ])
    def test_rejects(self, doc):
        assert not is_valid_spec(doc)


class TestNormalizeSpecV3:
    def test_info_and_base_url(self):
        spec = normalize_spec(PETSTORE_V3)
        assert spec.title == "Pet Store"
        assert spec.version == "1.2.0"
        assert spec.openapi_version == "3.0.3"
        assert spec.base_url == "https://api.pets.test/v1"

    def test_endpoints(self):
        spec = normalize_spec(PETSTORE_V3)
        ops = {(e["method"], e["path"]): e for e in spec.endpoints}
        assert set(ops) == {("GET", "/pets"), ("POST", "/pets"), ("GET", "/pets/{petId}")}
        assert ops[("GET", "/pets")]["parameters"][0]["schema"] == {"type": "integer", "format": "int32"}
        assert ops[("POST", "/pets")]["request_body"]["required"] is True

    def test_schemas_and_security(self):
        spec = normalize_spec(PETSTORE_V3)
        assert spec.schemas[0]["name"] == "Pet"
        assert spec.schemas[0]["description"] == "A pet"
        assert spec.security_schemes == [
            {"name": "bearerAuth", "type": "http", "scheme": "bearer", "bearer_format": "JWT"}
        ]

    def test_malformed_operations_are_skipped_not_fatal(self):
        doc = dict(PETSTORE_V3, paths={"/ok": {"get": {}}, "/bad": "nope", "/half": {"put": 3}})
        spec = normalize_spec(doc)
        assert len(spec.endpoints) == 1
        assert "/bad" in spec.skipped
        assert "PUT /half" in spec.skipped

    def test_defaults_when_info_sparse(self):
        spec = normalize_spec({"openapi": "3.0.0", "info": {}, "paths": {}})
        assert spec.title == "Untitled API"
        assert spec.version == "1.0.0"
        assert spec.base_url is None


class TestNormalizeSpecV2:
    def test_base_url_from_host(self):
        spec = normalize_spec(PETSTORE_V2)
        assert spec.base_url == "http://legacy.pets.test/api"
        assert spec.openapi_version == "2.0"

    def test_body_param_becomes_request_body(self):
        endpoint = normalize_spec(PETSTORE_V2).endpoints[0]
        assert [p["name"] for p in endpoint["parameters"]] == ["X-Trace"]
        assert endpoint["request_body"]["content"] == {
            "application/xml": {"schema": {"$ref": "#/components/schemas/Pet"}}
        }

    def test_definitions_refs_rewritten(self):
        endpoint = normalize_spec(PETSTORE_V2).endpoints[0]
        schema = endpoint["responses"]["200"]["content"]["application/json"]["schema"]
        assert schema == {"$ref": "#/components/schemas/Pet"}

    def test_security_definitions(self):
        spec = normalize_spec(PETSTORE_V2)
        assert spec.security_schemes == [{"name": "api_key", "type": "apiKey", "in": "header"}]


class TestHelpers:
    def test_schema_ref_non_dict(self):
        assert normalize_schema_ref("string") == {}

    def test_security_scheme_non_dict(self):
        assert normalize_security_scheme("x", None) == {"name": "x", "type": "unknown"}

    @pytest.mark.parametrize("title,expected", [
        ("Pet Store API", "pet-store-api"),
        ("  --Weird__Name!! ", "weird-name"),
        ("!!!", "api"),
        ("x" * 80, "x" * 50),
    ])
    def test_generate_slug(self, title, expected):
        assert generate_slug(title) == expected

    def test_normalize_path(self):
        assert normalize_path("/Pets/{petId}/photos.json") == "/pets/_petid_/photosjson"

    def test_fingerprint_stable_and_order_independent(self):
        reordered = dict(PETSTORE_V3, paths=dict(reversed(list(PETSTORE_V3["paths"].items()))))
        fp = compute_fingerprint(PETSTORE_V3)
        assert len(fp) == 8
        assert fp == compute_fingerprint(reordered)

    def test_fingerprint_changes_with_version(self):
        bumped = dict(PETSTORE_V3, info=dict(PETSTORE_V3["info"], version="2.0.0"))
        assert compute_fingerprint(bumped) != compute_fingerprint(PETSTORE_V3)

"""Tests for the asset store: replace, count, filtered listing."""
import pytest
from sqlmodel import Session, select

from laneshare.connectors.base import DiscoveredAsset
from laneshare.models.asset import Asset
from laneshare.models.connection import Connection, PlatformKind
from laneshare.sync import assets as asset_store


def _keys(engine, connection_id):
    with Session(engine) as s:
        rows = s.exec(select(Asset).where(Asset.connection_id == connection_id)).all()
        return sorted(a.asset_key for a in rows)


class TestReplaceAssets:
    def test_inserts_in_batches(self, engine, seeded_connection, asset_factory):
        with Session(engine) as s:
            n = asset_store.replace_assets(s, seeded_connection, asset_factory(25), batch_size=10)
            s.commit()
        assert n == 25
        assert len(_keys(engine, seeded_connection.id)) == 25

    def test_replaces_previous_set_entirely(self, engine, seeded_connection, asset_factory):
        with Session(engine) as s:
            asset_store.replace_assets(s, seeded_connection, asset_factory(5))
            s.commit()
        replacement = [DiscoveredAsset("table", "public.t0", "t0", {"v": 2}),
                       DiscoveredAsset("bucket", "bucket:avatars", "avatars")]
        with Session(engine) as s:
            asset_store.replace_assets(s, seeded_connection, replacement)
            s.commit()
        assert _keys(engine, seeded_connection.id) == ["bucket:avatars", "public.t0"]

    def test_nothing_visible_until_caller_commits(self, engine, seeded_connection, asset_factory):
        with Session(engine) as s:
            asset_store.replace_assets(s, seeded_connection, asset_factory(3))
            s.commit()
        with Session(engine) as s:
            asset_store.replace_assets(s, seeded_connection, asset_factory(8))
            s.rollback()
        assert len(_keys(engine, seeded_connection.id)) == 3

    def test_rows_carry_connection_scope(self, engine, seeded_connection, asset_factory):
        with Session(engine) as s:
            asset_store.replace_assets(s, seeded_connection, asset_factory(1))
            s.commit()
            asset = s.exec(select(Asset)).one()
        assert asset.project_id == seeded_connection.project_id
        assert asset.platform_kind == PlatformKind.SUPABASE
        assert asset.data == {"index": 0}


@pytest.fixture(name="two_connections")
def two_connections_fixture(engine, seeded_connection, codec):
    with Session(engine) as s:
        vercel = Connection(
            project_id=seeded_connection.project_id,
            platform_kind=PlatformKind.VERCEL,
            display_name="Hosting",
            config={},
            secret_ciphertext=codec.encrypt_json({"token": "t"}),
        )
        s.add(vercel)
        s.commit()
        s.refresh(vercel)

        asset_store.replace_assets(s, seeded_connection, [
            DiscoveredAsset("table", "public.users", "users"),
            DiscoveredAsset("table", "public.orders", "orders"),
            DiscoveredAsset("policy", "public.users.read own", "read own"),
        ])
        asset_store.replace_assets(s, vercel, [
            DiscoveredAsset("vercel_project", "vercel:prj_1", "storefront"),
            DiscoveredAsset("domain", "domain:shop.example.com", "shop.example.com"),
        ])
        vercel_id = vercel.id
        s.commit()
    return seeded_connection.id, vercel_id


class TestCountAssets:
    def test_counts_by_type(self, engine, two_connections):
        supabase_id, vercel_id = two_connections
        with Session(engine) as s:
            counts = asset_store.count_assets(s, [supabase_id, vercel_id])
        assert counts[supabase_id] == {"total": 3, "by_type": {"table": 2, "policy": 1}}
        assert counts[vercel_id]["total"] == 2

    def test_connection_without_assets_is_zero(self, engine, seeded_connection):
        with Session(engine) as s:
            counts = asset_store.count_assets(s, [seeded_connection.id])
        assert counts == {seeded_connection.id: {"total": 0, "by_type": {}}}

    def test_empty_input(self, engine):
        with Session(engine) as s:
            assert asset_store.count_assets(s, []) == {}


class TestListAssets:
    def test_all_for_project(self, engine, two_connections):
        with Session(engine) as s:
            rows, total = asset_store.list_assets(s, "proj-1")
        assert total == 5
        assert len(rows) == 5

    def test_other_project_sees_nothing(self, engine, two_connections):
        with Session(engine) as s:
            rows, total = asset_store.list_assets(s, "someone-else")
        assert (rows, total) == ([], 0)

    def test_filter_by_kind_and_type(self, engine, two_connections):
        with Session(engine) as s:
            rows, total = asset_store.list_assets(
                s, "proj-1", platform_kind=PlatformKind.SUPABASE, asset_type="table"
            )
        assert total == 2
        assert sorted(r.name for r in rows) == ["orders", "users"]

    def test_query_matches_name_or_key_case_insensitive(self, engine, two_connections):
        with Session(engine) as s:
            by_name, _ = asset_store.list_assets(s, "proj-1", query="STORE")
            by_key, _ = asset_store.list_assets(s, "proj-1", query="shop.example")
        assert [r.asset_key for r in by_name] == ["vercel:prj_1"]
        assert [r.asset_key for r in by_key] == ["domain:shop.example.com"]

    def test_pagination(self, engine, two_connections):
        with Session(engine) as s:
            page1, total = asset_store.list_assets(s, "proj-1", limit=2, offset=0)
            page3, _ = asset_store.list_assets(s, "proj-1", limit=2, offset=4)
        assert total == 5
        assert len(page1) == 2
        assert len(page3) == 1

    def test_limit_capped(self, engine, two_connections):
        with Session(engine) as s:
            rows, _ = asset_store.list_assets(s, "proj-1", limit=10_000)
        assert len(rows) == 5


def _endpoint(method, path, operation_id=None, summary=None, tags=()):
    return DiscoveredAsset(
        "endpoint",
        f"openapi:todo:{method.lower()}:{path}",
        operation_id or f"{method} {path}",
        {
            "method": method,
            "path": path,
            "operation_id": operation_id,
            "summary": summary,
            "tags": list(tags),
        },
    )


@pytest.fixture(name="openapi_connection")
def openapi_connection_fixture(engine, seeded_connection, codec):
    with Session(engine) as s:
        connection = Connection(
            project_id=seeded_connection.project_id,
            platform_kind=PlatformKind.OPENAPI,
            display_name="Todo API",
            config={"openapi_url": "https://api.test/openapi.json", "api_slug": "todo"},
            secret_ciphertext=codec.encrypt_json({"headers": {}}),
        )
        s.add(connection)
        s.commit()
        s.refresh(connection)
        asset_store.replace_assets(s, connection, [
            _endpoint("GET", "/todos", "listTodos", "List todos", ["todos"]),
            _endpoint("POST", "/todos", "createTodo", "Create a todo", ["todos"]),
            _endpoint("GET", "/users/{id}", "getUser", "Fetch one user", ["users", "admin"]),
            _endpoint("DELETE", "/health", summary="Reset health probe"),
            DiscoveredAsset("schema", "openapi:todo:schema:Todo", "Todo", {"name": "Todo"}),
        ])
        connection_id = connection.id
        s.commit()
    return connection_id


class TestListEndpoints:
    def test_only_endpoints_ordered_by_path_then_method(self, engine, openapi_connection):
        with Session(engine) as s:
            rows, total, _ = asset_store.list_endpoints(s, openapi_connection)
        assert total == 4
        assert [(r.data["path"], r.data["method"]) for r in rows] == [
            ("/health", "DELETE"),
            ("/todos", "GET"),
            ("/todos", "POST"),
            ("/users/{id}", "GET"),
        ]

    def test_tags_cover_all_endpoints(self, engine, openapi_connection):
        with Session(engine) as s:
            _, _, tags = asset_store.list_endpoints(s, openapi_connection, query="health")
        assert tags == ["admin", "todos", "users"]

    @pytest.mark.parametrize("query,expected", [
        ("/USERS", ["getUser"]),
        ("createtodo", ["createTodo"]),
        ("list TODOS", ["listTodos"]),
        ("nothing-matches", []),
    ])
    def test_query_matches_path_operation_or_summary(self, engine, openapi_connection, query, expected):
        with Session(engine) as s:
            rows, total, _ = asset_store.list_endpoints(s, openapi_connection, query=query)
        assert [r.data["operation_id"] for r in rows] == expected
        assert total == len(expected)

    def test_tag_filter_is_exact(self, engine, openapi_connection):
        with Session(engine) as s:
            rows, total, _ = asset_store.list_endpoints(s, openapi_connection, tag="todos")
            _, partial, _ = asset_store.list_endpoints(s, openapi_connection, tag="todo")
        assert total == 2
        assert {r.data["method"] for r in rows} == {"GET", "POST"}
        assert partial == 0

    def test_pagination_keeps_total(self, engine, openapi_connection):
        with Session(engine) as s:
            rows, total, _ = asset_store.list_endpoints(s, openapi_connection, limit=2, offset=2)
        assert total == 4
        assert [r.data["path"] for r in rows] == ["/todos", "/users/{id}"]

    def test_other_connection_has_none(self, engine, seeded_connection, openapi_connection):
        with Session(engine) as s:
            rows, total, tags = asset_store.list_endpoints(s, seeded_connection.id)
        assert (rows, total, tags) == ([], 0, [])

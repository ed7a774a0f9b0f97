"""Shared test fixtures."""
import asyncio
from typing import Any, Dict, Generator, List, Optional

import pytest
from pydantic import BaseModel, Field
from sqlalchemy.pool import StaticPool
from sqlmodel import Session

from laneshare.connectors.base import (
    ConnectorAdapter,
    DiscoveredAsset,
    SyncResult,
    ValidationResult,
)
from laneshare.connectors.registry import AdapterRegistry
from laneshare.crypto import SecretCodec, generate_key
from laneshare.db.engine import create_db_engine
from laneshare.models.connection import Connection, ConnectionStatus, PlatformKind

PROJECT_ID = "proj-1"
GOOD_SECRET = {"api_key": "k" * 24}


# ─── Fake adapter ─────────────────────────────────────────────────────────────

class FakeConfig(BaseModel):
    url: str = "https://db.example.test"


class FakeSecret(BaseModel):
    api_key: str = Field(min_length=20)


class FakeAdapter(ConnectorAdapter):
    """
    Scriptable adapter registered under the Supabase kind.

    Set `validation`, `result`, `error` or `delay` before exercising the
    service under test; calls are recorded for assertions.
    """

    platform_kind = PlatformKind.SUPABASE
    config_model = FakeConfig
    secret_model = FakeSecret

    def __init__(self):
        super().__init__()
        self.validation = ValidationResult(valid=True, metadata={"project_ref": "abc"})
        self.result = SyncResult(success=True)
        self.error: Optional[Exception] = None
        self.delay = 0.0
        self.validate_calls: List[Dict[str, Any]] = []
        self.sync_calls: List[Dict[str, Any]] = []

    async def validate_connection(self, config, secret):
        self.validate_calls.append({"config": config, "secret": secret})
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.validation

    async def sync(self, config, secret):
        self.sync_calls.append({"config": config, "secret": secret})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def make_assets(n: int, asset_type: str = "table") -> List[DiscoveredAsset]:
    return [
        DiscoveredAsset(
            asset_type=asset_type,
            asset_key=f"public.t{i}",
            name=f"t{i}",
            data={"index": i},
        )
        for i in range(n)
    ]


# ─── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine with foreign keys on. Fresh per test."""
    engine = create_db_engine("sqlite:///:memory:", poolclass=StaticPool)
    yield engine
    engine.dispose()


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="codec")
def codec_fixture() -> SecretCodec:
    return SecretCodec(generate_key())


@pytest.fixture(name="fake_adapter")
def fake_adapter_fixture() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture(name="registry")
def registry_fixture(fake_adapter) -> AdapterRegistry:
    return AdapterRegistry([fake_adapter])


@pytest.fixture(name="seeded_connection")
def seeded_connection_fixture(test_session: Session, codec: SecretCodec) -> Connection:
    """A persisted Supabase-kind connection with an encrypted secret."""
    connection = Connection(
        project_id=PROJECT_ID,
        platform_kind=PlatformKind.SUPABASE,
        display_name="Main DB",
        status=ConnectionStatus.CONNECTED,
        config={"url": "https://db.example.test"},
        secret_ciphertext=codec.encrypt_json(GOOD_SECRET),
        created_by="user-1",
    )
    test_session.add(connection)
    test_session.commit()
    test_session.refresh(connection)
    return connection


@pytest.fixture(name="asset_factory")
def asset_factory_fixture():
    """make_assets(n, asset_type="table") -> n distinct DiscoveredAssets."""
    return make_assets

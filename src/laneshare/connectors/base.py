"""
Adapter contract shared by every platform connector.

An adapter knows how to talk to exactly one external platform. It is given
the connection's public `config` and decrypted `secret` and returns plain
result objects; it never touches the database. The orchestrator and the
connection service only ever see this interface and pick the concrete
adapter by platform kind through the registry.
"""
import abc
import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Tuple, Type

from pydantic import BaseModel

from laneshare.models.connection import PlatformKind

REDACTED = "[REDACTED]"

# Substrings that mark a key as sensitive, matched case-insensitively.
SENSITIVE_KEY_PARTS = (
    "key",
    "token",
    "secret",
    "password",
    "authorization",
    "bearer",
    "headers",
)


@dataclass
class ValidationResult:
    """Outcome of a read-only credential probe."""
    valid: bool
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DiscoveredAsset:
    """One normalized object found on the platform, before persistence."""
    asset_type: str
    asset_key: str
    name: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SyncResult:
    """
    Outcome of a full platform sync.

    `warnings` lists non-fatal partial failures; they leave `success` True
    but downgrade the connection to WARNING. `error` is set only when
    `success` is False.
    """
    success: bool
    assets: List[DiscoveredAsset] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None


def redact(obj: Any, sensitive: Sequence[str] = SENSITIVE_KEY_PARTS) -> Any:
    """Return a copy of `obj` with values under sensitive keys replaced, recursively."""
    if isinstance(obj, dict):
        redacted = {}
        for key, value in obj.items():
            lowered = str(key).lower()
            if any(part in lowered for part in sensitive):
                redacted[key] = REDACTED
            else:
                redacted[key] = redact(value, sensitive)
        return redacted
    if isinstance(obj, list):
        return [redact(item, sensitive) for item in obj]
    return obj


def dedupe_assets(assets: Sequence[DiscoveredAsset]) -> Tuple[List[DiscoveredAsset], int]:
    """
    Collapse assets sharing (asset_type, asset_key), keeping the last one.

    Returns:
        (unique assets in first-seen order, number of dropped duplicates)
    """
    by_key: Dict[Tuple[str, str], DiscoveredAsset] = {}
    for asset in assets:
        by_key[(asset.asset_type, asset.asset_key)] = asset
    return list(by_key.values()), len(assets) - len(by_key)


class ConnectorAdapter(abc.ABC):
    """Base class for platform adapters."""

    platform_kind: ClassVar[PlatformKind]
    config_model: ClassVar[Type[BaseModel]]
    secret_model: ClassVar[Type[BaseModel]]

    def __init__(self) -> None:
        self.logger = logging.getLogger(f"{__name__}.{self.platform_kind.value}")

    @abc.abstractmethod
    async def validate_connection(
        self, config: Dict[str, Any], secret: Dict[str, Any]
    ) -> ValidationResult:
        """Probe the platform with these credentials. Must not raise."""

    @abc.abstractmethod
    async def sync(self, config: Dict[str, Any], secret: Dict[str, Any]) -> SyncResult:
        """Enumerate platform state into assets. Must not raise for platform errors."""

    def prepare_config(
        self, config: Dict[str, Any], metadata: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Build the persisted public config from validated input and probe metadata."""
        return dict(config)

    def redact(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        return redact(obj)

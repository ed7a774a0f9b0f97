"""
Adapter registry: maps a connection's platform kind to its adapter.

Built once at process start (see api.main.create_app) and passed to the
orchestrator and connection service.
"""
from typing import Dict, Iterable, Optional

from laneshare.connectors.base import ConnectorAdapter
from laneshare.errors import NotFoundError
from laneshare.models.connection import PlatformKind


class AdapterRegistry:
    """Lookup of one adapter instance per platform kind."""

    def __init__(self, adapters: Optional[Iterable[ConnectorAdapter]] = None):
        self._adapters: Dict[PlatformKind, ConnectorAdapter] = {}
        for adapter in adapters or ():
            self.register(adapter)

    def register(self, adapter: ConnectorAdapter) -> None:
        self._adapters[PlatformKind(adapter.platform_kind)] = adapter

    def get(self, kind: PlatformKind) -> ConnectorAdapter:
        """
        Raises:
            NotFoundError: if no adapter is registered for `kind`.
        """
        try:
            return self._adapters[PlatformKind(kind)]
        except (KeyError, ValueError):
            raise NotFoundError(f"No adapter registered for platform '{kind}'") from None

    def kinds(self):
        return sorted(self._adapters, key=lambda k: k.value)

    def __contains__(self, kind) -> bool:
        try:
            return PlatformKind(kind) in self._adapters
        except ValueError:
            return False


def build_default_registry() -> AdapterRegistry:
    """Registry with the Supabase, Vercel and OpenAPI adapters."""
    from laneshare.connectors.openapi import OpenApiAdapter
    from laneshare.connectors.supabase import SupabaseAdapter
    from laneshare.connectors.vercel import VercelAdapter

    return AdapterRegistry([SupabaseAdapter(), VercelAdapter(), OpenApiAdapter()])

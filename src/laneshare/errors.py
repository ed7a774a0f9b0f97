"""
Exception taxonomy for connected services.

Synchronous operations (validate, connect, disconnect, start_sync) raise
these directly to the request layer. Inside a background sync every one of
them is caught at the task boundary and turned into a terminal run state.
"""
from typing import Optional


class LaneShareError(Exception):
    """Base class for all connected-services errors."""


class ConfigurationError(LaneShareError):
    """Raised when process configuration (e.g. the encryption key) is unusable."""


class ValidationFailure(LaneShareError):
    """Config or secret rejected before anything was persisted."""


class NotFoundError(LaneShareError):
    """Raised when a connection or run does not exist."""


class ConflictError(LaneShareError):
    """
    Duplicate connection for a platform kind, or a sync already in flight.

    When the conflict is an in-flight run, `run_id` carries its id so the
    caller can poll it instead of retrying blindly.
    """

    def __init__(self, message: str, run_id: Optional[int] = None):
        super().__init__(message)
        self.run_id = run_id


class DecryptionError(LaneShareError):
    """Stored ciphertext is malformed or failed authentication."""


# ── Adapter-side failures ─────────────────────────────────────────────────────

class AdapterError(LaneShareError):
    """A platform call failed. The message is shown to users as-is."""


class AdapterAuthError(AdapterError):
    """The platform rejected the supplied credentials."""


class AdapterNotFoundError(AdapterError):
    """The configured resource does not exist (usually a misconfigured URL or id)."""


class AdapterTransportError(AdapterError):
    """The platform could not be reached: timeout, network failure or 5xx."""

"""Exception types raised by the sync engine."""
from __future__ import annotations


class SyncError(Exception):
    """Base class for failures that abort a sync step."""


class FetchError(SyncError):
    """The blockchain RPC endpoint could not serve a request."""


class RegistryError(SyncError):
    """The orchestrator registry could not be fetched or parsed."""


class WatermarkError(SyncError):
    """A watermark update would move a stream backward."""

    def __init__(self, stream: str, current: int, requested: int):
        super().__init__(
            f"Refusing to move watermark '{stream}' backward from {current} to {requested}"
        )
        self.stream = stream
        self.current = current
        self.requested = requested

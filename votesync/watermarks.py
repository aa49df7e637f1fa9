"""Per-stream resume points for incremental event fetching."""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from votesync.errors import WatermarkError
from votesync.models import STREAMS, SyncState
from votesync.utils import utc_now

log = logging.getLogger(__name__)


class WatermarkStore:
    """Reads and stages watermarks inside the caller's transaction.

    ``set`` only stages the value; it becomes durable when the caller commits,
    so a failed ingestion batch never advances its stream.
    """

    def __init__(self, session: Session, default_floor: int):
        self.session = session
        self.default_floor = default_floor

    @staticmethod
    def _check_stream(stream: str) -> None:
        if stream not in STREAMS:
            raise ValueError(f"Unknown stream {stream!r} (expected one of {', '.join(STREAMS)})")

    def _row(self, stream: str) -> SyncState | None:
        return self.session.execute(
            select(SyncState).where(SyncState.stream == stream)
        ).scalars().first()

    def get(self, stream: str) -> int:
        self._check_stream(stream)
        row = self._row(stream)
        return row.next_block if row is not None else self.default_floor

    def set(self, stream: str, height: int) -> None:
        self._check_stream(stream)
        row = self._row(stream)
        current = row.next_block if row is not None else self.default_floor
        if height < current:
            raise WatermarkError(stream, current, height)
        if row is None:
            row = SyncState(stream=stream, next_block=height, updated_at=utc_now())
            self.session.add(row)
        else:
            row.next_block = height
            row.updated_at = utc_now()
        self.session.flush()
        log.debug("Watermark %s staged at %d", stream, height)

    def all(self) -> dict[str, int]:
        return {stream: self.get(stream) for stream in STREAMS}

"""Orchestrator registry: remote HTTP snapshot cached in the local store."""
from __future__ import annotations

import logging
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from votesync.db import Database
from votesync.errors import RegistryError
from votesync.models import Orchestrator
from votesync.utils import normalize_address, to_bool, to_float, to_str, utc_now

log = logging.getLogger(__name__)

_USER_AGENT = "votesync/0.1"
_TIMEOUT = 30.0

_NUMERIC_FIELDS = ("total_stake", "reward_cut", "fee_cut")
_TEXT_FIELDS = ("name", "service_uri", "avatar")


def parse_record(item: Any) -> dict[str, Any] | None:
    """Normalize one registry entry, or return None when it must be skipped."""
    if not isinstance(item, dict):
        log.info("Registry entry is not an object, skipping: %r", item)
        return None
    address = normalize_address(item.get("eth_address"))
    if not address:
        log.info("Orchestrator with missing eth_address, skipping")
        return None
    record: dict[str, Any] = {"eth_address": address}
    for field in _NUMERIC_FIELDS:
        try:
            record[field] = to_float(item.get(field))
        except ValueError as exc:
            log.info("Orchestrator %s has a malformed %s, storing 0.0: %s", address, field, exc)
            record[field] = 0.0
    record["activation_status"] = to_bool(item.get("activation_status"))
    for field in _TEXT_FIELDS:
        record[field] = to_str(item.get(field))
    return record


class RegistryCache:
    def __init__(
        self,
        db: Database,
        url: str,
        timeout: float = _TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.db = db
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def _fetch(self) -> Any:
        try:
            async with httpx.AsyncClient(
                follow_redirects=True,
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": _USER_AGENT, "Accept": "application/json"},
                transport=self._transport,
            ) as client:
                resp = await client.get(self.url)
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPError as exc:
            raise RegistryError(f"Registry fetch from {self.url} failed: {exc}") from exc
        except ValueError as exc:
            raise RegistryError(f"Registry at {self.url} returned a non-JSON body") from exc

    async def refresh(self) -> int:
        """Fetch the full registry and upsert every valid record.

        Raises RegistryError without touching the cache when the snapshot
        cannot be fetched or is not a JSON array.
        """
        log.info("Fetching orchestrator data from %s", self.url)
        payload = await self._fetch()
        if not isinstance(payload, list):
            raise RegistryError(f"Registry payload is {type(payload).__name__}, expected a list")

        # Last entry per address wins.
        records: dict[str, dict[str, Any]] = {}
        skipped = 0
        for item in payload:
            record = parse_record(item)
            if record is None:
                skipped += 1
                continue
            records[record["eth_address"]] = record
        now = utc_now()
        with self.db.session_scope() as session:
            for record in records.values():
                session.merge(Orchestrator(**record, updated_at=now))
        log.info("Stored/updated %d orchestrators (%d skipped)", len(records), skipped)
        return len(records)

    def lookup(self, address: str, session: Session | None = None) -> Orchestrator | None:
        key = normalize_address(address)
        if not key:
            return None
        if session is not None:
            return _get(session, key)
        with self.db.session_scope() as own:
            return _get(own, key)

    def display_for(self, session: Session, address: str) -> tuple[str, str]:
        """Return ``(name, avatar)`` for enrichment; empty strings when unknown."""
        orch = self.lookup(address, session)
        if orch is None:
            return "", ""
        return orch.name or "", orch.avatar or ""


def _get(session: Session, address: str) -> Orchestrator | None:
    return session.execute(
        select(Orchestrator).where(Orchestrator.eth_address == address)
    ).scalars().first()

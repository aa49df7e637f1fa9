"""Shared fixtures: in-memory store, a scripted chain, and a mock registry endpoint."""
from __future__ import annotations

from typing import Any

import httpx
import pytest

from votesync.chain import RawProposalEvent, RawVoteEvent
from votesync.config import Settings
from votesync.db import Database
from votesync.registry import RegistryCache

REGISTRY_URL = "https://registry.test/api/orchestrator"

PROPOSER = "0xAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
VOTER = "0xBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBB"
OTHER_VOTER = "0xCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCC"


class FakeFetcher:
    """Stands in for EventFetcher: serves scripted events filtered by block range."""

    def __init__(self, head: int = 0, proposals=(), votes=()):
        self.head = head
        self.proposals: list[RawProposalEvent] = list(proposals)
        self.votes: list[RawVoteEvent] = list(votes)
        self.calls: list[tuple[str, int, int]] = []
        self.fail_with: Exception | None = None
        self.fail_votes_with: Exception | None = None

    async def latest_block(self) -> int:
        if self.fail_with is not None:
            raise self.fail_with
        return self.head

    async def fetch_proposal_events(self, from_block: int, to_block: int) -> list[RawProposalEvent]:
        self.calls.append(("proposals", from_block, to_block))
        return [e for e in self.proposals if from_block <= e.block_number <= to_block]

    async def fetch_vote_events(self, from_block: int, to_block: int) -> list[RawVoteEvent]:
        self.calls.append(("votes", from_block, to_block))
        if self.fail_votes_with is not None:
            raise self.fail_votes_with
        return [e for e in self.votes if from_block <= e.block_number <= to_block]


class RegistryEndpoint:
    """Mutable httpx handler so a test can switch the registry between healthy and broken."""

    def __init__(self, payload: Any = None):
        self.payload = payload if payload is not None else []
        self.status = 200
        self.body: str | None = None
        self.error: Exception | None = None
        self.requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests += 1
        if self.error is not None:
            raise self.error
        if self.body is not None:
            return httpx.Response(self.status, text=self.body)
        return httpx.Response(self.status, json=self.payload)


def proposal_event(pid, block, description="# Title\nBody", proposer=PROPOSER, timestamp=None):
    return RawProposalEvent(
        proposal_id=pid, proposer=proposer, description=description,
        block_number=block, timestamp=timestamp if timestamp is not None else 1_700_000_000 + block,
    )


def vote_event(pid, voter, block, support=1, weight=10**18):
    return RawVoteEvent(proposal_id=pid, voter=voter, support=support, weight=weight, block_number=block)


def orchestrator(address, name="", avatar="", **extra):
    record = {
        "eth_address": address, "total_stake": "1500.5", "reward_cut": 0.1, "fee_cut": 0.25,
        "activation_status": True, "name": name, "service_uri": "https://orch.example:8935",
        "avatar": avatar,
    }
    record.update(extra)
    return record


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        rpc_url="http://rpc.test",
        registry_url=REGISTRY_URL,
        database_path=tmp_path / "votesync.db",
        start_block=100,
        sync_interval_seconds=0.05,
    )


@pytest.fixture()
def db():
    store = Database.in_memory().open()
    try:
        yield store
    finally:
        store.close()


@pytest.fixture()
def endpoint() -> RegistryEndpoint:
    return RegistryEndpoint()


@pytest.fixture()
def registry(db, endpoint) -> RegistryCache:
    return RegistryCache(db, REGISTRY_URL, timeout=5.0, transport=httpx.MockTransport(endpoint))


@pytest.fixture()
def fetcher() -> FakeFetcher:
    return FakeFetcher()

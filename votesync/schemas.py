"""Pydantic response schemas for the votesync API."""
from __future__ import annotations

from pydantic import BaseModel


class VoteOut(BaseModel):
    voterAddress: str
    voterName: str = ""
    voterAvatar: str = ""
    support: str
    stakeAmount: float


class ProposalOut(BaseModel):
    id: str
    title: str
    description: str
    proposerAddress: str
    proposerName: str = ""
    proposerAvatar: str = ""
    createdAt: int
    blockNumber: int
    votes: list[VoteOut] = []
    tally: dict[str, float] = {}


class SyncRunOut(BaseModel):
    id: int
    trigger: str
    status: str
    head_block: int | None = None
    registry_records: int = 0
    proposals_added: int = 0
    votes_added: int = 0
    votes_skipped: int = 0
    error_message: str = ""
    started_at: str | None = None
    finished_at: str | None = None


class StatusOut(BaseModel):
    watermarks: dict[str, int]
    proposals: int
    votes: int
    orchestrators: int
    last_run: SyncRunOut | None = None
    scheduler_running: bool = False


class SyncOut(BaseModel):
    ok: bool
    head_block: int | None = None
    registry_records: int | None = None
    proposals_added: int = 0
    votes_added: int = 0

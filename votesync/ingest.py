"""Turns fetched governor events into stored proposals and votes.

Each stream is processed as one transaction: every new row for the fetched
range plus the advanced watermark are committed together, or not at all.
Malformed events are logged and skipped; infrastructure errors propagate and
leave the watermark where it was.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from votesync.chain import EventFetcher, RawProposalEvent, RawVoteEvent
from votesync.config import Settings
from votesync.db import Database
from votesync.errors import RegistryError
from votesync.models import PROPOSALS_STREAM, VOTES_STREAM, Proposal, Vote
from votesync.registry import RegistryCache
from votesync.utils import normalize_address
from votesync.watermarks import WatermarkStore

log = logging.getLogger(__name__)

WEI_PER_TOKEN = 10**18

SUPPORT_NO = "No"
SUPPORT_YES = "Yes"
SUPPORT_ABSTAIN = "Abstain"
_SUPPORT_CODES = {1: SUPPORT_YES, 2: SUPPORT_ABSTAIN}


# ---------------------------------------------------------------------------
# Field decoding
# ---------------------------------------------------------------------------


def derive_title(description: str | None) -> str:
    """First non-empty line of *description* with leading ``#`` markers removed."""
    for line in (description or "").splitlines():
        title = line.strip().lstrip("#").strip()
        if title:
            return title
    return ""


def decode_support(code: object) -> str:
    """Governor support code: 1 is Yes, 2 is Abstain, anything else counts as No."""
    try:
        return _SUPPORT_CODES.get(int(code), SUPPORT_NO)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return SUPPORT_NO


def wei_to_stake(weight: object) -> float:
    """Convert an 18-decimal fixed-point integer amount to a float token amount."""
    return int(weight) / WEI_PER_TOKEN  # type: ignore[call-overload]


def _proposal_key(raw_id: object) -> str | None:
    if raw_id is None or isinstance(raw_id, bool):
        return None
    try:
        return str(int(raw_id))  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class IngestStats:
    stream: str
    from_block: int
    to_block: int
    fetched: int = 0
    added: int = 0
    skipped: int = 0


@dataclass
class CycleResult:
    head_block: int
    registry_records: int | None
    proposals: IngestStats
    votes: IngestStats


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------


def build_proposal(session: Session, registry: RegistryCache, event: RawProposalEvent) -> Proposal | None:
    """Return a new Proposal for *event*, or None when it is malformed or already stored."""
    pid = _proposal_key(event.proposal_id)
    if pid is None:
        log.info("Proposal event at block %d has no id, skipping", event.block_number)
        return None
    if session.get(Proposal, pid) is not None:
        log.info("Proposal %s already exists, skipping", pid)
        return None

    proposer = normalize_address(event.proposer)
    name, avatar = registry.display_for(session, proposer)
    description = event.description or ""
    return Proposal(
        id=pid,
        title=derive_title(description),
        description=description,
        proposer_address=proposer,
        proposer_name=name,
        proposer_avatar=avatar,
        created_at=event.timestamp,
        block_number=event.block_number,
    )


def build_vote(session: Session, registry: RegistryCache, event: RawVoteEvent) -> Vote | None:
    """Return a new Vote for *event*, or None when it must be skipped.

    Votes are skipped when malformed, when their proposal is not stored, or
    when the voter already has a stored vote on that proposal.
    """
    pid = _proposal_key(event.proposal_id)
    voter = normalize_address(event.voter)
    if pid is None or not voter:
        log.info("Vote event at block %d lacks a proposal id or voter, skipping", event.block_number)
        return None
    try:
        stake = wei_to_stake(event.weight)
    except (TypeError, ValueError):
        log.info("Vote by %s on %s has malformed weight %r, skipping", voter, pid, event.weight)
        return None

    if session.get(Proposal, pid) is None:
        log.info("Proposal %s not found, skipping vote by %s", pid, voter)
        return None
    duplicate = session.execute(
        select(Vote.id).where(Vote.proposal_id == pid, Vote.voter_address == voter)
    ).first()
    if duplicate is not None:
        log.info("Vote by %s on proposal %s already stored, skipping", voter, pid)
        return None

    name, avatar = registry.display_for(session, voter)
    return Vote(
        proposal_id=pid,
        voter_address=voter,
        voter_name=name,
        voter_avatar=avatar,
        support=decode_support(event.support),
        stake_amount=stake,
        block_number=event.block_number,
    )


# ---------------------------------------------------------------------------
# Stream pipelines
# ---------------------------------------------------------------------------


def _resume_point(db: Database, stream: str, default_floor: int) -> int:
    with db.session_scope() as session:
        return WatermarkStore(session, default_floor).get(stream)


async def ingest_proposals(
    db: Database, fetcher: EventFetcher, registry: RegistryCache,
    head: int, default_floor: int,
) -> IngestStats:
    from_block = _resume_point(db, PROPOSALS_STREAM, default_floor)
    stats = IngestStats(PROPOSALS_STREAM, from_block, head)
    if from_block > head:
        log.info("Proposals already synced to block %d (head %d)", from_block - 1, head)
        return stats

    events = await fetcher.fetch_proposal_events(from_block, head)
    stats.fetched = len(events)
    with db.session_scope() as session:
        for event in events:
            proposal = build_proposal(session, registry, event)
            if proposal is None:
                stats.skipped += 1
                continue
            session.add(proposal)
            session.flush()
            stats.added += 1
            log.info("Stored proposal %s", proposal.id)
        WatermarkStore(session, default_floor).set(PROPOSALS_STREAM, head + 1)
    log.info("Proposals %d..%d: %d fetched, %d added, %d skipped",
             from_block, head, stats.fetched, stats.added, stats.skipped)
    return stats


async def ingest_votes(
    db: Database, fetcher: EventFetcher, registry: RegistryCache,
    head: int, default_floor: int,
) -> IngestStats:
    from_block = _resume_point(db, VOTES_STREAM, default_floor)
    stats = IngestStats(VOTES_STREAM, from_block, head)
    if from_block > head:
        log.info("Votes already synced to block %d (head %d)", from_block - 1, head)
        return stats

    events = await fetcher.fetch_vote_events(from_block, head)
    stats.fetched = len(events)
    with db.session_scope() as session:
        for event in events:
            vote = build_vote(session, registry, event)
            if vote is None:
                stats.skipped += 1
                continue
            session.add(vote)
            session.flush()
            stats.added += 1
            log.info("Stored vote for proposal %s by %s", vote.proposal_id, vote.voter_address)
        WatermarkStore(session, default_floor).set(VOTES_STREAM, head + 1)
    log.info("Votes %d..%d: %d fetched, %d added, %d skipped",
             from_block, head, stats.fetched, stats.added, stats.skipped)
    return stats


async def run_cycle(
    db: Database, fetcher: EventFetcher, registry: RegistryCache, settings: Settings,
) -> CycleResult:
    """Registry refresh, then proposals, then votes against one shared chain head.

    A failed registry refresh is logged and the cycle continues on cached
    records. Fetch and store failures propagate to the caller.
    """
    registry_records: int | None = None
    try:
        registry_records = await registry.refresh()
    except RegistryError as exc:
        log.warning("Registry refresh failed, keeping cached records: %s", exc)

    head = await fetcher.latest_block()
    proposals = await ingest_proposals(db, fetcher, registry, head, settings.start_block)
    votes = await ingest_votes(db, fetcher, registry, head, settings.start_block)
    return CycleResult(head_block=head, registry_records=registry_records, proposals=proposals, votes=votes)

"""Read-side queries over the synchronized store. Never touches the network."""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from votesync.models import Orchestrator, Proposal, SyncRun, Vote
from votesync.watermarks import WatermarkStore

log = logging.getLogger(__name__)

SUPPORT_VALUES = ("Yes", "No", "Abstain")

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def vote_summary(vote: Vote) -> dict[str, Any]:
    return {
        "voterAddress": vote.voter_address,
        "voterName": vote.voter_name,
        "voterAvatar": vote.voter_avatar,
        "support": vote.support,
        "stakeAmount": vote.stake_amount,
    }


def tally(votes: list[Vote]) -> dict[str, float]:
    totals = {s: 0.0 for s in SUPPORT_VALUES}
    for v in votes:
        totals[v.support] = totals.get(v.support, 0.0) + v.stake_amount
    return totals


def proposal_summary(proposal: Proposal, votes: list[Vote]) -> dict[str, Any]:
    # Stable sort keeps insertion order (vote id) among equal stakes.
    ordered = sorted(votes, key=lambda v: v.stake_amount, reverse=True)
    return {
        "id": proposal.id,
        "title": proposal.title,
        "description": proposal.description,
        "proposerAddress": proposal.proposer_address,
        "proposerName": proposal.proposer_name,
        "proposerAvatar": proposal.proposer_avatar,
        "createdAt": proposal.created_at,
        "blockNumber": proposal.block_number,
        "votes": [vote_summary(v) for v in ordered],
        "tally": tally(ordered),
    }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def _votes_for(session: Session, proposal_ids: list[str]) -> dict[str, list[Vote]]:
    grouped: dict[str, list[Vote]] = defaultdict(list)
    if not proposal_ids:
        return grouped
    rows = session.execute(
        select(Vote).where(Vote.proposal_id.in_(proposal_ids)).order_by(Vote.id)
    ).scalars().all()
    for vote in rows:
        grouped[vote.proposal_id].append(vote)
    return grouped


def list_proposals(session: Session) -> list[dict[str, Any]]:
    """All proposals, newest first, each with its votes sorted by stake (largest first)."""
    proposals = session.execute(select(Proposal)).scalars().all()
    log.debug("Retrieved %d proposals from the store", len(proposals))
    votes = _votes_for(session, [p.id for p in proposals])
    items = [proposal_summary(p, votes.get(p.id, [])) for p in proposals]
    items.sort(key=lambda item: item["createdAt"], reverse=True)
    return items


def get_proposal(session: Session, proposal_id: str) -> dict[str, Any] | None:
    proposal = session.get(Proposal, proposal_id)
    if proposal is None:
        return None
    votes = _votes_for(session, [proposal.id])
    return proposal_summary(proposal, votes.get(proposal.id, []))


def sync_run_summary(run: SyncRun) -> dict[str, Any]:
    return {
        "id": run.id, "trigger": run.trigger, "status": run.status,
        "head_block": run.head_block, "registry_records": run.registry_records,
        "proposals_added": run.proposals_added, "votes_added": run.votes_added,
        "votes_skipped": run.votes_skipped, "error_message": run.error_message,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "finished_at": run.finished_at.isoformat() if run.finished_at else None,
    }


def sync_status(session: Session, default_floor: int) -> dict[str, Any]:
    def count(model) -> int:
        return session.execute(select(func.count()).select_from(model)).scalar() or 0

    last_run = session.execute(
        select(SyncRun).order_by(SyncRun.id.desc()).limit(1)
    ).scalars().first()
    return {
        "watermarks": WatermarkStore(session, default_floor).all(),
        "proposals": count(Proposal),
        "votes": count(Vote),
        "orchestrators": count(Orchestrator),
        "last_run": sync_run_summary(last_run) if last_run else None,
    }

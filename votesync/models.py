from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Stream names double as primary keys of the sync_state table.
PROPOSALS_STREAM = "proposals"
VOTES_STREAM = "votes"
STREAMS = (PROPOSALS_STREAM, VOTES_STREAM)


class Base(DeclarativeBase):
    pass


class Proposal(Base):
    __tablename__ = "proposals"

    # uint256 ids do not fit in SQLite integers; stored as their decimal string.
    id: Mapped[str] = mapped_column(String(80), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    proposer_address: Mapped[str] = mapped_column(String(42), default="")
    proposer_name: Mapped[str] = mapped_column(String(300), default="")
    proposer_avatar: Mapped[str] = mapped_column(String(500), default="")
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)


class Vote(Base):
    __tablename__ = "votes"
    __table_args__ = (UniqueConstraint("proposal_id", "voter_address", name="uq_votes_proposal_voter"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    proposal_id: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    voter_address: Mapped[str] = mapped_column(String(42), nullable=False)
    voter_name: Mapped[str] = mapped_column(String(300), default="")
    voter_avatar: Mapped[str] = mapped_column(String(500), default="")
    support: Mapped[str] = mapped_column(String(10), nullable=False)  # "Yes" | "No" | "Abstain"
    stake_amount: Mapped[float] = mapped_column(Float, default=0.0)
    block_number: Mapped[int] = mapped_column(BigInteger, default=0)


class Orchestrator(Base):
    __tablename__ = "orchestrators"

    eth_address: Mapped[str] = mapped_column(String(42), primary_key=True)
    total_stake: Mapped[float] = mapped_column(Float, default=0.0)
    reward_cut: Mapped[float] = mapped_column(Float, default=0.0)
    fee_cut: Mapped[float] = mapped_column(Float, default=0.0)
    activation_status: Mapped[bool] = mapped_column(Boolean, default=False)
    name: Mapped[str] = mapped_column(String(300), default="")
    service_uri: Mapped[str] = mapped_column(String(500), default="")
    avatar: Mapped[str] = mapped_column(String(500), default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class SyncState(Base):
    __tablename__ = "sync_state"

    stream: Mapped[str] = mapped_column(String(30), primary_key=True)
    next_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class SyncRun(Base):
    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trigger: Mapped[str] = mapped_column(String(20), default="manual")  # startup | interval | manual
    status: Mapped[str] = mapped_column(String(20), default="running")  # running | ok | failed
    head_block: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    registry_records: Mapped[int] = mapped_column(Integer, default=0)
    proposals_added: Mapped[int] = mapped_column(Integer, default=0)
    votes_added: Mapped[int] = mapped_column(Integer, default=0)
    votes_skipped: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str] = mapped_column(Text, default="")
    started_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

"""Governor event fetcher backed by a JSON-RPC endpoint."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, TypeVar

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3

from votesync.abi import GOVERNOR_ABI
from votesync.errors import FetchError

log = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_BLOCK_SPAN = 500_000


@dataclass(frozen=True)
class RawProposalEvent:
    proposal_id: int | None
    proposer: str | None
    description: str | None
    block_number: int
    timestamp: int
    log_index: int = 0


@dataclass(frozen=True)
class RawVoteEvent:
    proposal_id: int | None
    voter: str | None
    support: int | None
    weight: int | None
    block_number: int
    log_index: int = 0


def _arg(event: Any, name: str) -> Any:
    args = event.get("args") if hasattr(event, "get") else getattr(event, "args", None)
    if args is None:
        return None
    if hasattr(args, "get"):
        return args.get(name)
    return getattr(args, name, None)


def _position(event: Any) -> tuple[int, int]:
    return int(event["blockNumber"]), int(event.get("logIndex") or 0)


def block_windows(from_block: int, to_block: int, span: int) -> list[tuple[int, int]]:
    """Split the inclusive range ``[from_block, to_block]`` into windows of at most *span* blocks."""
    if from_block > to_block:
        return []
    span = max(1, span)
    return [
        (start, min(start + span - 1, to_block))
        for start in range(from_block, to_block + 1, span)
    ]


class EventFetcher:
    """Reads ProposalCreated and VoteCast logs from the governor contract.

    Pass *w3* to reuse an existing client (tests inject a fake one).
    """

    def __init__(
        self,
        rpc_url: str,
        governor_address: str,
        max_block_span: int = DEFAULT_MAX_BLOCK_SPAN,
        timeout: float = 30.0,
        w3: AsyncWeb3 | None = None,
    ):
        self.rpc_url = rpc_url
        self.max_block_span = max_block_span
        if w3 is None:
            w3 = AsyncWeb3(AsyncHTTPProvider(
                rpc_url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)},
            ))
        self.w3 = w3
        self.contract = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(governor_address), abi=GOVERNOR_ABI,
        )
        self._timestamps: dict[int, int] = {}

    async def _call(self, what: str, aw: Awaitable[T]) -> T:
        try:
            return await aw
        except Exception as exc:
            raise FetchError(f"RPC {what} failed on {self.rpc_url}: {exc}") from exc

    async def latest_block(self) -> int:
        head = await self._call("eth_blockNumber", self.w3.eth.block_number)
        return int(head)

    async def block_timestamp(self, block_number: int) -> int:
        cached = self._timestamps.get(block_number)
        if cached is not None:
            return cached
        block = await self._call(f"eth_getBlockByNumber({block_number})", self.w3.eth.get_block(block_number))
        ts = int(block["timestamp"])
        self._timestamps[block_number] = ts
        return ts

    async def _get_logs(self, event_name: str, from_block: int, to_block: int) -> list[Any]:
        event = getattr(self.contract.events, event_name)
        logs: list[Any] = []
        for start, end in block_windows(from_block, to_block, self.max_block_span):
            chunk = await self._call(
                f"eth_getLogs({event_name}, {start}..{end})",
                event.get_logs(from_block=start, to_block=end),
            )
            logs.extend(chunk)
        logs.sort(key=_position)
        log.debug("Fetched %d %s logs in blocks %d..%d", len(logs), event_name, from_block, to_block)
        return logs

    async def fetch_proposal_events(self, from_block: int, to_block: int) -> list[RawProposalEvent]:
        out: list[RawProposalEvent] = []
        for event in await self._get_logs("ProposalCreated", from_block, to_block):
            block_number, log_index = _position(event)
            out.append(RawProposalEvent(
                proposal_id=_arg(event, "proposalId"),
                proposer=_arg(event, "proposer"),
                description=_arg(event, "description"),
                block_number=block_number,
                timestamp=await self.block_timestamp(block_number),
                log_index=log_index,
            ))
        return out

    async def fetch_vote_events(self, from_block: int, to_block: int) -> list[RawVoteEvent]:
        out: list[RawVoteEvent] = []
        for event in await self._get_logs("VoteCast", from_block, to_block):
            block_number, log_index = _position(event)
            out.append(RawVoteEvent(
                proposal_id=_arg(event, "proposalId"),
                voter=_arg(event, "voter"),
                support=_arg(event, "support"),
                weight=_arg(event, "weight"),
                block_number=block_number,
                log_index=log_index,
            ))
        return out

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Generator

from fastapi import Depends, FastAPI, HTTPException, Request
from sqlalchemy.orm import Session

from votesync import services
from votesync.chain import EventFetcher
from votesync.config import Settings, get_settings
from votesync.db import Database
from votesync.registry import RegistryCache
from votesync.scheduler import SyncScheduler
from votesync.schemas import ProposalOut, StatusOut, SyncOut

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def db_session(request: Request) -> Generator[Session, None, None]:
    yield from request.app.state.db.session_generator()


def get_scheduler(request: Request) -> SyncScheduler:
    return request.app.state.scheduler


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    *,
    db: Database | None = None,
    fetcher: EventFetcher | None = None,
    registry: RegistryCache | None = None,
    run_scheduler: bool = True,
) -> FastAPI:
    """Build the API. Collaborators not passed in are created from settings at startup.

    A Database passed in is opened if needed but left open on shutdown; one
    created here is closed with the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or get_settings()
        owns_db = db is None
        store = db if db is not None else Database.for_path(cfg.database_path)
        store.open()
        chain = fetcher or EventFetcher(
            cfg.rpc_url, cfg.governor_address,
            max_block_span=cfg.max_block_span, timeout=cfg.request_timeout_seconds,
        )
        cache = registry or RegistryCache(store, cfg.registry_url, timeout=cfg.request_timeout_seconds)
        scheduler = SyncScheduler(store, chain, cache, cfg)

        app.state.settings = cfg
        app.state.db = store
        app.state.scheduler = scheduler
        if run_scheduler:
            scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop(cancel=True)
            if owns_db:
                store.close()

    app = FastAPI(
        title="votesync",
        version="0.1.0",
        description=(
            "Read API over a locally synchronized copy of governor proposals and votes, "
            "enriched with orchestrator registry metadata."
        ),
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Proposals", "description": "Synchronized proposals with their votes."},
            {"name": "Sync", "description": "Sync status and manual triggers."},
        ],
    )

    @app.get("/api/proposals", response_model=list[ProposalOut],
             tags=["Proposals"], summary="List proposals (newest first) with votes sorted by stake")
    async def list_proposals(session: Session = Depends(db_session)):
        return services.list_proposals(session)

    @app.get("/api/proposals/{proposal_id}", response_model=ProposalOut,
             tags=["Proposals"], summary="Get one proposal with its votes")
    async def get_proposal(proposal_id: str, session: Session = Depends(db_session)):
        item = services.get_proposal(session, proposal_id)
        if item is None:
            raise HTTPException(404, "Proposal not found")
        return item

    @app.get("/api/status", response_model=StatusOut,
             tags=["Sync"], summary="Watermarks, row counts and the latest sync run")
    async def get_status(
        request: Request,
        session: Session = Depends(db_session),
        scheduler: SyncScheduler = Depends(get_scheduler),
    ):
        status = services.sync_status(session, request.app.state.settings.start_block)
        status["scheduler_running"] = scheduler.running
        return status

    @app.post("/api/sync", response_model=SyncOut,
              tags=["Sync"], summary="Run one sync cycle now (waits for any cycle in progress)")
    async def trigger_sync(scheduler: SyncScheduler = Depends(get_scheduler)):
        result = await scheduler.run_once("manual")
        if result is None:
            return {"ok": False}
        return {
            "ok": True,
            "head_block": result.head_block,
            "registry_records": result.registry_records,
            "proposals_added": result.proposals.added,
            "votes_added": result.votes.added,
        }

    return app


app = create_app()


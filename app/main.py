from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

import httpx
from fastapi import FastAPI, HTTPException, Query, Request

from app.settings import Settings
from health.health import get_feed_state
from ingest.scheduler import build_dispatcher, build_reconciler, run_scheduler
from normalize.models import STATUSES, record_to_dict
from realtime.bus import EventBus
from realtime.sse import router as sse_router
from reconcile.reconciler import Reconciler
from store.db import open_database
from store.disasters import DisasterRepository


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    db = open_database(settings.db_path)
    try:
        bus = EventBus()
        async with httpx.AsyncClient(follow_redirects=True) as client:
            dispatcher = build_dispatcher(settings=settings, bus=bus, client=client)
            try:
                reconciler = build_reconciler(
                    settings=settings, db=db, client=client, dispatcher=dispatcher
                )
                app.state.settings = settings
                app.state.db = db
                app.state.bus = bus
                app.state.repo = DisasterRepository(db)
                app.state.reconciler = reconciler

                scheduler_task = asyncio.create_task(
                    run_scheduler(reconciler=reconciler, poll_seconds=settings.poll_seconds)
                )
                try:
                    yield
                finally:
                    scheduler_task.cancel()
                    with suppress(asyncio.CancelledError):
                        await scheduler_task
            finally:
                await dispatcher.aclose()
    finally:
        with db.lock:
            db.conn.close()


app = FastAPI(lifespan=lifespan)
app.include_router(sse_router)


@app.post("/disasters/refresh")
async def refresh_disasters(request: Request) -> dict:
    reconciler: Reconciler = request.app.state.reconciler
    return await reconciler.run_pass()


@app.get("/disasters")
def list_disasters(request: Request, status: str | None = Query(default=None)) -> list[dict]:
    repo: DisasterRepository = request.app.state.repo
    if status is None:
        records = repo.find_all()
    elif status in STATUSES:
        records = repo.find_by_status([status])
    else:
        raise HTTPException(status_code=400, detail=f"unknown status: {status}")
    return [record_to_dict(r) for r in records]


@app.get("/disasters/urgent")
def urgent_disasters(request: Request) -> list[dict]:
    repo: DisasterRepository = request.app.state.repo
    return [record_to_dict(r) for r in repo.find_urgent()]


@app.get("/disasters/{disaster_id}")
def get_disaster(request: Request, disaster_id: str) -> dict:
    repo: DisasterRepository = request.app.state.repo
    record = repo.find_one(disaster_id)
    if record is None:
        raise HTTPException(status_code=404, detail="disaster not found")
    return record_to_dict(record)


@app.get("/health/feed")
def feed_health(request: Request) -> dict:
    reconciler: Reconciler = request.app.state.reconciler
    state = get_feed_state(request.app.state.db, reconciler.feed_id)
    return {"running": reconciler.running, "state": state}

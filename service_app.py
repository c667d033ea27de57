from __future__ import annotations

import asyncio
import json
import os

from fastapi import Body, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from exam_pipeline.db.async_store import AsyncSQLAlchemyStore
from exam_pipeline.errors import AuthorizationError
from exam_pipeline.task.reconcile import reconcile_batch_task
from exam_pipeline.utils.logging_config import get_logger
from exam_pipeline.utils.types import Catalog
from exam_pipeline.workflow.access import AllowAllAuthorizer, Authorizer, CreatorAuthorizer
from exam_pipeline.workflow.batch import UnknownCatalogError, run_batch_request
from exam_pipeline.workflow.events import EventCollector, LoggingObserver, RedisProgressObserver
from exam_pipeline.workflow.utils.request_models import BatchRequest, batch_settings
from exam_pipeline.workflow.utils.settings import default_settings

logger = get_logger("exam_pipeline.service")

PROGRESS_REDIS_URL = os.getenv("PROGRESS_REDIS_URL", "redis://localhost:6379/2")
PROGRESS_EVENTS = os.getenv("PROGRESS_EVENTS", "").lower() in {"1", "true", "yes"}
_DONE_STATUSES = {"COMPLETED", "FAILED", "ERROR"}
PROGRESS_IDLE_SECONDS = float(os.getenv("PROGRESS_IDLE_SECONDS", "10"))
progress_client: Redis | None = None

app = FastAPI(title="Exam Paper Reconciler")


def load_authorizer() -> Authorizer:
    """Creator map from ``CATALOG_CREATORS`` (JSON ``{catalog_id: [user, ...]}``); open when unset."""
    raw = os.getenv("CATALOG_CREATORS", "").strip()
    if not raw:
        return AllowAllAuthorizer()
    return CreatorAuthorizer(json.loads(raw))


async def get_progress_client() -> Redis:
    global progress_client
    if progress_client is None:
        progress_client = Redis.from_url(PROGRESS_REDIS_URL, decode_responses=True)
    return progress_client


@app.get("/health")
async def health() -> JSONResponse:
    return JSONResponse({"status": "ok"})


@app.post("/batches")
async def create_batch(request: BatchRequest = Body(...)) -> JSONResponse:
    settings = batch_settings(request, default_settings())
    authorizer = load_authorizer()

    if request.run_async:
        catalog = request.catalog.to_catalog() if request.catalog else Catalog(catalog_id=request.catalog_id)
        try:
            await authorizer.authorize(request.principal, catalog)
        except AuthorizationError as exc:
            raise HTTPException(status_code=403, detail=str(exc)) from exc
        reconcile_batch_task.apply_async(args=[request.model_dump(mode="json"), None], task_id=settings.job_id)
        logger.info("Queued batch | job=%s papers=%s markschemes=%s", settings.job_id, len(request.papers), len(request.markschemes))
        return JSONResponse({"job_id": settings.job_id, "status": "queued"}, status_code=202)

    collector = EventCollector()
    observers = [collector, LoggingObserver()]
    if PROGRESS_EVENTS:
        observers.append(RedisProgressObserver(PROGRESS_REDIS_URL))
    try:
        report = await run_batch_request(request, settings, authorizer=authorizer, observers=observers)
    except AuthorizationError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except UnknownCatalogError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except asyncio.TimeoutError as exc:
        raise HTTPException(status_code=504, detail=f"Batch {settings.job_id} timed out") from exc
    payload = report.to_payload()
    payload["events"] = len(collector.events)
    return JSONResponse(payload)


@app.get("/batches/{job_id}")
async def get_batch(job_id: str) -> JSONResponse:
    store = AsyncSQLAlchemyStore(default_settings().db_url)
    await store.init_models()
    try:
        stored = await store.load_batch_report(job_id)
    finally:
        await store.close()
    if stored is None:
        raise HTTPException(status_code=404, detail=f"No batch {job_id}")
    return JSONResponse(stored)


def _is_final(fields: dict) -> bool:
    return str(fields.get("status", "")).upper() in _DONE_STATUSES


def _decode_event(data: str | bytes, job_id: str) -> dict:
    try:
        event = json.loads(data)
    except (TypeError, json.JSONDecodeError):
        logger.warning("Undecodable progress message | job=%s", job_id)
        event = {"raw": data}
    return {"type": "event", "job_id": job_id, **event}


@app.websocket("/ws/progress/{job_id}")
async def progress_ws(websocket: WebSocket, job_id: str):
    """Relay ``progress:<job_id>`` events; idle periods send the ``job:<job_id>`` hash as a heartbeat."""
    await websocket.accept()
    redis = await get_progress_client()
    pubsub = redis.pubsub()
    await pubsub.subscribe(f"progress:{job_id}")
    try:
        state = await redis.hgetall(f"job:{job_id}")
        if state:
            await websocket.send_json({"type": "snapshot", "job_id": job_id, **state})
        finished = _is_final(state)
        while not finished:
            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=PROGRESS_IDLE_SECONDS)
            if not message or not message.get("data"):
                state = await redis.hgetall(f"job:{job_id}")
                await websocket.send_json({"type": "heartbeat", "job_id": job_id, **state})
                continue
            event = _decode_event(message["data"], job_id)
            await websocket.send_json(event)
            finished = _is_final(event)
    except WebSocketDisconnect:
        logger.info("Progress client left | job=%s", job_id)
    finally:
        await pubsub.unsubscribe()
        await pubsub.aclose()

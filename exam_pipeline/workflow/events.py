from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from redis.asyncio import Redis as AsyncRedis

from exam_pipeline.utils.logging_config import get_logger

logger = get_logger(__name__)

PROGRESS_REDIS_URL = os.getenv("PROGRESS_REDIS_URL", "redis://localhost:6379/2")


class EventKind(str, Enum):
    TASK_STARTED = "task_started"
    TASK_RETRIED = "task_retried"
    TASK_SUCCEEDED = "task_succeeded"
    TASK_FAILED = "task_failed"
    RECORD_RESOLVED = "record_resolved"
    RECORD_DROPPED = "record_dropped"
    JOIN_COMPLETED = "join_completed"
    RECORD_PERSISTED = "record_persisted"
    PERSIST_FAILED = "persist_failed"
    BATCH_COMPLETED = "batch_completed"


_WARNING_KINDS = {EventKind.TASK_RETRIED, EventKind.RECORD_DROPPED, EventKind.PERSIST_FAILED}
_ERROR_KINDS = {EventKind.TASK_FAILED}


@dataclass(frozen=True)
class PipelineEvent:
    kind: EventKind
    job_id: Optional[str]
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {"event": self.kind.value, "job_id": self.job_id, "timestamp": self.timestamp, **self.payload}


Observer = Callable[[PipelineEvent], None]


class EventBus:
    """Fan structured pipeline events out to subscribed observers.

    Observers run synchronously in emit order. An observer that raises is logged
    and skipped; it never interrupts the pipeline.
    """

    def __init__(self, observers: Iterable[Observer] = ()) -> None:
        self._observers: List[Observer] = list(observers)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)

        def _unsubscribe() -> None:
            self.unsubscribe(observer)

        return _unsubscribe

    def unsubscribe(self, observer: Observer) -> None:
        try:
            self._observers.remove(observer)
        except ValueError:
            pass

    def emit(self, kind: EventKind, /, job_id: Optional[str] = None, **payload: Any) -> PipelineEvent:
        event = PipelineEvent(kind=kind, job_id=job_id, payload=payload)
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                logger.warning("Event observer failed | kind=%s job=%s", kind.value, job_id, exc_info=True)
        return event

    async def drain(self) -> None:
        """Wait for observers that buffer events (see :class:`RedisProgressObserver`) to flush."""
        for observer in list(self._observers):
            drain = getattr(observer, "drain", None)
            if drain is None:
                continue
            try:
                await drain()
            except Exception:
                logger.warning("Event observer drain failed | observer=%s", type(observer).__name__, exc_info=True)


class LoggingObserver:
    """Writes every event to the standard logger; retries and drops at WARNING."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.log = log or get_logger("exam_pipeline.events")

    def __call__(self, event: PipelineEvent) -> None:
        if event.kind in _ERROR_KINDS:
            level = logging.ERROR
        elif event.kind in _WARNING_KINDS:
            level = logging.WARNING
        else:
            level = logging.INFO
        details = " ".join(f"{key}={value}" for key, value in event.payload.items())
        self.log.log(level, "Pipeline event | job=%s event=%s %s", event.job_id, event.kind.value, details)


class EventCollector:
    """Keeps events in memory; used by inline service runs and tests."""

    def __init__(self) -> None:
        self.events: List[PipelineEvent] = []

    def __call__(self, event: PipelineEvent) -> None:
        self.events.append(event)

    def kinds(self) -> List[EventKind]:
        return [event.kind for event in self.events]

    def of_kind(self, kind: EventKind) -> List[PipelineEvent]:
        return [event for event in self.events if event.kind == kind]


class RedisProgressObserver:
    """Mirror events to the ``job:<id>`` hash and the ``progress:<id>`` pubsub channel.

    ``emit`` runs inside the pipeline's coroutines, so events are only queued here; a
    background task on the running loop writes them to Redis in emit order. Call
    :meth:`drain` (``EventBus.drain`` does) before the loop ends to flush the queue.
    """

    def __init__(self, redis_url: str | None = None, client: AsyncRedis | None = None) -> None:
        self.client = client if client is not None else AsyncRedis.from_url(redis_url or PROGRESS_REDIS_URL, decode_responses=True)
        self._queue: asyncio.Queue[PipelineEvent] | None = None
        self._writer: asyncio.Task[None] | None = None

    def __call__(self, event: PipelineEvent) -> None:
        if not event.job_id:
            return
        if self._writer is None or self._writer.done():
            loop = asyncio.get_running_loop()
            self._queue = asyncio.Queue()
            self._writer = loop.create_task(self._write_queued())
        self._queue.put_nowait(event)  # type: ignore[union-attr]

    async def write(self, event: PipelineEvent) -> None:
        payload = event.to_dict()
        if event.kind == EventKind.BATCH_COMPLETED:
            payload["status"] = "COMPLETED" if event.payload.get("success") else "FAILED"
        else:
            payload.setdefault("status", "RUNNING")
        payload["current_step"] = event.kind.value
        fields = {k: str(v) for k, v in payload.items() if v is not None and not isinstance(v, (list, dict))}
        await self.client.hset(f"job:{event.job_id}", mapping=fields)
        await self.client.publish(f"progress:{event.job_id}", json.dumps(payload, default=str))

    async def _write_queued(self) -> None:
        queue = self._queue
        while True:
            event = await queue.get()  # type: ignore[union-attr]
            try:
                await self.write(event)
            except Exception:
                logger.warning("Progress write failed | job=%s event=%s", event.job_id, event.kind.value, exc_info=True)
            finally:
                queue.task_done()  # type: ignore[union-attr]

    async def drain(self) -> None:
        if self._queue is None or self._writer is None:
            return
        if not self._writer.done():
            await self._queue.join()
            self._writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._writer
        self._queue = None
        self._writer = None


__all__ = [
    "EventBus",
    "EventCollector",
    "EventKind",
    "LoggingObserver",
    "Observer",
    "PipelineEvent",
    "RedisProgressObserver",
]

from __future__ import annotations

import asyncio
import json
import logging
import threading

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse

from device.aggregator import HistoryEntry
from device.harness import GestureMonitor
from device.session import SessionPhase
from oracle.types import Classification

from .schemas import HistoryEntryModel, HistoryResponse, StateResponse

logger = logging.getLogger(__name__)

_QUEUE_SHUTDOWN = "__shutdown__"


class ResultHub:
    """Fans ingested results out to server-sent-event subscribers.

    Results arrive on the inference worker thread, so publishing hops onto
    each subscriber's event loop with ``call_soon_threadsafe``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: set[tuple[asyncio.AbstractEventLoop, asyncio.Queue[str]]] = set()
        self._closing = False

    def subscribe(self) -> asyncio.Queue[str]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[str] = asyncio.Queue()
        with self._lock:
            if self._closing:
                queue.put_nowait(_QUEUE_SHUTDOWN)
                return queue
            self._subscribers.add((loop, queue))
            total = len(self._subscribers)
        logger.debug("ResultHub subscribed total=%d", total)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[str]) -> None:
        with self._lock:
            self._subscribers = {entry for entry in self._subscribers if entry[1] is not queue}
            remaining = len(self._subscribers)
        logger.debug("ResultHub unsubscribed remaining=%d", remaining)

    def publish(self, message: dict[str, object]) -> None:
        with self._lock:
            if self._closing:
                return
            targets = list(self._subscribers)
        payload = json.dumps(message)
        logger.debug("Publishing result subscribers=%d payload=%s", len(targets), payload)
        for loop, queue in targets:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, payload)
            except RuntimeError:
                # subscriber's loop already closed
                self.unsubscribe(queue)

    def close(self) -> None:
        with self._lock:
            self._closing = True
            targets = list(self._subscribers)
            self._subscribers.clear()
        logger.info("ResultHub closing queues=%d", len(targets))
        for loop, queue in targets:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, _QUEUE_SHUTDOWN)
            except RuntimeError:
                continue


def _result_event(classification: Classification, entry: HistoryEntry | None) -> dict[str, object]:
    return {
        "event": "result",
        "accepted": entry is not None,
        "timestamp_ms": entry.timestamp_ms if entry is not None else None,
        "result": classification.to_dict(),
    }


def create_app(monitor: GestureMonitor) -> FastAPI:
    app = FastAPI(title="Gesture Monitor API", version="0.1.0")
    hub = ResultHub()
    monitor.aggregator.add_listener(
        lambda classification, entry: hub.publish(_result_event(classification, entry))
    )

    app.state.monitor = monitor
    app.state.result_hub = hub

    logger.info(
        "API server initialised interval=%.2fs history_capacity=%d",
        monitor.scheduler.interval_seconds,
        monitor.aggregator.capacity,
    )

    def _state() -> StateResponse:
        return StateResponse(**monitor.snapshot().to_dict())

    @app.get("/health", response_model=dict[str, str])
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/v1/state", response_model=StateResponse)
    def fetch_state() -> StateResponse:
        return _state()

    @app.get("/v1/history", response_model=HistoryResponse)
    def fetch_history() -> HistoryResponse:
        entries = [HistoryEntryModel(**entry.to_dict()) for entry in monitor.aggregator.history]
        return HistoryResponse(capacity=monitor.aggregator.capacity, entries=entries)

    @app.post("/v1/session/start", response_model=StateResponse)
    def start_session() -> StateResponse:
        if monitor.session.phase is SessionPhase.FAILED:
            raise HTTPException(
                status_code=409,
                detail=monitor.session.error or "Session failed; reset before starting",
            )
        monitor.start()
        if monitor.session.phase is SessionPhase.FAILED:
            raise HTTPException(status_code=503, detail=monitor.session.error)
        return _state()

    @app.post("/v1/session/stop", response_model=StateResponse)
    def stop_session() -> StateResponse:
        monitor.stop()
        return _state()

    @app.post("/v1/session/reset", response_model=StateResponse)
    def reset_session() -> StateResponse:
        if monitor.session.phase is not SessionPhase.FAILED:
            raise HTTPException(status_code=409, detail="Session has not failed; nothing to reset")
        if not monitor.retry_device():
            raise HTTPException(
                status_code=503,
                detail=monitor.session.error or "Camera access denied or unavailable.",
            )
        return _state()

    @app.get("/v1/results/stream")
    async def results_stream(request: Request) -> StreamingResponse:
        queue = hub.subscribe()
        logger.info("Result stream connected")

        async def event_generator():
            shutdown_event: asyncio.Event | None = getattr(app.state, "shutdown_event", None)
            try:
                yield 'data: {"event": "connected"}\n\n'
                while True:
                    try:
                        message = await asyncio.wait_for(queue.get(), timeout=0.5)
                    except asyncio.TimeoutError:
                        if shutdown_event is not None and shutdown_event.is_set():
                            break
                        if await request.is_disconnected():
                            break
                        continue
                    if message == _QUEUE_SHUTDOWN:
                        break
                    yield f"data: {message}\n\n"
            except asyncio.CancelledError:
                logger.debug("Result stream task cancelled")
            finally:
                hub.unsubscribe(queue)
                logger.info("Result stream disconnected")

        return StreamingResponse(event_generator(), media_type="text/event-stream")

    @app.on_event("startup")
    async def _init_shutdown_event() -> None:
        if getattr(app.state, "shutdown_event", None) is None:
            app.state.shutdown_event = asyncio.Event()

    @app.on_event("shutdown")
    async def _shutdown_streams() -> None:
        shutdown_event: asyncio.Event | None = getattr(app.state, "shutdown_event", None)
        if shutdown_event is not None:
            shutdown_event.set()
        hub.close()

    return app


__all__ = ["ResultHub", "create_app"]

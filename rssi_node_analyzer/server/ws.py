"""WebSocket handlers for streaming telemetry frames."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import FrozenSet, Optional
import uuid

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from rssi_node_analyzer.engine import Engine
from rssi_node_analyzer.protocol import (
    FRAME_TYPES,
    EngineErrorFrame,
    EngineFrame,
    EngineFrequencyFrame,
    EngineMonitorFrame,
    EngineStatusFrame,
    EngineSweepFrame,
    engine_frame_to_wire,
    engine_status_to_wire,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Sweep frames arrive every 100 ms, monitor frames every 50 ms.
STREAM_QUEUE_SIZE = 64

_FRAME_TYPE_NAMES = {
    EngineStatusFrame: "status",
    EngineSweepFrame: "sweep",
    EngineMonitorFrame: "monitor",
    EngineFrequencyFrame: "frequency",
    EngineErrorFrame: "error",
}


def parse_frame_filter(raw: Optional[str]) -> FrozenSet[str]:
    """Parse a comma separated ``types`` query value; empty means every type."""

    if not raw:
        return frozenset(FRAME_TYPES)
    wanted = frozenset(part.strip() for part in raw.split(",") if part.strip())
    unknown = wanted - FRAME_TYPES
    if unknown:
        raise ValueError(f"Unknown frame types: {', '.join(sorted(unknown))}")
    return wanted


@dataclass
class _ClientSession:
    websocket: WebSocket
    queue: asyncio.Queue[EngineFrame]
    session_id: uuid.UUID
    frame_types: FrozenSet[str] = field(default_factory=lambda: frozenset(FRAME_TYPES))
    seq: int = 0

    def next_seq(self) -> int:
        self.seq += 1
        return self.seq

    def wants(self, frame: EngineFrame) -> bool:
        return _FRAME_TYPE_NAMES.get(type(frame)) in self.frame_types


class _StreamHub:
    """
    Fan out engine frames to WebSocket clients.

    The hub is attached to the engine only while at least one client is
    registered, so frames are never queued for an idle event loop.
    """

    def __init__(self, engine: Engine, loop: asyncio.AbstractEventLoop) -> None:
        self._engine = engine
        self._loop = loop
        self._clients: list[_ClientSession] = []
        self._attached = False

    def register(self, session: _ClientSession) -> None:
        self._clients.append(session)
        if not self._attached:
            self._engine.subscribe(self.publish)
            self._attached = True

    def unregister(self, session: _ClientSession) -> None:
        if session in self._clients:
            self._clients.remove(session)
        if not self._clients and self._attached:
            self._engine.unsubscribe(self.publish)
            self._attached = False

    def publish(self, frame: EngineFrame) -> None:
        # Engine callbacks run on the acquisition worker, so hop back to the event loop.
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._enqueue_frame, frame)

    def _enqueue_frame(self, frame: EngineFrame) -> None:
        for session in list(self._clients):
            if not session.wants(frame):
                continue
            try:
                session.queue.put_nowait(frame)
            except asyncio.QueueFull:
                # Slow clients lose frames; the drop shows up in the status counter.
                self._engine.record_frame_dropped()


def _get_hub(websocket: WebSocket) -> _StreamHub:
    app = websocket.app
    hub = getattr(app.state, "ws_hub", None)
    if hub is None:
        hub = _StreamHub(app.state.engine, asyncio.get_running_loop())
        app.state.ws_hub = hub
    return hub


async def _pump(session: _ClientSession) -> None:
    while True:
        frame = await session.queue.get()
        payload = engine_frame_to_wire(frame, seq=session.next_seq(), session_id=session.session_id)
        await session.websocket.send_json(payload)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    # Clients never send anything; reading only notices the close.
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/ws/stream")
async def stream(websocket: WebSocket, types: Optional[str] = Query(default=None)) -> None:
    try:
        frame_types = parse_frame_filter(types)
    except ValueError as exc:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=str(exc))
        return

    await websocket.accept()
    session = _ClientSession(
        websocket=websocket,
        queue=asyncio.Queue(maxsize=STREAM_QUEUE_SIZE),
        session_id=uuid.uuid4(),
        frame_types=frame_types,
    )
    engine: Engine = websocket.app.state.engine

    # Every client starts from the current status, whatever its filter.
    first = engine_status_to_wire(engine.status(), seq=session.next_seq(), session_id=session.session_id)
    await websocket.send_json(first)
    hub = _get_hub(websocket)
    hub.register(session)
    logger.debug("Stream client %s joined (%s)", session.session_id, ",".join(sorted(frame_types)))

    sender = asyncio.create_task(_pump(session))
    receiver = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                raise exc
    finally:
        sender.cancel()
        receiver.cancel()
        hub.unregister(session)
        logger.debug("Stream client %s left", session.session_id)

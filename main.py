# main.py

import asyncio
import contextlib
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from config import Settings, settings
from pairing import Matchmaker, Outbound

logging.basicConfig(level=settings.log_level, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

SERVER_NAME = "Omegle Video Chat Signaling Server"


class ConnectionManager:
    """Owns the sockets and serializes every transition behind one lock.

    Each socket has its own outbound queue drained by a writer task.
    Events are queued while the lock is held, so every client sees its
    frames in transition order; the actual sends happen outside the lock.
    """

    def __init__(self, matchmaker: Matchmaker):
        self.matchmaker = matchmaker
        self.sockets: Dict[str, WebSocket] = {}
        self.queues: Dict[str, asyncio.Queue] = {}
        self.writers: Dict[str, asyncio.Task] = {}
        self.lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> str:
        await websocket.accept()
        client_id = uuid.uuid4().hex
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait({"type": "connected", "clientId": client_id})
        async with self.lock:
            self.sockets[client_id] = websocket
            self.queues[client_id] = queue
            self.writers[client_id] = asyncio.create_task(self.writer(client_id, websocket, queue))
            self.matchmaker.on_connect(client_id)
        return client_id

    async def dispatch(self, client_id: str, raw: str):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug(f"Dropped non-JSON frame from {client_id}")
            return
        if not isinstance(data, dict):
            logger.debug(f"Dropped non-object frame from {client_id}")
            return

        msg_type = data.get("type")
        async with self.lock:
            if msg_type == "ready":
                events = self.matchmaker.on_ready(client_id)
            elif msg_type == "signal":
                events = self.matchmaker.on_signal(client_id, data.get("to"), data.get("data"))
            elif msg_type == "chatMessage":
                events = self.matchmaker.on_chat_message(client_id, data.get("message"))
            elif msg_type == "leave":
                events = self.matchmaker.on_leave(client_id)
            else:
                logger.debug(f"Dropped frame of unknown type {msg_type!r} from {client_id}")
                events = []
            self.enqueue(events)

    async def disconnect(self, client_id: str):
        async with self.lock:
            self.enqueue(self.matchmaker.on_disconnect(client_id))
            self.sockets.pop(client_id, None)
            self.queues.pop(client_id, None)
            writer = self.writers.pop(client_id, None)
        if writer is not None:
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer
        logger.info(f"Client disconnected: {client_id}")

    async def reap(self):
        async with self.lock:
            self.enqueue(self.matchmaker.reap())

    def enqueue(self, events: List[Outbound]):
        for event in events:
            queue = self.queues.get(event.to)
            if queue is not None:
                queue.put_nowait({"type": event.type, **event.payload})

    async def writer(self, client_id: str, websocket: WebSocket, queue: asyncio.Queue):
        while True:
            frame = await queue.get()
            try:
                await websocket.send_json(frame)
            except Exception as e:
                # the socket's own receive loop handles its disconnect
                logger.warning(f"Send of {frame['type']} to {client_id} failed: {e}")
            finally:
                queue.task_done()

    def stats(self) -> Dict[str, Any]:
        return self.matchmaker.state.stats()


async def reaper(manager: ConnectionManager, interval: float):
    while True:
        await asyncio.sleep(interval)
        await manager.reap()


def create_app(config: Optional[Settings] = None) -> FastAPI:
    config = config or settings
    manager = ConnectionManager(Matchmaker(
        chat_max_length=config.chat_max_length,
        strict_signaling=config.strict_signaling,
        greeting=config.greeting,
        waiting_ttl=config.waiting_ttl,
    ))

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if config.reaper_interval > 0:
            task = asyncio.create_task(reaper(manager, config.reaper_interval))
        yield
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    app = FastAPI(title=SERVER_NAME, lifespan=lifespan)
    app.state.manager = manager
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["GET", "POST"],
    )
    app.add_api_websocket_route("/ws", websocket_endpoint)
    app.add_api_route("/health", health, methods=["GET"])
    app.add_api_route("/", info, methods=["GET"])
    return app


async def websocket_endpoint(websocket: WebSocket):
    manager: ConnectionManager = websocket.app.state.manager
    client_id = await manager.connect(websocket)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                logger.debug(f"Dropped binary frame from {client_id}")
                continue
            await manager.dispatch(client_id, raw)
    finally:
        await manager.disconnect(client_id)


async def health(request: Request):
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **request.app.state.manager.stats(),
    }


async def info(request: Request):
    return {
        "name": SERVER_NAME,
        "status": "running",
        **request.app.state.manager.stats(),
    }


app = create_app()

if __name__ == "__main__":
    logger.info(f"Signaling server running on port {settings.port}")
    logger.info(f"Health check available at http://localhost:{settings.port}/health")
    uvicorn.run(app, host=settings.host, port=settings.port)

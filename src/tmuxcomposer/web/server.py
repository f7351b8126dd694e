"""事件 WebSocket 服务器

作为 EventEmitter 的一个 sink：把每条事件广播给所有 WebSocket 客户端，
并保留最近的拓扑快照和事件供 HTTP 查询。
"""

from collections import deque

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from tmuxcomposer import config
from tmuxcomposer.events import SESSION_CHANGED, Event
from tmuxcomposer.telemetry import get_logger

logger = get_logger(__name__)

RECENT_EVENTS = 100


class EventServer:
    """WebSocket 事件服务器"""

    def __init__(self, title: str = "tmuxcomposer", history: int = RECENT_EVENTS):
        self.app = FastAPI(title=title)
        self.clients: list[WebSocket] = []
        self._recent: deque[dict] = deque(maxlen=history)
        self._topology: dict | None = None
        self._server: uvicorn.Server | None = None
        self._setup_routes()

    @property
    def topology(self) -> dict | None:
        """最近一次 session-changed 事件"""
        return self._topology

    def _setup_routes(self):
        @self.app.get("/api/health")
        async def health():
            return {"status": "ok", "clients": len(self.clients)}

        @self.app.get("/api/topology")
        async def topology():
            return self._topology or {}

        @self.app.get("/api/events")
        async def events(limit: int = 20):
            items = list(self._recent)
            return items[-limit:] if limit > 0 else []

        @self.app.websocket("/ws")
        async def websocket_endpoint(websocket: WebSocket):
            await websocket.accept()
            self.clients.append(websocket)
            try:
                if self._topology is not None:
                    await websocket.send_json(self._topology)
                while True:
                    data = await websocket.receive_text()
                    if data.strip() == "ping":
                        await websocket.send_text("pong")
            except WebSocketDisconnect:
                pass
            finally:
                if websocket in self.clients:
                    self.clients.remove(websocket)

    async def publish(self, event: Event) -> None:
        """EventEmitter sink：记录并广播"""
        data = event.to_dict()
        self._recent.append(data)
        if event.event == SESSION_CHANGED:
            self._topology = data
        await self.broadcast(data)

    async def broadcast(self, data: dict) -> None:
        """广播消息给所有客户端，发送失败的客户端被移除"""
        for client in list(self.clients):
            try:
                await client.send_json(data)
            except Exception as e:
                logger.debug(f"[EventServer] Dropping client: {e}")
                if client in self.clients:
                    self.clients.remove(client)

    async def serve(self, host: str | None = None, port: int | None = None) -> None:
        """启动 uvicorn，直到 stop()"""
        uvicorn_config = uvicorn.Config(
            self.app,
            host=host or config.EVENT_SERVER_HOST,
            port=port or config.EVENT_SERVER_PORT,
            log_level="warning",
        )
        self._server = uvicorn.Server(uvicorn_config)
        logger.info(f"[EventServer] Listening on ws://{uvicorn_config.host}:{uvicorn_config.port}/ws")
        await self._server.serve()

    def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True

"""Web channel implementation using FastAPI and WebSockets."""

import asyncio
import json
import socket
import time
from typing import Any, Optional

import uvicorn
from fastapi import (
    Depends,
    FastAPI,
    Header,
    HTTPException,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from channels.base import BaseChannel
from core.bus import MessageBus
from core.errors import HQBotError
from core.events import OutboundMessage
from core.metrics import MetricsCollector
from core.skills.registry import SkillRegistry

WORKFLOW_SKILL = "workflow"


class WebChannel(BaseChannel):
    """
    HTTP API over the skill registry plus a WebSocket chat endpoint that
    feeds the message bus.
    """

    name = "web"

    def __init__(
        self,
        config: Any,
        bus: MessageBus,
        registry: SkillRegistry,
        metrics: Optional[MetricsCollector] = None,
    ):
        super().__init__(config, bus)
        self.registry = registry
        self.metrics = metrics
        self.app = FastAPI(title="HQBot")
        self.server = None
        self.start_time = time.time()
        self.active_connections: set[WebSocket] = set()

        async def verify_api_key(request: Request, x_api_key: str = Header(None)):
            internal_key = getattr(self.config, "api_key", None)
            if not internal_key:
                return True
            provided_key = x_api_key or request.query_params.get("api_key")
            if provided_key != internal_key:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Invalid or missing API Key",
                )
            return True

        self.verify_auth = verify_api_key
        self._setup_routes()

        web_config = getattr(self.config, "web", None)
        self.actual_port = getattr(web_config, "port", 8000) if web_config else 8000

    def _workflow_skill(self):
        skill = self.registry.get_skill(WORKFLOW_SKILL)
        if skill is None or getattr(skill, "runner", None) is None:
            raise HTTPException(status_code=404, detail="Workflow skill not loaded")
        return skill

    def _setup_routes(self):
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @self.app.get("/api/health")
        async def health():
            return {
                "status": "ok",
                "uptime_s": round(time.time() - self.start_time, 1),
                "registry": self.registry.get_status(),
            }

        @self.app.post("/api/command", dependencies=[Depends(self.verify_auth)])
        async def run_command(data: dict):
            command = data.get("command")
            if not isinstance(command, str) or not command.strip():
                raise HTTPException(status_code=400, detail="command is required")
            context = {
                "channel": self.name,
                "chat_id": str(data.get("chat_id") or "api"),
                "sender_id": str(data.get("sender_id") or "api-user"),
                "auto_repo": data.get("repo") or getattr(self.config, "auto_repo", None),
            }
            if not self.is_allowed(context["sender_id"]):
                raise HTTPException(status_code=403, detail="Sender not allowed")
            result = await self.registry.route(command, context)
            return result.to_dict()

        @self.app.get("/api/skills", dependencies=[Depends(self.verify_auth)])
        async def list_skills():
            return {"skills": self.registry.list_skills()}

        @self.app.get("/api/workflows", dependencies=[Depends(self.verify_auth)])
        async def list_workflows():
            catalog = self._workflow_skill().catalog
            return {
                "builtin": [wf.to_dict() for wf in catalog.list_builtin()],
                "custom": [wf.to_dict() for wf in catalog.list_custom()],
            }

        @self.app.get("/api/workflows/status", dependencies=[Depends(self.verify_auth)])
        async def workflow_status():
            return self._workflow_skill().runner.status()

        @self.app.post("/api/workflows/confirm", dependencies=[Depends(self.verify_auth)])
        async def confirm_workflow(data: dict):
            runner = self._workflow_skill().runner
            approved = bool(data.get("approved", True))
            try:
                pending = runner.confirm(data.get("token"), approved=approved)
            except HQBotError as e:
                raise HTTPException(status_code=404, detail=e.message)
            return {
                "status": "success",
                "token": pending.token,
                "step": pending.step_name,
                "approved": approved,
            }

        @self.app.get("/api/metrics", dependencies=[Depends(self.verify_auth)])
        async def get_metrics():
            if self.metrics is None:
                return {"enabled": False}
            return self.metrics.get_snapshot()

        @self.app.get("/api/metrics/{skill_name}", dependencies=[Depends(self.verify_auth)])
        async def get_skill_metrics(skill_name: str):
            found = self.metrics.get_skill_metrics(skill_name) if self.metrics else None
            if found is None:
                raise HTTPException(status_code=404, detail=f"No metrics for {skill_name}")
            return found

        @self.app.websocket("/ws")
        async def websocket_root(websocket: WebSocket):
            await self._websocket_handler(websocket)

    async def _websocket_handler(self, websocket: WebSocket) -> None:
        """Each text frame is a JSON object with `content` and optional `chat_id`."""
        internal_key = getattr(self.config, "api_key", None)
        if internal_key and websocket.query_params.get("api_key") != internal_key:
            logger.warning(f"WebSocket rejected: bad API key from {websocket.client}")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        self.active_connections.add(websocket)
        logger.info("Web client connected")

        try:
            while True:
                data = await websocket.receive_text()
                try:
                    msg = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Received invalid JSON from web client")
                    continue

                sender_id = msg.get("sender_id") or "web-user"
                if not self.is_allowed(sender_id):
                    logger.warning(f"Ignoring web message from non-allowed sender {sender_id}")
                    continue

                await self._handle_message(
                    sender_id=sender_id,
                    chat_id=msg.get("chat_id") or "web-chat",
                    content=msg.get("content", ""),
                    metadata={"source": "web", "message_id": msg.get("id")},
                )
        except WebSocketDisconnect:
            pass
        finally:
            self.active_connections.discard(websocket)
            logger.info("Web client disconnected")

    async def start(self) -> None:
        base_port = self.actual_port
        max_retries = 10

        for port_offset in range(max_retries):
            current_port = base_port + port_offset
            try:
                with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                    s.bind(("0.0.0.0", current_port))
            except OSError:
                if port_offset < max_retries - 1:
                    logger.warning(f"Port {current_port} is in use, trying {current_port + 1}...")
                    continue
                logger.error(f"Failed to find an available port after {max_retries} attempts.")
                raise

            config = uvicorn.Config(self.app, host="0.0.0.0", port=current_port, log_level="info")
            self.server = uvicorn.Server(config)
            self.actual_port = current_port
            self._running = True
            logger.info(f"Web channel starting on port {current_port}")
            await self.server.serve()
            return

    async def stop(self) -> None:
        self._running = False
        if self.server:
            self.server.should_exit = True

    async def send(self, msg: OutboundMessage) -> None:
        if not self.active_connections:
            return

        payload = json.dumps(
            {
                "type": "message",
                "content": msg.content,
                "sender": "bot",
                "chat_id": msg.chat_id,
                "metadata": msg.metadata or {},
            },
            default=str,
        )

        dead: set[WebSocket] = set()

        async def _safe_send(conn: WebSocket):
            try:
                await asyncio.wait_for(conn.send_text(payload), timeout=2.0)
            except Exception:
                dead.add(conn)

        await asyncio.gather(*(_safe_send(c) for c in list(self.active_connections)))
        for conn in dead:
            self.active_connections.discard(conn)

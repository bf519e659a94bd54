import asyncio
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from channels.web import WebChannel
from core.bus import MessageBus
from core.metrics import MetricsCollector
from core.skills import BaseSkill, CommandSpec, SkillRegistry
from core.store import JsonStore
from skills.help.skill import HelpSkill
from skills.workflow.skill import WorkflowSkill


class EchoSkill(BaseSkill):
    name = "echo"
    commands = [CommandSpec(r"echo\s+(.+)", "Echo text back", "echo <text>")]

    async def execute(self, command, context):
        return self.success(self.parse_command(command)["raw"][5:], data={"chat": context["chat_id"]})


def make_client(tmp_path, api_key=None, allow_from=None):
    registry = SkillRegistry({"memory": JsonStore(tmp_path)})
    metrics = MetricsCollector().attach(registry)

    async def setup():
        for skill in (EchoSkill(), HelpSkill(), WorkflowSkill()):
            await registry.register(skill)
        await registry.initialize()

    asyncio.run(setup())
    config = SimpleNamespace(
        web=SimpleNamespace(port=8123),
        api_key=api_key,
        auto_repo=None,
        allow_from=allow_from or [],
    )
    channel = WebChannel(config, MessageBus(), registry, metrics=metrics)
    return TestClient(channel.app), registry


def test_health_is_public(tmp_path):
    client, _ = make_client(tmp_path, api_key="secret")
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["registry"]["skill_count"] == 3


def test_command_routes_through_registry(tmp_path):
    client, _ = make_client(tmp_path)
    response = client.post("/api/command", json={"command": "echo hi there", "chat_id": "c9"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["skill"] == "echo"
    assert body["message"] == "hi there"
    assert body["data"] == {"chat": "c9"}


def test_command_requires_text(tmp_path):
    client, _ = make_client(tmp_path)
    assert client.post("/api/command", json={"command": "  "}).status_code == 400


def test_api_key_enforced(tmp_path):
    client, _ = make_client(tmp_path, api_key="secret")
    assert client.get("/api/skills").status_code == 401
    ok = client.get("/api/skills", headers={"X-API-Key": "secret"})
    assert ok.status_code == 200
    names = [s["name"] for s in ok.json()["skills"]]
    assert names[0] == "help"
    assert set(names) == {"help", "workflow", "echo"}


def test_workflow_endpoints(tmp_path):
    client, _ = make_client(tmp_path)

    listing = client.get("/api/workflows").json()
    assert {wf["key"] for wf in listing["builtin"]} >= {"hotfix", "release"}
    assert listing["custom"] == []

    client.post("/api/command", json={"command": 'workflow create nightly "echo a" "echo b"'})
    client.post("/api/command", json={"command": "workflow run nightly"})

    status = client.get("/api/workflows/status").json()
    assert status["active"] is None
    assert status["recent"][0]["key"] == "nightly"
    assert status["recent"][0]["status"] == "completed"

    missing = client.post("/api/workflows/confirm", json={"token": "wf_nothing"})
    assert missing.status_code == 404


def test_metrics_count_dispatches(tmp_path):
    client, _ = make_client(tmp_path)
    client.post("/api/command", json={"command": "echo one"})
    client.post("/api/command", json={"command": "nothing matches this"})

    snapshot = client.get("/api/metrics").json()
    assert snapshot["global"]["dispatches"] == 1
    assert snapshot["skills"]["echo"]["dispatches"] == 1

    echo = client.get("/api/metrics/echo")
    assert echo.status_code == 200
    assert echo.json()["name"] == "echo"
    assert client.get("/api/metrics/ghost").status_code == 404


def test_allow_list_blocks_unknown_senders(tmp_path):
    client, _ = make_client(tmp_path, allow_from=["alice"])
    denied = client.post("/api/command", json={"command": "echo hi", "sender_id": "mallory"})
    assert denied.status_code == 403
    allowed = client.post("/api/command", json={"command": "echo hi", "sender_id": "alice"})
    assert allowed.status_code == 200
    assert allowed.json()["message"] == "hi"


@pytest.mark.asyncio
async def test_send_without_connections_is_noop(tmp_path):
    from core.events import OutboundMessage

    registry = SkillRegistry()
    config = SimpleNamespace(web=SimpleNamespace(port=8123), api_key=None, auto_repo=None)
    channel = WebChannel(config, MessageBus(), registry)
    await channel.send(OutboundMessage(channel="web", chat_id="x", content="hi"))
    assert channel.active_connections == set()

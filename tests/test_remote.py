"""HTTP surface tests (FastAPI TestClient)."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from flowcanvas.config import CorrelatorSettings
from flowcanvas.remote import _sse, create_app
from flowcanvas.runtime.correlator import SessionRegistry

CODE = "function f(a) {\n  return a + 1;\n}\n"


@pytest.fixture
def registry():
    return SessionRegistry(CorrelatorSettings(max_sessions=3))


@pytest.fixture
def client(registry):
    return TestClient(create_app(registry))


def _create(client, **body) -> str:
    res = client.post("/remote/session", json=body)
    assert res.status_code == 200
    return res.json()["sessionId"]


def test_create_session_urls(client) -> None:
    res = client.post("/remote/session", json={"name": "demo"})
    assert res.status_code == 200
    data = res.json()
    sid = data["sessionId"]
    assert data["streamUrl"] == f"http://testserver/remote/stream/{sid}"
    assert data["studioUrl"] == f"http://testserver/?session={sid}"

    info = client.get(f"/remote/session/{sid}").json()
    assert info["name"] == "demo"
    assert info["checkpointCount"] == 0


def test_checkpoint_flow(client, registry) -> None:
    sid = _create(client, code=CODE)
    version = client.get(f"/remote/session/{sid}").json()["manifestVersion"]

    res = client.post(
        "/remote/checkpoint",
        json={"sessionId": sid, "checkpoint": {"nodeId": "n1", "variables": {"a": 1}, "manifestVersion": version}},
    )
    assert res.json() == {"success": True, "ignored": False, "checkpointCount": 1}

    res = client.post(
        "/remote/checkpoint",
        json={"sessionId": sid, "checkpoint": {"nodeId": "n1", "manifestVersion": "stale"}},
    )
    assert res.json() == {"success": True, "ignored": True, "checkpointCount": 1}
    assert [c.variables for c in registry.get_checkpoints(sid)] == [{"a": 1}]


def test_update_code_and_graph(client) -> None:
    sid = _create(client)
    assert client.get(f"/remote/session/{sid}/graph").status_code == 404

    res = client.post("/remote/code", json={"sessionId": sid, "code": CODE})
    assert res.status_code == 200
    assert res.json()["success"] is True
    assert res.json()["manifestVersion"]

    graph = client.get(f"/remote/session/{sid}/graph").json()
    assert graph["functions"] == ["f"]
    assert graph["error"] is None
    assert any(n["label"] == "return a + 1" for n in graph["nodes"])


def test_end_session(client) -> None:
    sid = _create(client)
    assert client.post("/remote/session/end", json={"sessionId": sid}).json() == {"ended": True}
    assert client.get(f"/remote/session/{sid}").status_code == 404
    assert client.post("/remote/session/end", json={"sessionId": sid}).status_code == 404


def test_bad_requests(client) -> None:
    assert client.post("/remote/checkpoint", json={"checkpoint": {}}).status_code == 400
    assert client.post("/remote/checkpoint", json={"sessionId": "x"}).status_code == 400
    assert client.post("/remote/code", json={"sessionId": "x"}).status_code == 400
    assert client.post("/remote/session/end", json={}).status_code == 400


def test_unknown_session_is_404(client) -> None:
    res = client.post("/remote/checkpoint", json={"sessionId": "nope", "checkpoint": {"nodeId": "n"}})
    assert res.status_code == 404
    assert client.post("/remote/code", json={"sessionId": "nope", "code": CODE}).status_code == 404
    assert client.get("/remote/session/nope").status_code == 404
    assert client.get("/remote/stream/nope").status_code == 404


def test_capacity_is_503(client) -> None:
    for _ in range(3):
        _create(client)
    res = client.post("/remote/session", json={})
    assert res.status_code == 503


def test_sse_stream_encoding(registry) -> None:
    sid = registry.create_session("demo")
    registry.add_checkpoint(sid, {"nodeId": "n1"})
    channel = registry.add_subscriber(sid)
    registry.end_session(sid)

    chunks = list(_sse(registry, sid, channel))
    assert [c.split("\n", 1)[0] for c in chunks] == [
        "event: session_info",
        "event: checkpoint",
        "event: session_end",
    ]
    assert all(c.endswith("\n\n") for c in chunks)

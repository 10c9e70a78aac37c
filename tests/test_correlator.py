"""Tests for the session registry and subscriber channels."""

from __future__ import annotations

import json
import threading

import pytest

from flowcanvas.config import CorrelatorSettings
from flowcanvas.core.identity import file_checksum, manifest_hash
from flowcanvas.errors import CapacityExceeded, SessionNotFound
from flowcanvas.runtime.correlator import SessionEvent, SessionRegistry, SubscriberChannel

CODE = "function f(a) {\n  return a + 1;\n}\n"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _registry(**overrides) -> SessionRegistry:
    clock = overrides.pop("clock", None) or FakeClock()
    return SessionRegistry(CorrelatorSettings(**overrides), clock=clock)


def test_create_and_info() -> None:
    reg = _registry()
    sid = reg.create_session("demo", CODE)
    info = reg.get_session_info(sid)
    assert info["id"] == sid
    assert info["name"] == "demo"
    assert info["code"] == CODE
    assert info["checkpointCount"] == 0
    assert info["viewerCount"] == 0
    assert info["manifestVersion"] == manifest_hash([file_checksum(CODE)])
    assert reg.has_session(sid)
    assert len(reg) == 1


def test_default_name_and_no_code() -> None:
    reg = _registry()
    sid = reg.create_session()
    info = reg.get_session_info(sid)
    assert info["name"] == "Remote Session"
    assert info["manifestVersion"] is None
    assert reg.get_graph(sid) is None


def test_checkpoints_keep_order_and_ids() -> None:
    reg = _registry()
    sid = reg.create_session()
    for i in range(5):
        reg.add_checkpoint(sid, {"nodeId": f"n{i}", "variables": {"i": i}})
    cps = reg.get_checkpoints(sid)
    assert [c.node_id for c in cps] == [f"n{i}" for i in range(5)]
    assert [c.id for c in cps] == [f"checkpoint-{i}" for i in range(5)]
    assert cps[3].variables == {"i": 3}


def test_checkpoint_buffer_is_bounded() -> None:
    reg = _registry(max_queue_depth=10)
    sid = reg.create_session()
    for i in range(15):
        reg.add_checkpoint(sid, {"nodeId": f"n{i}"})
    cps = reg.get_checkpoints(sid)
    assert len(cps) == 10
    assert cps[0].node_id == "n5"
    assert cps[-1].node_id == "n14"
    assert reg.get_session_info(sid)["checkpointCount"] == 10


def test_checkpoint_gets_label_and_line_from_graph() -> None:
    reg = _registry()
    sid = reg.create_session(code=CODE)
    ret = next(n for n in reg.get_graph(sid).nodes if n.label == "return a + 1")
    cp = reg.add_checkpoint(sid, {"nodeId": ret.id, "variables": {"a": 1}})
    assert cp.label == "return a + 1"
    assert cp.line == 2
    assert cp.to_dict()["nodeId"] == ret.id


def test_stale_manifest_version_is_ignored() -> None:
    reg = _registry()
    sid = reg.create_session(code=CODE)
    current = reg.get_session_info(sid)["manifestVersion"]

    assert reg.add_checkpoint(sid, {"nodeId": "x", "manifestVersion": "deadbeef"}) is None
    assert reg.get_checkpoints(sid) == []

    cp = reg.add_checkpoint(sid, {"nodeId": "x", "manifestVersion": current})
    assert cp is not None
    assert cp.manifest_version == current

    reg.update_code(sid, CODE + "\n// v2\n")
    assert reg.add_checkpoint(sid, {"nodeId": "x", "manifestVersion": current}) is None


def test_capacity() -> None:
    reg = _registry(max_sessions=2)
    reg.create_session()
    reg.create_session()
    with pytest.raises(CapacityExceeded):
        reg.create_session()
    assert len(reg) == 2


def test_unknown_session() -> None:
    reg = _registry()
    with pytest.raises(SessionNotFound):
        reg.add_checkpoint("nope", {"nodeId": "x"})
    with pytest.raises(SessionNotFound):
        reg.get_session_info("nope")
    with pytest.raises(SessionNotFound):
        reg.end_session("nope")
    with pytest.raises(SessionNotFound):
        reg.add_subscriber("nope")
    # Removing from a vanished session is a no-op.
    reg.remove_subscriber("nope", SubscriberChannel())


def test_sweep_expires_idle_sessions() -> None:
    clock = FakeClock()
    reg = _registry(clock=clock, session_ttl_s=60)
    old = reg.create_session("old")
    clock.now += 30
    fresh = reg.create_session("fresh")
    clock.now += 45

    assert reg.sweep_expired() == [old]
    assert not reg.has_session(old)
    assert reg.has_session(fresh)

    # Activity refreshes the deadline.
    clock.now += 20
    reg.add_checkpoint(fresh, {"nodeId": "x"})
    clock.now += 59
    assert reg.sweep_expired() == []


def test_subscriber_gets_info_then_backlog_then_live() -> None:
    reg = _registry()
    sid = reg.create_session("demo", CODE)
    reg.add_checkpoint(sid, {"nodeId": "a"})
    channel = reg.add_subscriber(sid)
    assert reg.get_session_info(sid)["viewerCount"] == 1

    reg.add_checkpoint(sid, {"nodeId": "b"})
    reg.update_code(sid, CODE)
    events = channel.drain()
    assert [e.name for e in events] == ["session_info", "checkpoint", "checkpoint", "code_update"]
    assert events[0].data["name"] == "demo"
    assert [e.data["nodeId"] for e in events[1:3]] == ["a", "b"]

    reg.remove_subscriber(sid, channel)
    assert reg.get_session_info(sid)["viewerCount"] == 0


def test_end_session_notifies_and_closes() -> None:
    reg = _registry()
    sid = reg.create_session()
    channel = reg.add_subscriber(sid)
    channel.drain()

    reg.end_session(sid)
    assert channel.closed
    assert [e.name for e in channel] == ["session_end"]
    assert not reg.has_session(sid)


def test_slow_subscriber_is_dropped() -> None:
    reg = _registry()
    sid = reg.create_session()
    slow = reg.add_subscriber(sid, SubscriberChannel(capacity=2))
    fast = reg.add_subscriber(sid)
    for i in range(3):
        reg.add_checkpoint(sid, {"nodeId": f"n{i}"})

    assert slow.closed
    assert not fast.closed
    assert reg.get_session_info(sid)["viewerCount"] == 1
    # Channel still ends with its end-of-stream marker.
    assert list(slow)


def test_channel_heartbeat_and_close() -> None:
    channel = SubscriberChannel()
    stream = channel.events(timeout=0.01)
    assert next(stream) is None
    assert channel.offer(SessionEvent("checkpoint", {"nodeId": "x"}))
    assert next(stream).name == "checkpoint"
    channel.close()
    assert list(stream) == []
    assert not channel.offer(SessionEvent("checkpoint", {}))


def test_session_event_sse_encoding() -> None:
    text = SessionEvent("checkpoint", {"nodeId": "n1", "variables": {"a": 1}}).to_sse()
    assert text.startswith("event: checkpoint\ndata: ")
    assert text.endswith("\n\n")
    payload = text.split("data: ", 1)[1].strip()
    assert json.loads(payload) == {"nodeId": "n1", "variables": {"a": 1}}


def test_concurrent_checkpoints_are_all_recorded() -> None:
    reg = _registry(max_queue_depth=1000)
    sid = reg.create_session()
    channel = reg.add_subscriber(sid)

    def worker(n: int) -> None:
        for i in range(50):
            reg.add_checkpoint(sid, {"nodeId": f"w{n}-{i}"})

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    cps = reg.get_checkpoints(sid)
    assert len(cps) == 200
    assert sorted(int(c.id.split("-")[1]) for c in cps) == list(range(200))
    streamed = [e.data["id"] for e in channel.drain() if e.name == "checkpoint"]
    assert streamed == [c.id for c in cps]


def test_start_and_shutdown_lifecycle() -> None:
    reg = _registry(sweep_interval_s=0.01)
    with reg:
        sid = reg.create_session()
        channel = reg.add_subscriber(sid)
    assert len(reg) == 0
    assert channel.closed


def test_default_depth_evicts_oldest_five() -> None:
    from flowcanvas.config import MAX_QUEUE_DEPTH

    reg = SessionRegistry(clock=FakeClock())
    sid = reg.create_session()
    for i in range(MAX_QUEUE_DEPTH + 5):
        reg.add_checkpoint(sid, {"nodeId": f"n{i}"})
    cps = reg.get_checkpoints(sid)
    assert len(cps) == MAX_QUEUE_DEPTH
    assert [c.node_id for c in cps[:2]] == ["n5", "n6"]
    assert cps[-1].node_id == f"n{MAX_QUEUE_DEPTH + 4}"


@pytest.mark.parametrize(
    "call",
    [
        lambda reg, sid: reg.add_subscriber(sid),
        lambda reg, sid: reg.add_checkpoint(sid, {"nodeId": "x"}),
        lambda reg, sid: reg.update_code(sid, CODE),
        lambda reg, sid: reg.get_session_info(sid),
    ],
)
def test_session_ended_between_lookup_and_lock(monkeypatch, call) -> None:
    reg = _registry()
    sid = reg.create_session()
    lookup = reg._get

    def lookup_then_end(session_id: str):
        session = lookup(session_id)
        reg.end_session(session_id)
        return session

    monkeypatch.setattr(reg, "_get", lookup_then_end)
    with pytest.raises(SessionNotFound):
        call(reg, sid)
    assert not reg.has_session(sid)


def test_subscriber_to_ended_session_is_refused() -> None:
    reg = _registry()
    sid = reg.create_session()
    channel = SubscriberChannel()
    reg.end_session(sid)
    with pytest.raises(SessionNotFound):
        reg.add_subscriber(sid, channel)
    assert not channel.closed
    assert channel.drain() == []


def test_checkpoint_matched_flag() -> None:
    reg = _registry()
    sid = reg.create_session(code=CODE)
    ret = next(n for n in reg.get_graph(sid).nodes if n.label == "return a + 1")

    hit = reg.add_checkpoint(sid, {"nodeId": ret.id})
    miss = reg.add_checkpoint(sid, {"nodeId": "not-a-node"})
    assert hit.matched and hit.to_dict()["matched"] is True
    assert not miss.matched and miss.to_dict()["matched"] is False

    bare = reg.create_session()
    assert reg.add_checkpoint(bare, {"nodeId": ret.id}).matched is False

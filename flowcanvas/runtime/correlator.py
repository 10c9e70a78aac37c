"""Session registry: binds runtime checkpoints to compiled flow graphs.

A session owns some code (compiled on arrival), a bounded checkpoint ring
buffer and a set of subscriber channels. Every new checkpoint or code update
is fanned out to the subscribers under the session lock, so each subscriber
sees events in arrival order. A background sweep evicts idle sessions.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
import uuid
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterator, List, Mapping, Optional

from ..config import CorrelatorSettings
from ..core.identity import file_checksum, manifest_hash
from ..core.models import CompileResult
from ..errors import CapacityExceeded, SessionNotFound
from ..parser.compiler import compile_source

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionEvent:
    name: str  # session_info|checkpoint|code_update|session_end
    data: Dict[str, Any] = field(default_factory=dict)

    def to_sse(self) -> str:
        payload = json.dumps(self.data, separators=(",", ":"), default=str)
        return f"event: {self.name}\ndata: {payload}\n\n"


class SubscriberChannel:
    """Bounded, non-blocking event channel for one subscriber.

    Writers never wait: `offer` returns False when the channel is full or
    closed, and the registry closes such a channel instead of stalling.
    """

    def __init__(self, capacity: int = 0):
        self._queue: "queue.Queue[Optional[SessionEvent]]" = queue.Queue(maxsize=capacity)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def offer(self, event: SessionEvent) -> bool:
        if self._closed.is_set():
            return False
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            return False
        return True

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        # The end-of-stream marker must always fit; evict the oldest event if needed.
        while True:
            try:
                self._queue.put_nowait(None)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass

    def events(self, timeout: Optional[float] = None) -> Iterator[Optional[SessionEvent]]:
        """Yield events until the channel is closed.

        With a timeout, yields None after every `timeout` seconds of silence
        (a heartbeat hook for streaming transports).
        """
        while True:
            try:
                event = self._queue.get(timeout=timeout)
            except queue.Empty:
                if self._closed.is_set():
                    return
                yield None
                continue
            if event is None:
                return
            yield event

    def drain(self) -> List[SessionEvent]:
        """Everything currently buffered, without blocking."""
        out: List[SessionEvent] = []
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return out
            if event is not None:
                out.append(event)

    def __iter__(self) -> Iterator[SessionEvent]:
        for event in self.events():
            if event is not None:
                yield event


@dataclass
class Checkpoint:
    id: str
    node_id: Optional[str]
    variables: Dict[str, Any]
    timestamp: float
    label: Optional[str] = None
    line: Optional[int] = None
    manifest_version: Optional[str] = None
    # True when node_id names a checkpoint of the session's compiled graph.
    matched: bool = False

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "nodeId": self.node_id,
            "variables": self.variables,
            "timestamp": self.timestamp,
            "matched": self.matched,
        }
        if self.label is not None:
            out["label"] = self.label
        if self.line is not None:
            out["line"] = self.line
        if self.manifest_version is not None:
            out["manifestVersion"] = self.manifest_version
        return out


@dataclass
class Session:
    id: str
    name: str
    created_at: float
    last_activity: float
    checkpoints: Deque[Checkpoint]
    code: Optional[str] = None
    graph: Optional[CompileResult] = None
    manifest_version: Optional[str] = None
    subscribers: List[SubscriberChannel] = field(default_factory=list)
    sequence: int = 0
    # Set under `lock` once the session has been ended or evicted.
    closed: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def info(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "checkpointCount": len(self.checkpoints),
            "viewerCount": len(self.subscribers),
            "createdAt": self.created_at,
            "lastActivity": self.last_activity,
            "manifestVersion": self.manifest_version,
        }


class SessionRegistry:
    """In-memory session registry with an explicit start/shutdown lifecycle."""

    def __init__(
        self,
        settings: Optional[CorrelatorSettings] = None,
        *,
        clock: Callable[[], float] = time.time,
        file_path: str = "session.js",
    ):
        self.settings = settings or CorrelatorSettings()
        self._clock = clock
        self._file_path = file_path
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> "SessionRegistry":
        if self._sweeper is not None and self._sweeper.is_alive():
            return self
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="flowcanvas-session-sweep", daemon=True)
        self._sweeper.start()
        return self

    def shutdown(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5.0)
            self._sweeper = None
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            self._close_session(session)

    def __enter__(self) -> "SessionRegistry":
        return self.start()

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.settings.sweep_interval_s):
            try:
                self.sweep_expired()
            except Exception:
                logger.exception("Session sweep failed")

    def sweep_expired(self) -> List[str]:
        """Evict sessions idle longer than the TTL. Returns the evicted ids."""
        now = self._clock()
        with self._lock:
            expired = [s for s in self._sessions.values() if now - s.last_activity > self.settings.session_ttl_s]
            for s in expired:
                del self._sessions[s.id]
        for s in expired:
            logger.info("Session %s expired after %.0fs idle", s.id, now - s.last_activity)
            self._close_session(s)
        return [s.id for s in expired]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _get(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    @contextmanager
    def _locked(self, session_id: str) -> Iterator[Session]:
        """Hold the session lock; a session closed since lookup counts as not found."""
        session = self._get(session_id)
        with session.lock:
            if session.closed:
                raise SessionNotFound(session_id)
            yield session

    def _compile_into(self, session: Session, code: str) -> None:
        session.code = code
        session.graph = compile_source(code, self._file_path)
        session.manifest_version = manifest_hash([file_checksum(code)])
        if session.graph.error:
            logger.debug("Session %s code did not compile: %s", session.id, session.graph.error)

    def create_session(self, name: Optional[str] = None, code: Optional[str] = None) -> str:
        now = self._clock()
        session = Session(
            id=str(uuid.uuid4()),
            name=name or "Remote Session",
            created_at=now,
            last_activity=now,
            checkpoints=deque(maxlen=self.settings.max_queue_depth),
        )
        if code:
            self._compile_into(session, code)
        with self._lock:
            if len(self._sessions) >= self.settings.max_sessions:
                raise CapacityExceeded(self.settings.max_sessions)
            self._sessions[session.id] = session
        logger.info("Created session %s (%s)", session.id, session.name)
        return session.id

    def add_checkpoint(self, session_id: str, data: Mapping[str, Any]) -> Optional[Checkpoint]:
        """Record a checkpoint and fan it out.

        Returns None (and records nothing) when the checkpoint carries a
        manifest version other than the one of the session's current code.
        """
        with self._locked(session_id) as session:
            version = data.get("manifestVersion")
            if version and session.manifest_version and version != session.manifest_version:
                logger.debug(
                    "Ignoring stale checkpoint for session %s (manifest %s, current %s)",
                    session_id,
                    version,
                    session.manifest_version,
                )
                return None

            node_id = data.get("nodeId")
            meta = session.graph.checkpoints.get(node_id) if session.graph and node_id else None
            cp = Checkpoint(
                id=str(data.get("id") or f"checkpoint-{session.sequence}"),
                node_id=node_id,
                variables=dict(data.get("variables") or {}),
                timestamp=self._clock(),
                label=data.get("label") or (meta.label if meta else None),
                line=data.get("line") or (meta.line if meta else None),
                manifest_version=version or None,
                matched=meta is not None,
            )
            session.sequence += 1
            session.checkpoints.append(cp)
            session.last_activity = cp.timestamp
            self._fan_out(session, SessionEvent("checkpoint", cp.to_dict()))
        return cp

    def update_code(self, session_id: str, code: str) -> None:
        with self._locked(session_id) as session:
            self._compile_into(session, code)
            session.last_activity = self._clock()
            self._fan_out(
                session,
                SessionEvent("code_update", {"code": code, "manifestVersion": session.manifest_version}),
            )

    def end_session(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFound(session_id)
        logger.info("Ended session %s", session_id)
        self._close_session(session)

    def _close_session(self, session: Session) -> None:
        with session.lock:
            session.closed = True
            for channel in session.subscribers:
                channel.offer(SessionEvent("session_end", {}))
                channel.close()
            session.subscribers.clear()

    def _fan_out(self, session: Session, event: SessionEvent) -> None:
        """Caller holds `session.lock`."""
        for channel in list(session.subscribers):
            if not channel.offer(event):
                logger.warning("Dropping slow subscriber of session %s", session.id)
                channel.close()
                session.subscribers.remove(channel)

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def add_subscriber(self, session_id: str, channel: Optional[SubscriberChannel] = None) -> SubscriberChannel:
        """Attach a channel; it first receives `session_info` then the backlog."""
        channel = channel or SubscriberChannel(self.settings.channel_capacity)
        with self._locked(session_id) as session:
            info = session.info()
            channel.offer(
                SessionEvent(
                    "session_info",
                    {k: info[k] for k in ("id", "name", "code", "checkpointCount", "manifestVersion")},
                )
            )
            for cp in session.checkpoints:
                channel.offer(SessionEvent("checkpoint", cp.to_dict()))
            session.subscribers.append(channel)
        return channel

    def remove_subscriber(self, session_id: str, channel: SubscriberChannel) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            return
        with session.lock:
            if channel in session.subscribers:
                session.subscribers.remove(channel)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_session(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def get_session_info(self, session_id: str) -> Dict[str, Any]:
        with self._locked(session_id) as session:
            return session.info()

    def get_checkpoints(self, session_id: str) -> List[Checkpoint]:
        with self._locked(session_id) as session:
            return list(session.checkpoints)

    def get_graph(self, session_id: str) -> Optional[CompileResult]:
        return self._get(session_id).graph

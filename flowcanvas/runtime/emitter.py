"""Runtime side of the checkpoint contract.

Instrumented code calls `checkpoint(node_id, variables)`; the emitter queues a
shallow capture and `flush()` forwards safe-serialized payloads
`{nodeId, variables, manifestVersion, timestamp}` to a sink (for example a
`SessionRegistry.add_checkpoint` partial, or an HTTP client).

Breakpoints suspend the emitting thread on an explicit queue of pending
continuations: `resume()` releases them, `cancel_pending()` drops them.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Set

from ..config import MAX_EMIT_QUEUE_SIZE

logger = logging.getLogger(__name__)

Sink = Callable[[Dict[str, Any]], Any]

MAX_SERIALIZED_ITEMS = 100


def safe_serialize(variables: Mapping[str, Any]) -> Dict[str, Any]:
    """One level deep: callables and nested containers collapse to markers."""
    out: Dict[str, Any] = {}
    for key, value in variables.items():
        try:
            if _is_scalar(value):
                out[str(key)] = value
            elif callable(value):
                out[str(key)] = "[Function]"
            elif isinstance(value, (list, tuple)):
                out[str(key)] = [v if _is_scalar(v) else "[Object]" for v in list(value)[:MAX_SERIALIZED_ITEMS]]
            else:
                out[str(key)] = "[Object]"
        except Exception:
            out[str(key)] = "[Error serializing]"
    return out


def _is_scalar(v: Any) -> bool:
    return v is None or isinstance(v, (bool, int, float, str))


@dataclass
class _Pending:
    node_id: str
    variables: Dict[str, Any]
    timestamp: float


@dataclass
class _Continuation:
    node_id: str
    event: threading.Event = field(default_factory=threading.Event)
    resumed: bool = False


class CheckpointEmitter:
    def __init__(
        self,
        sink: Sink,
        *,
        manifest_version: Optional[str] = None,
        max_queue_size: int = MAX_EMIT_QUEUE_SIZE,
        clock: Callable[[], float] = time.time,
    ):
        self.sink = sink
        self.manifest_version = manifest_version
        self.max_queue_size = max_queue_size
        self._clock = clock
        self._lock = threading.Lock()
        self._queue: Deque[_Pending] = deque()
        self._dropped = 0
        self._breakpoints: Set[str] = set()
        self._continuations: Deque[_Continuation] = deque()

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def checkpoint(self, node_id: str, variables: Optional[Mapping[str, Any]] = None) -> bool:
        """Queue a checkpoint. Returns False when the queue is full (dropped)."""
        captured = dict(variables or {})
        with self._lock:
            if len(self._queue) >= self.max_queue_size:
                self._dropped += 1
                return False
            self._queue.append(_Pending(node_id=node_id, variables=captured, timestamp=self._clock()))
        return True

    def flush(self) -> int:
        """Send everything queued so far. Returns the number of payloads sent."""
        with self._lock:
            batch = list(self._queue)
            self._queue.clear()
            dropped, self._dropped = self._dropped, 0
        if dropped:
            logger.warning("Checkpoint queue full, dropped %d checkpoint(s)", dropped)

        sent = 0
        for item in batch:
            payload: Dict[str, Any] = {
                "nodeId": item.node_id,
                "variables": safe_serialize(item.variables),
                "timestamp": item.timestamp,
            }
            if self.manifest_version is not None:
                payload["manifestVersion"] = self.manifest_version
            try:
                self.sink(payload)
            except Exception:
                logger.exception("Checkpoint sink failed for node %s", item.node_id)
                continue
            sent += 1
        return sent

    @property
    def queued(self) -> int:
        with self._lock:
            return len(self._queue)

    # ------------------------------------------------------------------
    # Breakpoints
    # ------------------------------------------------------------------

    def set_breakpoint(self, node_id: str, enabled: bool = True) -> None:
        with self._lock:
            if enabled:
                self._breakpoints.add(node_id)
            else:
                self._breakpoints.discard(node_id)

    def clear_breakpoints(self) -> None:
        with self._lock:
            self._breakpoints.clear()

    def checkpoint_and_wait(
        self,
        node_id: str,
        variables: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """Emit, then block while `node_id` has a breakpoint.

        Returns True when execution may continue normally (no breakpoint, or
        resumed); False when the wait was cancelled or timed out.
        """
        self.checkpoint(node_id, variables)
        with self._lock:
            paused = node_id in self._breakpoints
            cont = _Continuation(node_id=node_id) if paused else None
            if cont is not None:
                self._continuations.append(cont)
        if cont is None:
            return True

        self.flush()
        cont.event.wait(timeout)
        with self._lock:
            if cont in self._continuations:
                self._continuations.remove(cont)
        return cont.resumed

    def resume(self, node_id: Optional[str] = None) -> int:
        """Release pending continuations (all, or those for `node_id`)."""
        released: List[_Continuation] = []
        with self._lock:
            keep: Deque[_Continuation] = deque()
            for cont in self._continuations:
                (released if node_id is None or cont.node_id == node_id else keep).append(cont)
            self._continuations = keep
        for cont in released:
            cont.resumed = True
            cont.event.set()
        return len(released)

    def cancel_pending(self) -> int:
        """Drop pending continuations; their waiters return False."""
        with self._lock:
            dropped = list(self._continuations)
            self._continuations.clear()
        for cont in dropped:
            cont.event.set()
        return len(dropped)

    @property
    def paused_at(self) -> List[str]:
        with self._lock:
            return [c.node_id for c in self._continuations]

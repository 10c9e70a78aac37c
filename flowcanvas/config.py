"""Shared configuration for FlowCanvas.

Centralizes limits used by the compiler, interpreter and session registry.
Registry limits can be overridden with FLOWCANVAS_* environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict

# Labels
MAX_LABEL_LENGTH = 50
MAX_CONDITION_LENGTH = 40
MAX_CAPTURED_VARIABLES = 10

# Interpreter
MAX_LOOP_ITERATIONS = 10_000

# Session registry (mirrors the remote server defaults)
SESSION_TIMEOUT_S = 60 * 60
MAX_SESSIONS = 100
MAX_QUEUE_DEPTH = 1000
SWEEP_INTERVAL_S = 60.0

# Runtime emitter
MAX_EMIT_QUEUE_SIZE = 5000

# Global object instrumented code reports checkpoints through
INSTRUMENT_RUNTIME = "FlowCanvas"

# File extension to tree-sitter grammar
EXTENSION_TO_LANGUAGE: Dict[str, str] = {
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
}

DEFAULT_LANGUAGE = "javascript"


def detect_language(path: str) -> str:
    """Detect the tree-sitter grammar for a logical file path.

    Unknown extensions fall back to JavaScript: the compiler is fed snippets
    pasted into an editor as often as real files.
    """
    if "." not in path:
        return DEFAULT_LANGUAGE
    ext = "." + path.rsplit(".", 1)[-1].lower()
    return EXTENSION_TO_LANGUAGE.get(ext, DEFAULT_LANGUAGE)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class CorrelatorSettings:
    session_ttl_s: float = SESSION_TIMEOUT_S
    max_sessions: int = MAX_SESSIONS
    max_queue_depth: int = MAX_QUEUE_DEPTH
    sweep_interval_s: float = SWEEP_INTERVAL_S
    # Extra room over the backlog so a fresh subscriber is never closed on replay.
    channel_headroom: int = 64

    @classmethod
    def from_env(cls) -> "CorrelatorSettings":
        return cls(
            session_ttl_s=_env_float("FLOWCANVAS_SESSION_TTL_S", SESSION_TIMEOUT_S),
            max_sessions=_env_int("FLOWCANVAS_MAX_SESSIONS", MAX_SESSIONS),
            max_queue_depth=_env_int("FLOWCANVAS_MAX_QUEUE_DEPTH", MAX_QUEUE_DEPTH),
            sweep_interval_s=_env_float("FLOWCANVAS_SWEEP_INTERVAL_S", SWEEP_INTERVAL_S),
        )

    @property
    def channel_capacity(self) -> int:
        return self.max_queue_depth + self.channel_headroom + 1

"""Caller-visible failure conditions.

Compiler, layout and diff never raise across their boundary; they return a
(possibly degenerate) value instead. Only identity and capacity conditions of
the session registry surface as exceptions.
"""

from __future__ import annotations


class FlowCanvasError(Exception):
    """Base class for FlowCanvas errors."""


class SessionNotFound(FlowCanvasError, LookupError):
    """Operation against an unknown or expired session id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class CapacityExceeded(FlowCanvasError):
    """Session creation over the configured maximum."""

    def __init__(self, limit: int):
        super().__init__(f"Maximum sessions reached ({limit})")
        self.limit = limit


class InterpreterError(FlowCanvasError):
    """Raised inside the step interpreter to abort a trace (throw, loop cap).

    `prepare()` catches it and records status "error"; it never escapes.
    """

"""Execution side: step interpreter, checkpoint emitter and session registry."""

from .correlator import Checkpoint, SessionEvent, SessionRegistry, SubscriberChannel
from .emitter import CheckpointEmitter, safe_serialize
from .interpreter import ExecutionState, ExecutionStatus, Interpreter, InterpreterStep, evaluate_condition
from .values import UNDEFINED

__all__ = [
    "UNDEFINED",
    "Checkpoint",
    "CheckpointEmitter",
    "ExecutionState",
    "ExecutionStatus",
    "Interpreter",
    "InterpreterStep",
    "SessionEvent",
    "SessionRegistry",
    "SubscriberChannel",
    "evaluate_condition",
    "safe_serialize",
]

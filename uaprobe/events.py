"""
Defines the events a probe run emits and the actions a front end can dispatch.

Events flow one way, from the background probe to whoever drains the
manager's queue; actions flow the other way as one-shot start/cancel requests.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


class EventType(Enum):
    PROGRESS = "progress"
    PARTIAL_RESULT = "partialResult"
    FINAL_RESULT = "finalResult"
    LOG_LINE = "logLine"
    ERROR = "error"
    FINISHED = "finished"


@dataclass(frozen=True)
class ProbeEvent:
    """A single outbound event, tagged with the run that produced it."""
    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    run_id: int = 0


EventSink = Callable[[ProbeEvent], None]


def progress_event(task: str, percent: int, run_id: int = 0) -> ProbeEvent:
    return ProbeEvent(EventType.PROGRESS, {"task": task, "percent": percent}, run_id)


def partial_result_event(stage: str, payload: Any, run_id: int = 0) -> ProbeEvent:
    return ProbeEvent(EventType.PARTIAL_RESULT, {"stage": stage, "payload": payload}, run_id)


def final_result_event(aggregate: Dict[str, Any], run_id: int = 0) -> ProbeEvent:
    return ProbeEvent(EventType.FINAL_RESULT, {"aggregate": aggregate}, run_id)


def log_line_event(text: str, run_id: int = 0) -> ProbeEvent:
    return ProbeEvent(EventType.LOG_LINE, {"text": text}, run_id)


def error_event(message: str, run_id: int = 0) -> ProbeEvent:
    return ProbeEvent(EventType.ERROR, {"message": message}, run_id)


def finished_event(code: Optional[int], run_id: int = 0, cancelled: bool = False) -> ProbeEvent:
    return ProbeEvent(EventType.FINISHED, {"code": code, "cancelled": cancelled}, run_id)


class ProbeActions:
    """Defines the actions a front end can dispatch."""

    def __init__(self):
        self.start_probe: Callable[[Any], int] = lambda *args: 0
        self.cancel_probe: Callable[[], None] = lambda: None
        self.is_running: Callable[[], bool] = lambda: False
        self.process_queue: Callable[[], List[ProbeEvent]] = lambda: []

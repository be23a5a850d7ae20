"""
Progress reporting for a probe run.
"""
from __future__ import annotations
from typing import Optional

from .events import EventSink, progress_event

QUERY_ENDPOINTS_PERCENT = 10
BASELINE_CAPTURE_PERCENT = 25
SUBSCRIBE_PERCENT = 45
POST_CAPTURE_PERCENT = 65
MONITOR_START_PERCENT = 75
MONITOR_END_PERCENT = 90
COMPLETE_PERCENT = 100


def interpolate(start: int, end: int, done: int, total: int) -> int:
    """Linear position of step `done` of `total` between two percentages."""
    if total <= 0:
        return end
    done = max(0, min(done, total))
    return start + round((done / total) * (end - start))


class ProgressEmitter:
    """
    Emits {task, percent} progress events.
    Percent never goes backwards within a run; lower values are raised to the last one sent.
    """

    def __init__(self, sink: EventSink, run_id: int = 0):
        self.sink = sink
        self.run_id = run_id
        self.percent = 0
        self.task: Optional[str] = None

    def report(self, task: str, percent: int):
        percent = max(self.percent, min(COMPLETE_PERCENT, int(percent)))
        self.percent = percent
        self.task = task
        self.sink(progress_event(task, percent, self.run_id))

    def report_step(self, task: str, start: int, end: int, done: int, total: int):
        self.report(task, interpolate(start, end, done, total))

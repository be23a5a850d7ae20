"""
Tests for uaprobe.progress - monotonic progress reporting
"""

from uaprobe.events import EventType
from uaprobe.progress import ProgressEmitter, interpolate


def test_interpolate():
    assert interpolate(75, 90, 0, 15) == 75
    assert interpolate(75, 90, 1, 15) == 76
    assert interpolate(75, 90, 15, 15) == 90
    assert interpolate(75, 90, 3, 0) == 90


def test_progress_never_goes_backwards(collector):
    emitter = ProgressEmitter(collector, run_id=7)
    emitter.report("Querying endpoints", 10)
    emitter.report("Late straggler", 5)
    emitter.report("Too far", 150)
    percents = [e.payload["percent"] for e in collector.events]
    assert percents == [10, 10, 100]
    assert all(e.type == EventType.PROGRESS and e.run_id == 7 for e in collector.events)


def test_report_step(collector):
    emitter = ProgressEmitter(collector)
    emitter.report_step("Monitoring (2/3)", 75, 90, 2, 3)
    assert collector.events[0].payload == {"task": "Monitoring (2/3)", "percent": 85}

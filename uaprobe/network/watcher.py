"""
Polls the connection table for connections whose remote end is the probed server.
"""
from __future__ import annotations
import logging
import math
import threading
from datetime import datetime, timezone
from typing import Callable, FrozenSet, List, Optional

from ..errors import CaptureError, MonitorError, ProbeCancelled
from ..models import ConnectionAttempt, SocketRow
from .sockets import SocketTableReader, parse_address_port, read_table
from .utils import resolve_addresses, strip_brackets


TickCallback = Callable[[int, int, int], None]


def poll_count(duration_ms: int, poll_interval_ms: int) -> int:
    if duration_ms <= 0 or poll_interval_ms <= 0:
        raise ValueError("duration and poll interval must be positive")
    return math.ceil(duration_ms / poll_interval_ms)


def match_attempts(rows: List[SocketRow], targets: FrozenSet[str], timestamp: str) -> List[ConnectionAttempt]:
    """
    Converts rows whose remote address is exactly one of the targets.
    '10.0.0.5' never matches '10.0.0.50'.
    """
    attempts = []
    for row in rows:
        remote_address, remote_port = parse_address_port(row.remote)
        if strip_brackets(remote_address) not in targets:
            continue
        local_address, local_port = parse_address_port(row.local)
        attempts.append(ConnectionAttempt(
            timestamp=timestamp,
            proto=row.proto,
            local_address=local_address,
            local_port=local_port,
            remote_address=remote_address,
            remote_port=remote_port,
            state=row.state,
            pid=row.pid,
        ))
    return attempts


class ConnectionWatcher:
    """
    Runs a bounded number of polls, one at a time.

    Every poll waits for the interval first, then reads the full connection
    table. Matches are accumulated in observation order, repeats included.
    """

    def __init__(
        self,
        reader: SocketTableReader,
        cancel_event: Optional[threading.Event] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        on_tick: Optional[TickCallback] = None,
    ):
        self.reader = reader
        self.cancel_event = cancel_event or threading.Event()
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.on_tick = on_tick

    def _wait(self, seconds: float):
        if self._sleep is not None:
            self._sleep(seconds)
        else:
            self.cancel_event.wait(seconds)
        if self.cancel_event.is_set():
            raise ProbeCancelled("Connection monitoring cancelled", stage="monitor")

    def watch(self, target_address: str, duration_ms: int, poll_interval_ms: int) -> List[ConnectionAttempt]:
        polls = poll_count(duration_ms, poll_interval_ms)
        targets = resolve_addresses(target_address)
        logging.info(f"Watching for connections from {sorted(targets)}: {polls} poll(s) every {poll_interval_ms}ms")

        found: List[ConnectionAttempt] = []
        last_stamp: Optional[datetime] = None
        for tick in range(1, polls + 1):
            self._wait(poll_interval_ms / 1000.0)

            try:
                rows = read_table(self.reader)
            except CaptureError as e:
                raise MonitorError(f"Poll {tick}/{polls} failed: {e}", stage="monitor") from e

            stamp = self._clock()
            if last_stamp is not None and stamp < last_stamp:
                stamp = last_stamp
            last_stamp = stamp

            matches = match_attempts(rows, targets, stamp.isoformat())
            found.extend(matches)
            if self.on_tick:
                self.on_tick(tick, polls, len(matches))

        return found

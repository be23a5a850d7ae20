from __future__ import annotations

from typing import List, Sequence, Union

import pytest

from uaprobe.context import build_context
from uaprobe.events import ProbeEvent, EventType
from uaprobe.models import ProbeConfig, SocketRow
from uaprobe.network.sockets import parse_socket_table
from uaprobe.network.watcher import ConnectionWatcher

NETSTAT_SAMPLE = (
    "\r\n"
    "Active Connections\r\n"
    "\r\n"
    "  Proto  Local Address          Foreign Address        State           PID\r\n"
    "  TCP    0.0.0.0:135            0.0.0.0:0              LISTENING       1012\r\n"
    "  TCP    0.0.0.0:445            0.0.0.0:0              LISTENING       4\r\n"
    "  TCP    10.0.0.2:52000         10.0.0.5:4840          ESTABLISHED     7788\r\n"
    "  TCP    10.0.0.2:52001         10.0.0.50:4840         ESTABLISHED     7788\r\n"
    "  TCP    [::]:135               [::]:0                 LISTENING       1012\r\n"
    "  UDP    0.0.0.0:123            *:*                                    1560\r\n"
)


def rows_from(text: str) -> List[SocketRow]:
    return parse_socket_table(text)


def listen_row(address: str, port: str, pid: str = "100") -> SocketRow:
    return SocketRow("TCP", f"{address}:{port}", "0.0.0.0:0", "LISTENING", pid)


def conn_row(local: str, remote: str, state: str = "ESTABLISHED", pid: str = "200") -> SocketRow:
    return SocketRow("TCP", local, remote, state, pid)


class ScriptedReader:
    """Socket table reader that replays scripted snapshots (or raises scripted errors)."""
    name = "scripted"

    def __init__(self, responses: Sequence[Union[List[SocketRow], Exception]]):
        self.responses = list(responses)
        self.calls = 0

    def read_rows(self) -> List[SocketRow]:
        idx = min(self.calls, len(self.responses) - 1)
        self.calls += 1
        response = self.responses[idx]
        if isinstance(response, Exception):
            raise response
        return list(response)


class EventCollector:
    def __init__(self):
        self.events: List[ProbeEvent] = []

    def __call__(self, event: ProbeEvent):
        self.events.append(event)

    def of_type(self, event_type: EventType) -> List[ProbeEvent]:
        return [e for e in self.events if e.type == event_type]


def instant_watcher_factory(ctx, reader):
    return ConnectionWatcher(reader, cancel_event=ctx.cancel_event, sleep=lambda seconds: None)


@pytest.fixture
def collector() -> EventCollector:
    return EventCollector()


@pytest.fixture
def probe_config() -> ProbeConfig:
    return ProbeConfig(server="10.0.0.5", port=4840, monitor_duration_ms=6000, poll_interval_ms=2000,
                       subscription_settle_ms=0)


@pytest.fixture
def make_context(tmp_path, collector, probe_config):
    def _make(config: ProbeConfig = None, write_log_file: bool = True):
        return build_context(
            config or probe_config,
            collector,
            run_id=1,
            settings={"log_directory": str(tmp_path / "logs")},
            write_log_file=write_log_file,
        )
    return _make

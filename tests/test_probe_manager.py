"""
Tests for uaprobe.probe_manager - background execution, cancellation and restarts
"""

from __future__ import annotations

import threading
from unittest.mock import patch

import pytest

from uaprobe.clients.fake import FakeEndpointClient
from uaprobe.errors import ConfigError
from uaprobe.events import EventType
from uaprobe.models import ProbeConfig
from uaprobe.probe_manager import ProbeManager, ProbeState
from uaprobe.recorder import LogRecorder

from .conftest import ScriptedReader, conn_row, instant_watcher_factory, listen_row

CONFIG = ProbeConfig(server="10.0.0.5", port=4840, monitor_duration_ms=4000, poll_interval_ms=2000,
                     subscription_settle_ms=0)


class BlockingReader:
    """Reader whose first read blocks until released."""
    name = "blocking"

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()

    def read_rows(self):
        self.entered.set()
        self.release.wait(5)
        return []


def make_manager(tmp_path, client=None, readers=None):
    readers = list(readers or [])

    def _reader_factory(ctx):
        if readers:
            return readers.pop(0)
        return ScriptedReader([[listen_row("0.0.0.0", "135")], [conn_row("10.0.0.2:5", "10.0.0.5:4840")]])

    return ProbeManager(
        app_config={"log_directory": str(tmp_path / "logs")},
        client_factory=lambda ctx: client or FakeEndpointClient(),
        reader_factory=_reader_factory,
        watcher_factory=instant_watcher_factory,
    )


class TestProbeManager:
    def test_completed_run_emits_final_result_then_finished(self, tmp_path):
        manager = make_manager(tmp_path)
        run_id = manager.start(CONFIG)
        assert manager.wait(5)

        events = manager.process_queue()
        assert all(e.run_id == run_id for e in events)
        types = [e.type for e in events]
        assert types.count(EventType.FINAL_RESULT) == 1
        assert types[-1] == EventType.FINISHED
        assert events[-1].payload == {"code": 0, "cancelled": False}
        assert EventType.ERROR not in types
        assert manager.state == ProbeState.IDLE
        assert list((tmp_path / "logs").glob("uaprobe_*.log"))

    def test_config_error_is_raised_before_starting(self, tmp_path):
        manager = make_manager(tmp_path)
        with pytest.raises(ConfigError):
            manager.start(ProbeConfig(server="10.0.0.5", port=None))
        assert manager.state == ProbeState.IDLE
        assert manager.process_queue() == []

    def test_bad_setting_is_raised_before_a_log_file_exists(self, tmp_path):
        manager = make_manager(tmp_path)
        manager.config = dict(manager.config, socket_table_source="bogus")
        with pytest.raises(ConfigError):
            manager.start(CONFIG)
        assert manager.state == ProbeState.IDLE
        assert not list((tmp_path / "logs").glob("*.log"))

    def test_factory_failure_closes_the_run_log(self, tmp_path):
        manager = make_manager(tmp_path)

        def _broken_client(ctx):
            raise ImportError("asyncua is not installed")

        manager.client_factory = _broken_client
        with patch.object(LogRecorder, "close", autospec=True, side_effect=LogRecorder.close) as mock_close:
            with pytest.raises(ImportError):
                manager.start(CONFIG)
        assert mock_close.call_count == 1
        assert manager.state == ProbeState.IDLE
        assert manager.context is None

    def test_fatal_error_emits_single_error_and_nonzero_finish(self, tmp_path):
        manager = make_manager(tmp_path, client=FakeEndpointClient(discover_error=OSError("unreachable")))
        manager.start(CONFIG)
        assert manager.wait(5)

        events = manager.process_queue()
        errors = [e for e in events if e.type == EventType.ERROR]
        assert len(errors) == 1
        assert "unreachable" in errors[0].payload["message"]
        assert events[-1].type == EventType.FINISHED
        assert events[-1].payload["code"] == 1
        assert not [e for e in events if e.type in (EventType.PARTIAL_RESULT, EventType.FINAL_RESULT)]

    def test_cancel_is_immediate_and_drops_later_events(self, tmp_path):
        blocker = BlockingReader()
        manager = make_manager(tmp_path, readers=[blocker])
        run_id = manager.start(CONFIG)
        assert blocker.entered.wait(5)

        manager.cancel()
        assert manager.state == ProbeState.IDLE
        events = manager.process_queue()
        assert events[-1].type == EventType.FINISHED
        assert events[-1].payload["cancelled"] is True
        assert events[-1].run_id == run_id

        blocker.release.set()
        assert manager.wait(5)
        assert manager.process_queue() == []

    def test_cancel_without_active_probe_is_a_noop(self, tmp_path):
        manager = make_manager(tmp_path)
        manager.cancel()
        assert manager.process_queue() == []

    def test_new_start_abandons_previous_run(self, tmp_path):
        blocker = BlockingReader()
        manager = make_manager(tmp_path, readers=[blocker])
        first = manager.start(CONFIG)
        assert blocker.entered.wait(5)

        second = manager.start(CONFIG)
        assert second == first + 1
        assert manager.wait(5)
        blocker.release.set()

        events = manager.process_queue()
        first_events = [e for e in events if e.run_id == first]
        assert first_events[-1].type == EventType.FINISHED
        assert first_events[-1].payload["cancelled"] is True
        assert not [e for e in first_events if e.type == EventType.FINAL_RESULT]

        second_events = [e for e in events if e.run_id == second]
        assert [e.type for e in second_events].count(EventType.FINAL_RESULT) == 1
        assert second_events[-1].payload == {"code": 0, "cancelled": False}

    def test_callbacks_fire_on_start_and_stop(self, tmp_path):
        started, stopped = [], []
        manager = make_manager(tmp_path)
        manager.on_probe_start = started.append
        manager.on_probe_stop = stopped.append
        run_id = manager.start(CONFIG)
        manager.wait(5)
        assert started == [run_id]
        assert stopped == [run_id]


def test_unexpected_crash_writes_the_failure_block(tmp_path):
    client = FakeEndpointClient()
    manager = make_manager(tmp_path, client=client)

    def _broken_watcher(ctx, reader):
        raise RuntimeError("watcher wiring broke")

    manager.watcher_factory = _broken_watcher
    manager.start(CONFIG)
    assert manager.wait(5)

    events = manager.process_queue()
    errors = [e for e in events if e.type == EventType.ERROR]
    assert [e.payload["message"] for e in errors] == ["watcher wiring broke"]
    assert events[-1].payload == {"code": 1, "cancelled": False}
    assert client.close_count == 1

    log_file, = (tmp_path / "logs").glob("uaprobe_*.log")
    text = log_file.read_text(encoding="utf-8")
    assert "===== PROBE FAILED =====" in text
    assert "===== ERROR AND WARNING SUMMARY =====" in text
    assert "watcher wiring broke" in text

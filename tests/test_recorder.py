"""
Tests for uaprobe.recorder - per-run log file layout and issue collection
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

import pytest

from uaprobe.errors import CaptureError, ConnectError
from uaprobe.recorder import (
    LogRecorder,
    format_table,
    iso_timestamp,
    log_file_name,
    make_log_path,
    truncate_cell,
)

LINE_RE = re.compile(r"^\[\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z\] ")


@pytest.fixture
def log_path(tmp_path):
    return str(tmp_path / "run.log")


def read_lines(path):
    with open(path, encoding="utf-8") as f:
        return f.read().splitlines()


def messages(path):
    return [LINE_RE.sub("", line) for line in read_lines(path)]


class TestNaming:
    def test_log_file_name_has_no_colons_or_dots_in_stamp(self):
        started = datetime(2026, 10, 16, 20, 5, 9, 123456, tzinfo=timezone.utc)
        assert log_file_name(started) == "uaprobe_2026-10-16T20-05-09-123Z.log"

    def test_make_log_path_creates_directory(self, tmp_path):
        started = datetime(2026, 10, 16, tzinfo=timezone.utc)
        path = make_log_path(str(tmp_path / "nested" / "logs"), started)
        assert (tmp_path / "nested" / "logs").is_dir()
        assert path.endswith(".log")

    def test_iso_timestamp_format(self):
        assert iso_timestamp(datetime(2026, 1, 2, 3, 4, 5, 6000, tzinfo=timezone.utc)) == "2026-01-02T03:04:05.006Z"


class TestTables:
    def test_truncate_cell(self):
        assert truncate_cell("abcdefgh", 6) == "abcd.."
        assert truncate_cell("abc", 6) == "abc"
        assert truncate_cell(None, 4) == ""

    def test_columns_are_fixed_width(self):
        lines = format_table(("Proto", "Port"), [("TCP", "135"), ("TCPv6", "52000")])
        assert lines[0] == "Proto  Port"
        assert lines[1] == "-----  -----"
        assert lines[2] == "TCP    135"
        assert lines[3] == "TCPv6  52000"

    def test_overflowing_cells_are_cut(self):
        lines = format_table(("Address",), [("x" * 40,)], max_width=10)
        assert lines[2] == "xxxxxxxx.."
        assert len(lines[1]) == 10


class TestLogRecorder:
    def test_every_line_is_timestamp_prefixed(self, log_path):
        rec = LogRecorder(log_path)
        rec.headline("Probe started")
        rec.detail("first\nsecond")
        rec.close()
        lines = read_lines(log_path)
        assert len(lines) == 3
        assert all(LINE_RE.match(line) for line in lines)

    def test_headlines_go_to_observer_details_do_not(self, log_path):
        seen = []
        rec = LogRecorder(log_path, on_headline=seen.append)
        rec.headline("Querying endpoints")
        rec.detail("raw dump")
        rec.section("Probe Configuration", {"server": "x"})
        rec.close()
        assert seen == ["Querying endpoints"]

    def test_section_markers_match(self, log_path):
        rec = LogRecorder(log_path)
        rec.section("Subscription Result", {"success": True}, "created")
        rec.close()
        assert messages(log_path) == [
            "===== Subscription Result =====",
            "Summary: created",
            'Detailed Data: {"success": true}',
            "===== End Subscription Result =====",
        ]

    def test_table_section(self, log_path):
        rec = LogRecorder(log_path)
        rec.table("Baseline Listening Ports", ("Proto", "Port"), [("TCP", "135")])
        rec.table("Empty", ("Proto",), [])
        rec.close()
        msgs = messages(log_path)
        assert msgs[0] == "===== Baseline Listening Ports ====="
        assert msgs[3] == "TCP    135"
        assert msgs[4] == "===== End Baseline Listening Ports ====="
        assert "(no rows)" in msgs

    def test_warnings_and_errors_are_collected(self, log_path):
        rec = LogRecorder(log_path)
        rec.warning("No endpoints returned from server", "Endpoint Query")
        try:
            raise ConnectError("connection refused")
        except ConnectError as e:
            issue = rec.error(e, "Endpoint Query", fatal=True)
        rec.close()

        assert len(rec.warnings) == 1 and len(rec.errors) == 1
        assert issue.fatal and issue.kind == "ConnectError" and "Traceback" in issue.traceback
        msgs = messages(log_path)
        assert "[WARNING] Endpoint Query: No endpoints returned from server" in msgs
        assert "===== ERROR DETECTED =====" in msgs
        assert "Error Name: ConnectError" in msgs

    def test_dump_exception_does_not_collect(self, log_path):
        rec = LogRecorder(log_path)
        rec.dump_exception(CaptureError("netstat missing"), "Baseline Port Capture")
        rec.close()
        assert rec.errors == []
        assert "Context: Baseline Port Capture" in messages(log_path)

    def test_issue_summary_replays_everything(self, log_path):
        rec = LogRecorder(log_path)
        rec.warning("capture failed", "Baseline Port Capture")
        rec.error(ConnectError("refused"), "Endpoint Query", fatal=True)
        rec.write_issue_summary()
        rec.close()
        msgs = messages(log_path)
        start = msgs.index("===== ERROR AND WARNING SUMMARY =====")
        block = msgs[start:msgs.index("===== End ERROR AND WARNING SUMMARY =====") + 1]
        assert "Total Errors: 1" in block
        assert "--- Error 1 (fatal) ---" in block
        assert "  Message: refused" in block
        assert "Total Warnings: 1" in block
        assert "  Context: Baseline Port Capture" in block
        assert "  Message: capture failed" in block

    def test_clean_run_writes_no_issue_summary(self, log_path):
        rec = LogRecorder(log_path)
        rec.headline("ok")
        rec.write_issue_summary()
        rec.close()
        assert messages(log_path) == ["ok"]

    def test_without_a_file(self):
        seen = []
        rec = LogRecorder(None, on_headline=seen.append)
        rec.headline("hello")
        rec.warning("w", "ctx")
        rec.close()
        assert seen == ["hello"]
        assert len(rec.warnings) == 1

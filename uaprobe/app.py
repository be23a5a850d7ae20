"""
Console front end for UA Probe.

Starts a probe through the ProbeManager, then periodically drains its event
queue and prints progress, per-stage summaries and log lines.
"""
import logging
import sys
import time
from typing import Any, Dict, Optional, TextIO

from .events import EventType, ProbeActions, ProbeEvent
from .models import ProbeConfig
from .probe_manager import ProbeManager
from . import summaries

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130

SEVERITY_LABELS = {
    "info": "INFO",
    "success": " OK ",
    "warn": "WARN",
    "error": "FAIL",
}

PARTIAL_TITLES = {
    "endpoints": "Endpoint Security",
    "beforeListeners": "Baseline Listeners",
    "subscriptionResult": "Subscription",
    "afterListeners": "Post-Subscription Listeners",
    "connections": "Server Callbacks",
}


class ConsoleApp:
    """The console application runner."""

    def __init__(
        self,
        app_config: Dict[str, Any],
        manager: Optional[ProbeManager] = None,
        out: Optional[TextIO] = None,
        poll_seconds: float = 0.1,
    ):
        self.out = out or sys.stdout
        self.poll_seconds = poll_seconds
        self.manager = manager or ProbeManager(app_config=app_config)

        self.actions = ProbeActions()
        self.actions.start_probe = self.manager.start
        self.actions.cancel_probe = self.manager.cancel
        self.actions.is_running = self.manager.is_running
        self.actions.process_queue = self.manager.process_queue

        self.exit_code: Optional[int] = None
        self._baseline = None
        self._last_task: Optional[str] = None

    def _print(self, text: str):
        print(text, file=self.out, flush=True)

    def _entry(self, title: str, severity: str, message: str):
        self._print(f"[{SEVERITY_LABELS.get(severity, 'INFO')}] {title}: {message}")

    def run(self, probe_config: ProbeConfig) -> int:
        """Runs one probe to completion (or Ctrl+C) and returns the process exit code."""
        self.exit_code = None
        self._entry("Probe", "info", "Starting the OPC UA endpoint probe with the current configuration.")
        self.actions.start_probe(probe_config)
        try:
            while self.exit_code is None:
                self.process_events()
                if self.exit_code is None:
                    time.sleep(self.poll_seconds)
        except KeyboardInterrupt:
            self.actions.cancel_probe()
            self._entry("Probe", "warn", "The probe was cancelled by the user.")
            self.process_events()
            if self.exit_code is None:
                self.exit_code = EXIT_CANCELLED
        return self.exit_code

    def process_events(self):
        for event in self.actions.process_queue():
            self.handle_event(event)

    def handle_event(self, event: ProbeEvent):
        payload = event.payload
        if event.type == EventType.PROGRESS:
            task = payload.get("task") or "Working..."
            if task != self._last_task:
                self._print(f"[{payload.get('percent', 0):>3}%] {task}")
                self._last_task = task
        elif event.type == EventType.PARTIAL_RESULT:
            self._handle_partial(payload.get("stage"), payload.get("payload"))
        elif event.type == EventType.FINAL_RESULT:
            self._entry("Probe", "success",
                        "The probe has completed. Review the entries above for detailed results.")
        elif event.type == EventType.LOG_LINE:
            logging.debug(payload.get("text", ""))
        elif event.type == EventType.ERROR:
            message = summaries.shorten_error(payload.get("message")) or "An unknown error occurred in the probe."
            self._entry("Error", "error", message)
        elif event.type == EventType.FINISHED:
            self._handle_finished(payload)

    def _handle_partial(self, stage: Optional[str], data: Any):
        title = PARTIAL_TITLES.get(stage or "", stage or "Result")
        if stage == "endpoints":
            severity, text = summaries.summarize_endpoints(data or [])
        elif stage == "beforeListeners":
            self._baseline = data or []
            severity, text = summaries.summarize_listeners(self._baseline)
        elif stage == "subscriptionResult":
            severity, text = summaries.summarize_subscription(data)
        elif stage == "afterListeners":
            severity, text = summaries.summarize_listeners(data or [], self._baseline)
        elif stage == "connections":
            severity, text = summaries.summarize_connections(data or [])
        else:
            severity, text = "info", str(data)
        self._entry(title, severity, text)

    def _handle_finished(self, payload: Dict[str, Any]):
        if payload.get("cancelled"):
            self.exit_code = EXIT_CANCELLED
        else:
            self.exit_code = EXIT_OK if payload.get("code") == 0 else EXIT_FAILED
        context = self.manager.context
        if context and context.log_path:
            self._print(f"Log file: {context.log_path}")

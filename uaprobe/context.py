"""
Per-run context threaded through every stage of a probe.
"""
from __future__ import annotations
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .configuration import DEFAULT_CONFIG, validate_settings
from .errors import ProbeCancelled
from .events import EventSink, log_line_event, partial_result_event
from .models import ProbeConfig
from .parsing import normalize_endpoint, extract_host
from .progress import ProgressEmitter
from .recorder import LogRecorder, make_log_path, utc_now


@dataclass
class ProbeContext:
    """Everything one run needs: its parameters, where it logs, and how it reports."""
    run_id: int
    config: ProbeConfig
    endpoint_url: str
    target_host: str
    started_at: datetime
    recorder: LogRecorder
    progress: ProgressEmitter
    sink: EventSink
    settings: Dict[str, Any] = field(default_factory=lambda: DEFAULT_CONFIG.copy())
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @property
    def log_path(self) -> Optional[str]:
        return self.recorder.log_path

    def check_cancelled(self, stage: Optional[str] = None):
        if self.cancel_event.is_set():
            raise ProbeCancelled("Probe cancelled", stage=stage)

    def emit_partial(self, stage: str, payload: Any):
        self.sink(partial_result_event(stage, payload, self.run_id))


def build_context(
    config: ProbeConfig,
    sink: EventSink,
    run_id: int = 0,
    settings: Optional[Dict[str, Any]] = None,
    cancel_event: Optional[threading.Event] = None,
    write_log_file: bool = True,
) -> ProbeContext:
    """
    Normalizes the endpoint and opens the run's log file.
    Raises ConfigError before anything is written when the server, port or
    any application setting is unusable.
    """
    endpoint_url = normalize_endpoint(config.server, config.port)
    target_host = extract_host(endpoint_url) or config.server

    merged = DEFAULT_CONFIG.copy()
    merged.update(settings or {})
    validate_settings(merged)

    started_at = utc_now()
    log_path = make_log_path(merged["log_directory"], started_at) if write_log_file else None
    recorder = LogRecorder(log_path, on_headline=lambda text: sink(log_line_event(text, run_id)))

    return ProbeContext(
        run_id=run_id,
        config=config,
        endpoint_url=endpoint_url,
        target_host=target_host,
        started_at=started_at,
        recorder=recorder,
        progress=ProgressEmitter(sink, run_id),
        sink=sink,
        settings=merged,
        cancel_event=cancel_event or threading.Event(),
    )

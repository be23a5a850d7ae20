"""
Manages the lifecycle of the background probe.
"""
from __future__ import annotations
import logging
import queue
import threading
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, Set

from .clients.base import EndpointClient
from .context import ProbeContext, build_context
from .controller import ProbeController, WatcherFactory
from .errors import ProbeCancelled, ProbeError
from .events import ProbeEvent, EventType, error_event, finished_event
from .models import ProbeConfig
from .network.sockets import SocketTableReader, get_table_reader

ClientFactory = Callable[[ProbeContext], EndpointClient]
ReaderFactory = Callable[[ProbeContext], SocketTableReader]


class ProbeState(Enum):
    """Represents whether a probe is currently running."""
    IDLE = auto()
    RUNNING = auto()


def default_client_factory(ctx: ProbeContext) -> EndpointClient:
    from .clients.opcua import OpcUaEndpointClient
    return OpcUaEndpointClient(
        timeout=float(ctx.settings.get("connect_timeout_seconds", 5)),
        settle_ms=ctx.config.subscription_settle_ms,
        cancel_event=ctx.cancel_event,
    )


def default_reader_factory(ctx: ProbeContext) -> SocketTableReader:
    return get_table_reader(
        ctx.settings.get("socket_table_source", "auto"),
        float(ctx.settings.get("netstat_timeout_seconds", 10)),
    )


class ProbeManager:
    """
    Runs at most one probe at a time in a background thread.

    Starting a new probe while one is active abandons the old one immediately:
    its cancel signal is set, its events are dropped, and whatever its endpoint
    client still holds is left to die with the thread.
    """

    def __init__(
        self,
        app_config: Optional[Dict[str, Any]] = None,
        client_factory: Optional[ClientFactory] = None,
        reader_factory: Optional[ReaderFactory] = None,
        watcher_factory: Optional[WatcherFactory] = None,
        write_log_files: bool = True,
        on_probe_start: Optional[Callable[[int], None]] = None,
        on_probe_stop: Optional[Callable[[int], None]] = None,
    ):
        self.config = app_config or {}
        self.client_factory = client_factory or default_client_factory
        self.reader_factory = reader_factory or default_reader_factory
        self.watcher_factory = watcher_factory
        self.write_log_files = write_log_files
        self.on_probe_start = on_probe_start
        self.on_probe_stop = on_probe_stop

        self.state = ProbeState.IDLE
        self.update_queue: queue.Queue[ProbeEvent] = queue.Queue()
        self.context: Optional[ProbeContext] = None
        self.controller: Optional[ProbeController] = None
        self._thread: Optional[threading.Thread] = None
        self._run_counter = 0
        self._abandoned: Set[int] = set()
        self._closed: Set[int] = set()

    def _sink_for(self, run_id: int) -> Callable[[ProbeEvent], None]:
        def _sink(event: ProbeEvent):
            if run_id in self._abandoned:
                return
            self.update_queue.put(event)
        return _sink

    def start(self, config: ProbeConfig) -> int:
        """
        Starts a probe and returns its run id.
        Raises ConfigError synchronously when the server, port or a setting is unusable.
        """
        if self.state == ProbeState.RUNNING:
            self.cancel()

        run_id = self._run_counter + 1
        cancel_event = threading.Event()
        context = build_context(
            config,
            self._sink_for(run_id),
            run_id=run_id,
            settings=self.config,
            cancel_event=cancel_event,
            write_log_file=self.write_log_files,
        )
        self._run_counter = run_id

        try:
            client = self.client_factory(context)
            reader = self.reader_factory(context)
        except Exception:
            context.recorder.close()
            raise

        controller = ProbeController(
            context,
            client=client,
            reader=reader,
            watcher_factory=self.watcher_factory,
        )
        self.context = context
        self.controller = controller
        self.state = ProbeState.RUNNING
        if self.on_probe_start:
            self.on_probe_start(run_id)

        logging.info(f"Starting probe {run_id} against {context.endpoint_url} (log: {context.log_path})")
        self._thread = threading.Thread(target=self._run, args=(controller,), daemon=True)
        self._thread.start()
        return run_id

    def _run(self, controller: ProbeController):
        """Thread body: runs the pipeline and reports how it ended."""
        ctx = controller.ctx
        code = 0
        try:
            controller.run()
        except ProbeCancelled:
            return
        except ProbeError as e:
            ctx.sink(error_event(str(e), ctx.run_id))
            code = 1
        except Exception as e:
            logging.exception(f"Probe {ctx.run_id} crashed")
            ctx.recorder.error(e, "Probe Execution", fatal=True)
            controller.fail()
            ctx.sink(error_event(str(e), ctx.run_id))
            code = 1
        finally:
            ctx.recorder.close()

        ctx.sink(finished_event(code, ctx.run_id))
        if self.context is ctx:
            self.state = ProbeState.IDLE
            if self.on_probe_stop:
                self.on_probe_stop(ctx.run_id)

    def cancel(self):
        """Abandons the active probe, if any. The thread is not waited for."""
        if self.state != ProbeState.RUNNING or not self.context:
            return
        ctx = self.context
        self._abandoned.add(ctx.run_id)
        ctx.cancel_event.set()
        self.state = ProbeState.IDLE
        logging.info(f"Probe {ctx.run_id} cancelled")
        self.update_queue.put(finished_event(None, ctx.run_id, cancelled=True))
        if self.on_probe_stop:
            self.on_probe_stop(ctx.run_id)

    def is_running(self) -> bool:
        return self.state == ProbeState.RUNNING

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Waits for the current probe thread to exit. Returns False on timeout."""
        if not self._thread:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def process_queue(self) -> List[ProbeEvent]:
        """
        Drains the update queue and returns the events in order.
        Anything a cancelled run queues after its 'finished' event is dropped.
        """
        messages = []
        try:
            while True:
                event = self.update_queue.get_nowait()
                if event.run_id in self._closed:
                    continue
                if event.type == EventType.FINISHED and event.payload.get("cancelled"):
                    self._closed.add(event.run_id)
                messages.append(event)
        except queue.Empty:
            pass
        return messages

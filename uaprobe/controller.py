"""
Core probe controller.

Drives one probe through its stages and owns the failure policy of each:
endpoint discovery is fatal, everything after it degrades and carries on.
"""
from __future__ import annotations
import logging
from dataclasses import asdict
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

from . import progress as pct
from .clients.base import EndpointClient
from .context import ProbeContext
from .errors import CaptureError, ConnectError, MonitorError, ProbeCancelled, SubscriptionError
from .events import final_result_event
from .models import (
    ConnectionAttempt,
    EndpointDescriptor,
    ProbeResult,
    SocketRecord,
    SubscriptionOutcome,
)
from .network.diff import diff_snapshots
from .network.sockets import SocketTableReader, capture_listeners
from .network.watcher import ConnectionWatcher
from .recorder import iso_timestamp


LISTENER_COLUMNS = ("Proto", "Local Address", "Port", "PID")
CONNECTION_COLUMNS = ("Time", "Proto", "Local", "Remote", "State", "PID")


class ProbeStage(Enum):
    """Stages of a probe run, in execution order."""
    INIT = auto()
    QUERY_ENDPOINTS = auto()
    BASELINE_CAPTURE = auto()
    SUBSCRIBE = auto()
    POST_CAPTURE = auto()
    MONITOR = auto()
    COMPLETED = auto()
    FAILED = auto()
    CANCELLED = auto()


WatcherFactory = Callable[[ProbeContext, SocketTableReader], ConnectionWatcher]


def _unique(values) -> List[Any]:
    return [v for v in dict.fromkeys(values) if v]


def summarize_endpoint_security(endpoints: List[EndpointDescriptor]) -> Dict[str, Any]:
    policies: Dict[str, int] = {}
    modes: Dict[str, int] = {}
    for ep in endpoints:
        policy = ep.security_policy_uri or "Unknown"
        mode = ep.security_mode or "Unknown"
        policies[policy] = policies.get(policy, 0) + 1
        modes[mode] = modes.get(mode, 0) + 1
    return {
        "total": len(endpoints),
        "securityPolicies": policies,
        "securityModes": modes,
        "userTokenTypes": _unique(t for ep in endpoints for t in ep.user_token_types),
    }


def _listener_rows(records: List[SocketRecord]):
    return [(r.proto, r.local_address, r.local_port, r.pid) for r in records]


def _connection_rows(attempts: List[ConnectionAttempt]):
    return [
        (a.timestamp, a.proto, f"{a.local_address}:{a.local_port}",
         f"{a.remote_address}:{a.remote_port}", a.state, a.pid)
        for a in attempts
    ]


def default_watcher_factory(ctx: ProbeContext, reader: SocketTableReader) -> ConnectionWatcher:
    return ConnectionWatcher(reader, cancel_event=ctx.cancel_event)


class ProbeController:
    """Runs the probe pipeline for a single context."""

    def __init__(
        self,
        context: ProbeContext,
        client: EndpointClient,
        reader: SocketTableReader,
        watcher_factory: Optional[WatcherFactory] = None,
    ):
        self.ctx = context
        self.client = client
        self.reader = reader
        self.watcher_factory = watcher_factory or default_watcher_factory
        self.state = ProbeStage.INIT
        self.completed_stages: List[ProbeStage] = []
        self.result: Optional[ProbeResult] = None

    @property
    def recorder(self):
        return self.ctx.recorder

    def _enter(self, stage: ProbeStage, task: str, percent: int):
        self.ctx.check_cancelled(stage.name.lower())
        self.state = stage
        logging.info(f"Run {self.ctx.run_id}: entering {stage.name}")
        self.ctx.progress.report(task, percent)

    def _complete(self, stage: ProbeStage, partial_name: str, payload: Any):
        self.completed_stages.append(stage)
        self.ctx.emit_partial(partial_name, payload)

    # ------------------- Pipeline -------------------

    def run(self) -> ProbeResult:
        """
        Runs every stage and returns the aggregate result.
        Raises ConnectError when discovery fails and ProbeCancelled when cancelled.
        """
        rec = self.recorder
        rec.headline("Probe started")
        rec.section("Probe Configuration", self.ctx.config.to_dict(), "Initial probe configuration parameters")

        try:
            endpoints = self._query_endpoints()
            before = self._capture_baseline()
            outcome = self._subscribe()
            after, port_diff = self._capture_after(before)
            connections = self._monitor()
        except ProbeCancelled:
            self.state = ProbeStage.CANCELLED
            logging.info(f"Run {self.ctx.run_id}: cancelled")
            raise
        except ConnectError:
            self.fail()
            raise

        self.result = ProbeResult(
            endpoint_url=self.ctx.endpoint_url,
            endpoints=endpoints,
            before_listeners=before,
            subscription=outcome,
            after_listeners=after,
            port_diff=port_diff,
            connections=connections,
        )
        self._finish(self.result)
        return self.result

    def _query_endpoints(self) -> List[EndpointDescriptor]:
        rec = self.recorder
        self._enter(ProbeStage.QUERY_ENDPOINTS, "Querying endpoints", pct.QUERY_ENDPOINTS_PERCENT)
        rec.headline("Querying endpoints")
        rec.headline(f"Connecting to endpoint: {self.ctx.endpoint_url}")

        try:
            endpoints = self.client.discover(self.ctx.endpoint_url)
        except ConnectError as e:
            rec.error(e, "Endpoint Query", fatal=True)
            raise

        rec.headline(f"Successfully retrieved {len(endpoints)} endpoint(s)")
        if endpoints:
            rec.section("Endpoint Query Results", {
                "endpointUrl": self.ctx.endpoint_url,
                "endpointCount": len(endpoints),
                "summary": summarize_endpoint_security(endpoints),
                "endpoints": [asdict(ep) for ep in endpoints],
            }, f"Found {len(endpoints)} endpoint(s) from {self.ctx.endpoint_url}")
        else:
            rec.warning("No endpoints returned from server", "Endpoint Query")
            rec.section("Endpoint Query Results", {"endpointUrl": self.ctx.endpoint_url, "endpoints": []},
                        "No endpoints found - server may be unreachable or endpoint URL incorrect")

        self._complete(ProbeStage.QUERY_ENDPOINTS, "endpoints", [asdict(ep) for ep in endpoints])
        return endpoints

    def _capture(self, context: str) -> List[SocketRecord]:
        """Takes a listening snapshot; a capture failure becomes a warning and an empty list."""
        try:
            return capture_listeners(self.reader)
        except CaptureError as e:
            self.recorder.dump_exception(e, context)
            self.recorder.warning(f"Failed to capture listening ports, continuing with empty list: {e}", context)
            return []

    def _capture_baseline(self) -> List[SocketRecord]:
        rec = self.recorder
        self._enter(ProbeStage.BASELINE_CAPTURE, "Recording listening ports (before)", pct.BASELINE_CAPTURE_PERCENT)
        rec.headline("Capturing baseline listening ports")

        before = self._capture("Baseline Port Capture")
        ports = _unique(r.local_port for r in before)
        rec.headline(f"Captured {len(before)} listening socket(s) before subscription")
        rec.table("Baseline Listening Ports", LISTENER_COLUMNS, _listener_rows(before),
                  f"Baseline: {len(before)} listening socket(s) on {len(ports)} unique port(s)")

        self._complete(ProbeStage.BASELINE_CAPTURE, "beforeListeners", [asdict(r) for r in before])
        return before

    def _subscribe(self) -> SubscriptionOutcome:
        rec = self.recorder
        cfg = self.ctx.config
        self._enter(ProbeStage.SUBSCRIBE, "Creating subscription and monitored item", pct.SUBSCRIBE_PERCENT)
        rec.headline("Creating subscription and monitored item")
        rec.headline(f"Target node: {cfg.node_id}")
        rec.headline(f"Publishing interval: {cfg.publishing_interval_ms}ms")

        try:
            outcome = self.client.subscribe(self.ctx.endpoint_url, cfg.node_id, cfg.publishing_interval_ms)
        except ProbeCancelled:
            raise
        except Exception as e:
            # The client contract says subscribe never raises; treat a violation like any other failure.
            logging.warning(f"Endpoint client raised from subscribe: {e}")
            outcome = SubscriptionOutcome.failed(str(e))

        if outcome.success:
            rec.headline(f"Subscription created successfully, monitored node: {outcome.node_monitored}")
            rec.section("Subscription Result", asdict(outcome), "Subscription and monitored item created successfully")
        else:
            rec.error(SubscriptionError(outcome.error or "Subscription failed", stage="subscribe"),
                      "Subscription Creation")
            rec.headline(f"Subscription failed: {outcome.error or 'unknown error'}")
            rec.section("Subscription Result", asdict(outcome), "Subscription creation failed")

        self._complete(ProbeStage.SUBSCRIBE, "subscriptionResult", asdict(outcome))
        return outcome

    def _capture_after(self, before: List[SocketRecord]):
        rec = self.recorder
        self._enter(ProbeStage.POST_CAPTURE, "Recording listening ports (after)", pct.POST_CAPTURE_PERCENT)
        rec.headline("Capturing listening ports after subscription")

        after = self._capture("Post-Subscription Port Capture")
        port_diff = diff_snapshots(before, after)
        rec.headline(f"Captured {len(after)} listening socket(s) after subscription")
        rec.table("Post-Subscription Listening Ports", LISTENER_COLUMNS, _listener_rows(after),
                  f"After subscription: {len(after)} listening socket(s), "
                  f"{len(port_diff.new_ports)} new port(s) detected")
        rec.section("Baseline Comparison", {
            "beforeCount": len(before),
            "afterCount": len(after),
            "newPorts": port_diff.new_ports,
            "removedPorts": port_diff.removed_ports,
            "netChange": port_diff.net_change,
        })

        self._complete(ProbeStage.POST_CAPTURE, "afterListeners", [asdict(r) for r in after])
        return after, port_diff

    def _monitor(self) -> List[ConnectionAttempt]:
        rec = self.recorder
        cfg = self.ctx.config
        seconds = cfg.monitor_duration_ms / 1000.0
        self._enter(ProbeStage.MONITOR, f"Monitoring incoming connection attempts ({seconds:g}s)",
                    pct.MONITOR_START_PERCENT)
        rec.headline("Monitoring incoming connections from server")
        rec.headline(f"Monitoring for connections from server IP: {self.ctx.target_host} (endpoint: {self.ctx.endpoint_url})")
        rec.headline(f"Monitoring duration: {seconds:g} seconds")

        def _on_tick(tick: int, polls: int, matches: int):
            self.ctx.progress.report_step(f"Monitoring incoming connections ({tick}/{polls})",
                                          pct.MONITOR_START_PERCENT, pct.MONITOR_END_PERCENT, tick, polls)

        watcher = self.watcher_factory(self.ctx, self.reader)
        watcher.on_tick = _on_tick
        try:
            connections = watcher.watch(self.ctx.target_host, cfg.monitor_duration_ms, cfg.poll_interval_ms)
        except MonitorError as e:
            rec.dump_exception(e, "Connection Monitoring")
            rec.warning(f"Failed to monitor connections, continuing with empty list: {e}", "Connection Monitoring")
            connections = []

        rec.headline(f"Monitoring complete: {len(connections)} connection attempt(s) detected")
        if connections:
            summary = (f"Detected {len(connections)} incoming connection attempt(s) "
                       f"from server IP {self.ctx.target_host}")
        else:
            summary = (f"No incoming connections detected from server IP {self.ctx.target_host} - "
                       "server may not be attempting callbacks or firewall may be blocking")
        rec.table("Incoming Connection Monitoring Results", CONNECTION_COLUMNS,
                  _connection_rows(connections), summary)

        self._complete(ProbeStage.MONITOR, "connections", [asdict(c) for c in connections])
        return connections

    # ------------------- Terminal states -------------------

    def _finish(self, result: ProbeResult):
        rec = self.recorder
        self.state = ProbeStage.COMPLETED
        self.ctx.progress.report("Complete", pct.COMPLETE_PERCENT)

        rec.begin_section("PROBE COMPLETION SUMMARY")
        rec.detail(f"Probe completed at: {iso_timestamp()}")
        rec.detail(f"Configuration: {self.ctx.config.to_dict()}")
        rec.detail(f"Endpoints found: {len(result.endpoints)}")
        rec.detail(f"Baseline listeners: {len(result.before_listeners)}")
        rec.detail(f"Post-subscription listeners: {len(result.after_listeners)}")
        rec.detail(f"New ports: {len(result.port_diff.new_ports)}, removed ports: "
                   f"{len(result.port_diff.removed_ports)}, net change: {result.port_diff.net_change}")
        rec.detail(f"Subscription success: {'Yes' if result.subscription.success else 'No'}")
        rec.detail(f"Incoming connections detected: {len(result.connections)}")
        rec.detail(f"Errors: {len(rec.errors)}, warnings: {len(rec.warnings)}")
        rec.end_section("PROBE COMPLETION SUMMARY")

        rec.write_issue_summary()
        rec.section("Complete Probe Results", result.to_dict(), "Complete aggregated results from all probe steps")

        self.ctx.sink(final_result_event(result.to_dict(), self.ctx.run_id))
        rec.headline("Probe finished successfully")
        self.client.close()

    def fail(self):
        """Writes the failure block and issue summary, then releases the client."""
        rec = self.recorder
        self.state = ProbeStage.FAILED
        rec.begin_section("PROBE FAILED")
        rec.detail(f"Probe failed at: {iso_timestamp()}")
        rec.detail(f"Configuration: {self.ctx.config.to_dict()}")
        rec.end_section("PROBE FAILED")
        rec.write_issue_summary()
        self.client.close()

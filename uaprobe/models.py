from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import List, Optional, Dict, Any, Tuple, Mapping

from .errors import ConfigError
from .parsing import split_inline_port

DEFAULT_PORT = 4840
DEFAULT_NODE_ID = "ns=0;i=2258"  # Server_ServerStatus_CurrentTime
DEFAULT_PUBLISHING_INTERVAL_MS = 250
DEFAULT_MONITOR_DURATION_MS = 30000
DEFAULT_POLL_INTERVAL_MS = 2000
DEFAULT_SETTLE_MS = 1500


@dataclass(frozen=True)
class ProbeConfig:
    """User-supplied parameters for a single probe run."""
    server: str
    port: Optional[int] = DEFAULT_PORT
    node_id: str = DEFAULT_NODE_ID
    publishing_interval_ms: int = DEFAULT_PUBLISHING_INTERVAL_MS
    monitor_duration_ms: int = DEFAULT_MONITOR_DURATION_MS
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    subscription_settle_ms: int = DEFAULT_SETTLE_MS

    def __post_init__(self):
        if self.port is not None and not (0 < self.port < 65536):
            raise ConfigError(f"Invalid port '{self.port}'. Use a number between 1 and 65535.")
        if self.publishing_interval_ms <= 0:
            raise ConfigError("Publishing interval must be greater than zero.")
        if self.monitor_duration_ms <= 0 or self.poll_interval_ms <= 0:
            raise ConfigError("Monitoring duration and poll interval must be greater than zero.")
        if self.subscription_settle_ms < 0:
            raise ConfigError("Subscription settle delay cannot be negative.")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "ProbeConfig":
        """
        Builds a config from loosely typed values (CLI arguments, YAML settings).
        Missing or empty values fall back to the defaults above.
        """
        server = values.get("server")
        if not server or not str(server).strip():
            raise ConfigError("server missing")

        def _int(key: str, default: Optional[int]) -> Optional[int]:
            raw = values.get(key)
            if raw is None or raw == "":
                return default
            try:
                return int(raw)
            except (TypeError, ValueError):
                raise ConfigError(f"'{key}' must be an integer, got '{raw}'.")

        # A port typed into the server field only counts when no explicit port was given.
        _, inline_port = split_inline_port(str(server))
        default_port = None if inline_port is not None else DEFAULT_PORT

        return cls(
            server=str(server),
            port=_int("port", default_port),
            node_id=str(values.get("node_id") or DEFAULT_NODE_ID),
            publishing_interval_ms=_int("publishing_interval_ms", DEFAULT_PUBLISHING_INTERVAL_MS),
            monitor_duration_ms=_int("monitor_duration_ms", DEFAULT_MONITOR_DURATION_MS),
            poll_interval_ms=_int("poll_interval_ms", DEFAULT_POLL_INTERVAL_MS),
            subscription_settle_ms=_int("subscription_settle_ms", DEFAULT_SETTLE_MS),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EndpointDescriptor:
    """A server endpoint returned by discovery."""
    url: str
    security_policy_uri: str
    security_mode: str
    user_token_types: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SocketRow:
    """One raw row of the OS connection table, before any filtering."""
    proto: str
    local: str
    remote: str
    state: str
    pid: str


@dataclass(frozen=True)
class SocketRecord:
    """A listening socket observed in a snapshot."""
    proto: str
    local_address: str
    local_port: str
    pid: str

    @property
    def key(self) -> str:
        return f"{self.local_address}:{self.local_port}"


@dataclass(frozen=True)
class ConnectionAttempt:
    """A connection-table row whose remote end is the probed server."""
    timestamp: str
    proto: str
    local_address: str
    local_port: str
    remote_address: str
    remote_port: str
    state: str
    pid: str


@dataclass(frozen=True)
class SubscriptionOutcome:
    """Result of the subscribe step. Exactly one of node_monitored/error is set."""
    success: bool
    node_monitored: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def succeeded(cls, node_id: str) -> "SubscriptionOutcome":
        return cls(success=True, node_monitored=node_id)

    @classmethod
    def failed(cls, error: str) -> "SubscriptionOutcome":
        return cls(success=False, error=error)


@dataclass(frozen=True)
class PortDiff:
    """Set difference between two listening-socket snapshots."""
    new_ports: List[str] = field(default_factory=list)
    removed_ports: List[str] = field(default_factory=list)
    net_change: int = 0


@dataclass(frozen=True)
class ProbeResult:
    """Aggregate result of a completed probe."""
    endpoint_url: str
    endpoints: List[EndpointDescriptor]
    before_listeners: List[SocketRecord]
    subscription: SubscriptionOutcome
    after_listeners: List[SocketRecord]
    port_diff: PortDiff
    connections: List[ConnectionAttempt]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

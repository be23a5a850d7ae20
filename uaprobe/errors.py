"""
Exception types raised by the probe pipeline.
"""
from __future__ import annotations
from typing import Optional


class ProbeError(Exception):
    """Base class for all probe failures."""

    def __init__(self, message: str, *, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage


class ConfigError(ProbeError):
    """Missing or invalid host, port or probe parameter."""


class ConnectError(ProbeError):
    """The endpoint could not be reached or refused discovery."""


class CaptureError(ProbeError):
    """The socket table could not be captured or read."""


class SubscriptionError(ProbeError):
    """A subscription or monitored item could not be established."""


class MonitorError(ProbeError):
    """The connection watcher could not complete its observation window."""


class ProbeCancelled(ProbeError):
    """Raised at a suspension point once the run has been cancelled."""

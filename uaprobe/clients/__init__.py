"""
Endpoint clients used by the probe.
"""

from .base import EndpointClient
from .fake import FakeEndpointClient

__all__ = [
    "EndpointClient",
    "FakeEndpointClient",
]

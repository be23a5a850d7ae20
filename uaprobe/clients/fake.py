"""
Deterministic endpoint client for exercising the probe without a live server.
"""
from __future__ import annotations
from typing import Any, List, Optional, Tuple

from ..errors import ConnectError
from ..models import EndpointDescriptor, SubscriptionOutcome

DEFAULT_FAKE_ENDPOINTS = [
    EndpointDescriptor(
        url="opc.tcp://fake-server:4840",
        security_policy_uri="http://opcfoundation.org/UA/SecurityPolicy#None",
        security_mode="None_",
        user_token_types=("Anonymous",),
    ),
    EndpointDescriptor(
        url="opc.tcp://fake-server:4840",
        security_policy_uri="http://opcfoundation.org/UA/SecurityPolicy#Basic256Sha256",
        security_mode="SignAndEncrypt",
        user_token_types=("Anonymous", "UserName"),
    ),
]


class FakeEndpointClient:
    """
    Scripted endpoint client.

    Set discover_error to make discovery fail, outcome to choose the
    subscription result, or subscribe_error to make subscribe misbehave and raise.
    """
    name = "fake"

    def __init__(
        self,
        endpoints: Optional[List[EndpointDescriptor]] = None,
        discover_error: Optional[Exception] = None,
        outcome: Optional[SubscriptionOutcome] = None,
        subscribe_error: Optional[Exception] = None,
    ):
        self.endpoints = list(DEFAULT_FAKE_ENDPOINTS if endpoints is None else endpoints)
        self.discover_error = discover_error
        self.outcome = outcome
        self.subscribe_error = subscribe_error
        self.calls: List[Tuple[str, Any]] = []
        self.close_count = 0

    def discover(self, endpoint_url: str) -> List[EndpointDescriptor]:
        self.calls.append(("discover", endpoint_url))
        if self.discover_error is not None:
            if isinstance(self.discover_error, ConnectError):
                raise self.discover_error
            raise ConnectError(str(self.discover_error), stage="discover") from self.discover_error
        return list(self.endpoints)

    def subscribe(self, endpoint_url: str, node_id: str, publishing_interval_ms: int) -> SubscriptionOutcome:
        self.calls.append(("subscribe", (endpoint_url, node_id, publishing_interval_ms)))
        if self.subscribe_error is not None:
            raise self.subscribe_error
        if self.outcome is not None:
            return self.outcome
        return SubscriptionOutcome.succeeded(node_id)

    def close(self) -> None:
        self.calls.append(("close", None))
        self.close_count += 1

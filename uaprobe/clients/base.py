from __future__ import annotations
from typing import List, Protocol

from ..models import EndpointDescriptor, SubscriptionOutcome


class EndpointClient(Protocol):
    """
    Protocol for the remote protocol client the probe drives.

    - discover: raises ConnectError when the transport can't be established
      or the server refuses discovery.
    - subscribe: never raises for protocol failures; they come back as a
      failed SubscriptionOutcome.
    - close: idempotent, best-effort.
    """
    name: str

    def discover(self, endpoint_url: str) -> List[EndpointDescriptor]:
        ...

    def subscribe(self, endpoint_url: str, node_id: str, publishing_interval_ms: int) -> SubscriptionOutcome:
        ...

    def close(self) -> None:
        ...

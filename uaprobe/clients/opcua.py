"""
OPC UA endpoint client backed by asyncua.

Every call opens its own connection inside a private event loop and tears it
down before returning, so nothing outlives a single discover/subscribe call.
"""
from __future__ import annotations
import asyncio
import logging
import threading
from typing import List, Optional

from asyncua import Client, ua

from ..errors import ConnectError, ProbeCancelled
from ..models import EndpointDescriptor, SubscriptionOutcome


REQUESTED_LIFETIME_COUNT = 10000
REQUESTED_MAX_KEEPALIVE_COUNT = 10
MAX_NOTIFICATIONS_PER_PUBLISH = 1000
MONITORED_QUEUE_SIZE = 10


def _enum_name(value) -> str:
    return getattr(value, "name", None) or str(value)


def to_descriptor(ep) -> EndpointDescriptor:
    """Maps an asyncua EndpointDescription onto an EndpointDescriptor."""
    tokens = getattr(ep, "UserIdentityTokens", None) or []
    token_types = tuple(dict.fromkeys(_enum_name(t.TokenType) for t in tokens))
    return EndpointDescriptor(
        url=ep.EndpointUrl or "",
        security_policy_uri=ep.SecurityPolicyUri or "",
        security_mode=_enum_name(ep.SecurityMode),
        user_token_types=token_types,
    )


class _DataChangeHandler:
    """Subscription handler; notifications only matter as traffic, not as data."""

    def datachange_notification(self, node, val, data):
        logging.debug(f"Data change on {node}: {val}")

    def status_change_notification(self, status):
        logging.debug(f"Subscription status change: {status}")


class OpcUaEndpointClient:
    """Endpoint client that talks to a live server over opc.tcp."""
    name = "asyncua"

    def __init__(
        self,
        timeout: float = 5.0,
        settle_ms: int = 1500,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.timeout = timeout
        self.settle_ms = settle_ms
        self.cancel_event = cancel_event or threading.Event()
        self._closed = False

    def _ensure_open(self):
        if self._closed:
            raise ConnectError("Endpoint client is closed")

    # ------------------- Discovery -------------------

    def discover(self, endpoint_url: str) -> List[EndpointDescriptor]:
        self._ensure_open()
        try:
            endpoints = asyncio.run(self._discover(endpoint_url))
        except ConnectError:
            raise
        except Exception as e:
            raise ConnectError(f"Could not query endpoints from {endpoint_url}: {e}", stage="discover") from e
        return [to_descriptor(ep) for ep in endpoints]

    async def _discover(self, endpoint_url: str):
        client = Client(url=endpoint_url, timeout=self.timeout)
        return await client.connect_and_get_server_endpoints()

    # ------------------- Subscription -------------------

    def subscribe(self, endpoint_url: str, node_id: str, publishing_interval_ms: int) -> SubscriptionOutcome:
        self._ensure_open()
        try:
            return asyncio.run(self._subscribe(endpoint_url, node_id, publishing_interval_ms))
        except ProbeCancelled:
            raise
        except Exception as e:
            # Anything escaping the coroutine (e.g. loop setup) is still an outcome, not an exception.
            return SubscriptionOutcome.failed(str(e))

    async def _subscribe(self, endpoint_url: str, node_id: str, publishing_interval_ms: int) -> SubscriptionOutcome:
        client = Client(url=endpoint_url, timeout=self.timeout)
        subscription = None
        try:
            await client.connect()

            params = ua.CreateSubscriptionParameters()
            params.RequestedPublishingInterval = publishing_interval_ms
            params.RequestedLifetimeCount = REQUESTED_LIFETIME_COUNT
            params.RequestedMaxKeepAliveCount = REQUESTED_MAX_KEEPALIVE_COUNT
            params.MaxNotificationsPerPublish = MAX_NOTIFICATIONS_PER_PUBLISH
            params.PublishingEnabled = True
            params.Priority = 0
            subscription = await client.create_subscription(params, _DataChangeHandler())

            node = client.get_node(node_id)
            await subscription.subscribe_data_change(
                node,
                queuesize=MONITORED_QUEUE_SIZE,
                sampling_interval=publishing_interval_ms,
            )

            # Give the server time to open any callback channel.
            await self._settle()
            outcome = SubscriptionOutcome.succeeded(node_id)
        except ProbeCancelled:
            # Hard stop: the session is abandoned, not closed.
            raise
        except Exception as e:
            outcome = SubscriptionOutcome.failed(str(e))

        await self._teardown(client, subscription)
        return outcome

    async def _settle(self):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settle_ms / 1000.0
        while loop.time() < deadline:
            if self.cancel_event.is_set():
                raise ProbeCancelled("Subscription cancelled", stage="subscribe")
            await asyncio.sleep(min(0.1, max(0.0, deadline - loop.time())))

    async def _teardown(self, client: Client, subscription):
        if subscription is not None:
            try:
                await subscription.delete()
            except Exception as e:
                logging.debug(f"Ignoring subscription teardown failure: {e}")
        try:
            await client.disconnect()
        except Exception as e:
            logging.debug(f"Ignoring disconnect failure: {e}")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        logging.debug("Endpoint client closed")

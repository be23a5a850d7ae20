"""
Turns partial results into short human-readable summaries.

Each summarizer returns (severity, text) where severity is one of
'info', 'success', 'warn' or 'error'.
"""
from __future__ import annotations
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

Summary = Tuple[str, str]
MAX_ERROR_LENGTH = 220
MAX_LISTED_PORTS = 5


def shorten_error(text: Any) -> str:
    """Collapses whitespace and caps the message length."""
    if not text:
        return ""
    s = re.sub(r"\s+", " ", str(text)).strip()
    if len(s) > MAX_ERROR_LENGTH:
        return s[:MAX_ERROR_LENGTH - 3] + "…"
    return s


def summarize_endpoints(endpoints: Sequence[Dict[str, Any]]) -> Summary:
    if not endpoints:
        return "error", ("The server did not return any OPC UA endpoints. This usually means the endpoint "
                         "URL or port is wrong, or the server refused the connection.")

    none_count = legacy_count = modern_count = 0
    policies: List[str] = []
    for ep in endpoints:
        uri = str(ep.get("security_policy_uri") or "")
        if not uri:
            continue
        if uri not in policies:
            policies.append(uri)
        lower = uri.lower()
        if "none" in lower:
            none_count += 1
        elif "aes" in lower:
            modern_count += 1
        elif "basic128" in lower or "basic256" in lower:
            legacy_count += 1

    parts = [f"The server advertised {len(endpoints)} OPC UA endpoint(s)."]
    if none_count:
        parts.append(f"{none_count} endpoint(s) use no encryption (SecurityPolicy.None).")
    if legacy_count:
        parts.append(f"{legacy_count} endpoint(s) use legacy RSA-based security policies (Basic128/256).")
    if modern_count:
        parts.append(f"{modern_count} endpoint(s) use modern AES-based security policies.")
    if policies:
        parts.append(f"Security policies seen: {', '.join(policies)}.")

    severity = "warn" if none_count and not modern_count and not legacy_count else "success"
    return severity, " ".join(parts)


def _unique_ports(listeners: Sequence[Dict[str, Any]]) -> List[str]:
    return list(dict.fromkeys(str(l["local_port"]) for l in listeners if l.get("local_port")))


def _port_text(ports: List[str]) -> str:
    if not ports:
        return "no specific ports could be parsed."
    if len(ports) <= MAX_LISTED_PORTS:
        return f"ports {', '.join(ports)}."
    return f"ports {', '.join(ports[:MAX_LISTED_PORTS])} and additional ports."


def summarize_listeners(
    listeners: Sequence[Dict[str, Any]],
    baseline: Optional[Sequence[Dict[str, Any]]] = None,
) -> Summary:
    """
    Summarizes a listening-socket snapshot. Without a baseline it is described on
    its own; with one, new ports relative to the baseline are called out.
    """
    ports = _unique_ports(listeners)
    if baseline is None:
        if not listeners:
            return "info", "No listening TCP sockets were captured."
        return "info", f"The tool saw {len(listeners)} listening TCP socket(s) on {_port_text(ports)}"

    if not listeners:
        return "warn", ("After the subscription, no listening TCP sockets were captured. This suggests the "
                        "client did not keep a separate callback listener open.")

    before = set(_unique_ports(baseline))
    new_ports = [p for p in ports if p not in before]
    if not new_ports:
        return "info", ("The set of listening ports did not change after creating the subscription. The OPC UA "
                        "client likely reused existing ports for callbacks.")

    if len(new_ports) <= MAX_LISTED_PORTS:
        text = f"New listening port(s) appeared after the subscription: {', '.join(new_ports)}."
    else:
        text = ("Several new listening ports appeared after the subscription, including "
                f"{', '.join(new_ports[:MAX_LISTED_PORTS])}.")
    return "info", f"After creating the subscription, the tool saw {len(listeners)} listening TCP socket(s). {text}"


def summarize_subscription(outcome: Optional[Dict[str, Any]]) -> Summary:
    if not outcome:
        return "warn", "No information was returned about the subscription attempt."
    if outcome.get("success"):
        node = outcome.get("node_monitored") or "the default status node"
        return "success", (f"The tool successfully created a subscription and monitored {node}. This confirms "
                           "the server accepted the subscription on the selected endpoint.")
    err = shorten_error(outcome.get("error")) or "an unspecified error occurred."
    return "error", ("The tool could not maintain a subscription. The server likely rejected the monitored item "
                     f"or closed the session early. Details: {err}")


def summarize_connections(connections: Sequence[Dict[str, Any]]) -> Summary:
    if not connections:
        return "warn", ("No incoming TCP connections from the server's IP were observed during the monitoring "
                        "window. This may mean the server is not attempting callbacks, cannot reach this "
                        "machine, or a firewall is blocking the traffic.")

    last = connections[-1]
    src = last.get("remote_address") or "server"
    src_port = last.get("remote_port") or ""
    dst = last.get("local_address") or "this machine"
    dst_port = last.get("local_port") or ""
    state = last.get("state") or "unknown"
    details = (f"One example connection was from {src}{':' + src_port if src_port else ''} to "
               f"{dst}{':' + dst_port if dst_port else ''} with state \"{state}\".")
    return "success", (f"The tool observed {len(connections)} incoming TCP connection attempt(s) from the "
                       f"server's IP during the monitoring window. {details}")

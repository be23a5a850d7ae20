"""
Handles normalization of user-supplied server strings into endpoint URLs.
"""
from __future__ import annotations
import re
from typing import Optional, Tuple
from urllib.parse import urlsplit

from .errors import ConfigError

SCHEME = "opc.tcp://"
_HOST_PORT_RE = re.compile(r"^(.+?):(\d+)$")


def _strip_scheme(server: str) -> str:
    s = server.strip()
    if s.lower().startswith(SCHEME):
        s = s[len(SCHEME):]
    return s


def split_inline_port(server: str) -> Tuple[str, Optional[int]]:
    """
    Splits 'host:digits' (after trimming and dropping the scheme) into host and port.
    Returns the remainder unchanged with no port when there is no inline port.
    """
    s = _strip_scheme(server)
    match = _HOST_PORT_RE.match(s)
    if match:
        return match.group(1), int(match.group(2))
    return s, None


def normalize_endpoint(server: Optional[str], port: Optional[int] = None) -> str:
    """
    Normalizes a server string to 'opc.tcp://host:port'.

    An explicitly supplied port always wins over a port embedded in the server
    string; the embedded one is only used when no port was given.
    """
    if server is None:
        raise ConfigError("server missing")

    host, inline_port = split_inline_port(str(server))
    if port is None:
        port = inline_port

    if not host:
        raise ConfigError("server missing")
    if port is None:
        raise ConfigError("port missing")

    return f"{SCHEME}{host}:{port}"


def extract_host(endpoint_url: str) -> Optional[str]:
    """Extracts the hostname or IP literal from a normalized endpoint URL."""
    try:
        host = urlsplit(endpoint_url).hostname
    except ValueError:
        host = None
    if host:
        return host
    # urlsplit lowercases and drops anything it can't parse; fall back to the raw text.
    host, _ = split_inline_port(endpoint_url)
    return host or None

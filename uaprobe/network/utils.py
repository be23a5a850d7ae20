"""
Core network utility functions.
"""
import logging
import socket
from functools import lru_cache
from typing import FrozenSet, Optional, Tuple


@lru_cache(maxsize=128)
def _is_ip_literal(host: str) -> Tuple[bool, Optional[int]]:
    """Checks if a string is a valid IP literal."""
    try:
        socket.inet_pton(socket.AF_INET, host)
        return True, socket.AF_INET
    except OSError:
        pass
    try:
        socket.inet_pton(socket.AF_INET6, host.split('%')[0])
        return True, socket.AF_INET6
    except OSError:
        return False, None


def strip_brackets(address: str) -> str:
    """'[fe80::1]' -> 'fe80::1'; anything else is returned unchanged."""
    if address.startswith('[') and address.endswith(']'):
        return address[1:-1]
    return address


@lru_cache(maxsize=128)
def resolve_addresses(host: str) -> FrozenSet[str]:
    """
    Resolves a host to the set of IP literals a socket table would show for it.
    An IP literal resolves to itself; an unresolvable name resolves to the name.
    """
    host = strip_brackets(host.strip())
    is_ip, _ = _is_ip_literal(host)
    if is_ip:
        return frozenset({host})

    addresses = set()
    try:
        for family, _, _, _, sockaddr in socket.getaddrinfo(host, None):
            if family in (socket.AF_INET, socket.AF_INET6):
                addresses.add(str(sockaddr[0]))
    except socket.gaierror as e:
        logging.warning(f"Could not resolve '{host}': {e}. Matching the name literally.")

    return frozenset(addresses) if addresses else frozenset({host})

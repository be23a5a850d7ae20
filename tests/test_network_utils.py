"""
Tests for uaprobe.network.utils - target address resolution
"""

import socket
from unittest.mock import patch

from uaprobe.network.utils import resolve_addresses, strip_brackets


def test_ip_literals_resolve_to_themselves():
    assert resolve_addresses("10.0.0.5") == frozenset({"10.0.0.5"})
    assert resolve_addresses("[fe80::1]") == frozenset({"fe80::1"})


def test_strip_brackets():
    assert strip_brackets("[::1]") == "::1"
    assert strip_brackets("10.0.0.5") == "10.0.0.5"


@patch("uaprobe.network.utils.socket.getaddrinfo")
def test_hostnames_resolve_to_all_addresses(mock_getaddrinfo):
    resolve_addresses.cache_clear()
    mock_getaddrinfo.return_value = [
        (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("192.168.1.20", 0)),
        (socket.AF_INET6, socket.SOCK_STREAM, 6, "", ("fd00::20", 0, 0, 0)),
        (socket.AF_INET, socket.SOCK_DGRAM, 17, "", ("192.168.1.20", 0)),
    ]
    assert resolve_addresses("plc-test-host") == frozenset({"192.168.1.20", "fd00::20"})


@patch("uaprobe.network.utils.socket.getaddrinfo", side_effect=socket.gaierror("nope"))
def test_unresolvable_names_match_literally(_):
    resolve_addresses.cache_clear()
    assert resolve_addresses("no-such-host") == frozenset({"no-such-host"})

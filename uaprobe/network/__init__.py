"""
Socket-table capture, diffing and connection watching.
"""

from .sockets import (
    capture_listeners,
    get_table_reader,
    listening_records,
    parse_address_port,
    parse_socket_table,
    read_table,
)
from .diff import diff_snapshots
from .watcher import ConnectionWatcher

__all__ = [
    "capture_listeners",
    "get_table_reader",
    "listening_records",
    "parse_address_port",
    "parse_socket_table",
    "read_table",
    "diff_snapshots",
    "ConnectionWatcher",
]

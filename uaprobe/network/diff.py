"""
Compares two listening-socket snapshots.
"""
from __future__ import annotations
from typing import List, Sequence

from ..models import PortDiff, SocketRecord


def _keys(records: Sequence[SocketRecord]) -> List[str]:
    return list(dict.fromkeys(r.key for r in records))


def diff_snapshots(before: Sequence[SocketRecord], after: Sequence[SocketRecord]) -> PortDiff:
    """
    Returns the address:port keys that appeared and disappeared between two snapshots.
    Order follows the snapshot each key was taken from.
    """
    before_keys = _keys(before)
    after_keys = _keys(after)
    before_set, after_set = set(before_keys), set(after_keys)
    return PortDiff(
        new_ports=[k for k in after_keys if k not in before_set],
        removed_ports=[k for k in before_keys if k not in after_set],
        net_change=len(after_keys) - len(before_keys),
    )

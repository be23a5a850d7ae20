"""
Captures and parses the local machine's socket table.

Two readers produce the same raw rows: one parses `netstat -ano` text
(the Windows layout: Proto, Local Address, Foreign Address, State, PID),
the other builds rows from psutil for hosts whose netstat prints a different
column layout.
"""
from __future__ import annotations
import logging
import platform
import socket
import subprocess
from typing import Dict, List, Protocol, Tuple

import psutil

from ..errors import CaptureError, ConfigError
from ..models import SocketRow, SocketRecord


NETSTAT_COMMAND = ["netstat", "-ano"]
NETSTAT_HEADER_LINES = 4
MIN_COLUMNS = 5
LISTEN_STATES = frozenset({"LISTEN", "LISTENING"})


def parse_address_port(text: str) -> Tuple[str, str]:
    """
    Splits 'address:port' on the last colon.

    Unbracketed IPv6 addresses can't be separated reliably this way; a token
    without any colon comes back with an empty port.
    """
    idx = text.rfind(':')
    if idx == -1:
        return text, ""
    return text[:idx], text[idx + 1:]


def parse_socket_table(text: str, header_lines: int = NETSTAT_HEADER_LINES) -> List[SocketRow]:
    """
    Parses netstat-style output into raw rows.
    Rows with fewer than five whitespace-separated columns are skipped.
    """
    lines = [line for line in text.splitlines()[header_lines:] if line.strip()]
    rows: List[SocketRow] = []
    for line in lines:
        parts = line.split()
        if len(parts) < MIN_COLUMNS:
            continue
        proto, local, remote, state, pid = parts[:MIN_COLUMNS]
        rows.append(SocketRow(proto=proto, local=local, remote=remote, state=state, pid=pid))
    return rows


def is_listening(state: str) -> bool:
    return state.strip().upper() in LISTEN_STATES


def listening_records(rows: List[SocketRow]) -> List[SocketRecord]:
    """Filters rows to listening sockets, keeping the first record per address:port."""
    records: Dict[str, SocketRecord] = {}
    for row in rows:
        if not is_listening(row.state):
            continue
        address, port = parse_address_port(row.local)
        record = SocketRecord(proto=row.proto, local_address=address, local_port=port, pid=row.pid)
        records.setdefault(record.key, record)
    return list(records.values())


class SocketTableReader(Protocol):
    """Protocol for socket table sources."""
    name: str

    def read_rows(self) -> List[SocketRow]:
        ...


class NetstatTableReader:
    """Reads the connection table by running `netstat -ano`."""
    name = "netstat"

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    def read_text(self) -> str:
        try:
            completed = subprocess.run(
                NETSTAT_COMMAND,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout,
                check=True,
            )
        except FileNotFoundError:
            raise CaptureError("netstat command not found")
        except subprocess.TimeoutExpired:
            raise CaptureError(f"netstat did not finish within {self.timeout}s")
        except subprocess.CalledProcessError as e:
            raise CaptureError(f"netstat exited with status {e.returncode}: {(e.stderr or '').strip()}")
        except OSError as e:
            raise CaptureError(f"Could not run netstat: {e}")
        return completed.stdout

    def read_rows(self) -> List[SocketRow]:
        return parse_socket_table(self.read_text())


def _format_endpoint(addr) -> str:
    if not addr:
        return "*:*"
    ip, port = addr.ip, addr.port
    if ':' in ip:
        ip = f"[{ip}]"
    return f"{ip}:{port}"


class PsutilTableReader:
    """Builds connection-table rows from psutil.net_connections."""
    name = "psutil"

    def read_rows(self) -> List[SocketRow]:
        try:
            conns = psutil.net_connections(kind="inet")
        except (psutil.Error, OSError) as e:
            raise CaptureError(f"Could not read connection table via psutil: {e}")

        rows: List[SocketRow] = []
        for c in conns:
            proto = "TCP" if c.type == socket.SOCK_STREAM else "UDP"
            rows.append(SocketRow(
                proto=proto,
                local=_format_endpoint(c.laddr),
                remote=_format_endpoint(c.raddr),
                state=c.status or "",
                pid="" if c.pid is None else str(c.pid),
            ))
        return rows


def get_table_reader(source: str = "auto", netstat_timeout: float = 10.0) -> SocketTableReader:
    """Returns the reader for a configured source name (auto, netstat or psutil)."""
    source = (source or "auto").lower()
    if source == "auto":
        source = "netstat" if platform.system() == "Windows" else "psutil"
    if source == "netstat":
        return NetstatTableReader(timeout=netstat_timeout)
    if source == "psutil":
        return PsutilTableReader()
    raise ConfigError(f"Unknown socket table source '{source}'. Use auto, netstat or psutil.")


def read_table(reader: SocketTableReader) -> List[SocketRow]:
    """Reads one table from the reader. Any failure surfaces as CaptureError."""
    try:
        return reader.read_rows()
    except CaptureError:
        raise
    except Exception as e:
        raise CaptureError(f"{reader.name} could not read the connection table: {e}") from e


def capture_listeners(reader: SocketTableReader) -> List[SocketRecord]:
    """Takes one listening-socket snapshot."""
    rows = read_table(reader)
    records = listening_records(rows)
    logging.debug(f"{reader.name}: {len(rows)} row(s), {len(records)} listening socket(s)")
    return records

"""
Handles privilege checking for the socket-table capture.
"""
import os
import platform
import ctypes


def is_admin() -> bool:
    """True when running elevated (Administrator on Windows, uid 0 elsewhere)."""
    try:
        if platform.system() == "Windows":
            return ctypes.windll.shell32.IsUserAnAdmin() != 0
        if hasattr(os, 'geteuid'):
            return os.geteuid() == 0
        return False
    except AttributeError:
        return False


def privilege_warning() -> str:
    """Returns a hint about what an unprivileged capture will miss, or '' when elevated."""
    if is_admin():
        return ""
    if platform.system() == "Windows":
        return "Not running as Administrator: owning process IDs may be missing for some sockets."
    return "Not running as root: sockets owned by other users may be missing or lack a PID. Run with 'sudo' for a full picture."

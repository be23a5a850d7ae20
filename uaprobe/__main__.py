"""
Main entry point for UA Probe.
"""
import argparse
import logging
import sys
from typing import List, Optional

from . import configuration
from .app import ConsoleApp, EXIT_FAILED
from .errors import ConfigError
from .models import ProbeConfig
from .parsing import split_inline_port
from .privileges import privilege_warning


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="uaprobe",
        description="Checks whether OPC UA subscription callbacks can reach this machine.",
    )
    parser.add_argument("--server", required=True, help="Server host, host:port or opc.tcp:// URL")
    parser.add_argument("--port", type=int, help="Server port (default 4840 unless given in --server)")
    parser.add_argument("--node-id", help="Node to monitor (default ns=0;i=2258)")
    parser.add_argument("--publishing-interval", type=int, dest="publishing_interval_ms",
                        help="Requested publishing interval in ms (default 250)")
    parser.add_argument("--duration", type=int, dest="monitor_duration_ms",
                        help="Connection monitoring window in ms (default 30000)")
    parser.add_argument("--poll-interval", type=int, dest="poll_interval_ms",
                        help="Connection table poll interval in ms (default 2000)")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")
    return parser


def main_entry(argv: Optional[List[str]] = None) -> int:
    """
    Main function to run a single probe from the command line.
    """
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
    )

    try:
        app_config = configuration.load_or_create_config(args.config)
        configuration.validate_settings(app_config)
        values = {k: v for k, v in app_config.items() if k != "port"}
        values["server"] = args.server
        if args.port is not None:
            values["port"] = args.port
        elif split_inline_port(args.server)[1] is None:
            # The configured port only applies when none is typed into --server.
            values["port"] = app_config.get("port")
        for key in ("node_id", "publishing_interval_ms", "monitor_duration_ms", "poll_interval_ms"):
            override = getattr(args, key)
            if override is not None:
                values[key] = override
        probe_config = ProbeConfig.from_mapping(values)
    except ConfigError as e:
        logging.error(f"Configuration error: {e}")
        return EXIT_FAILED

    hint = privilege_warning()
    if hint:
        logging.warning(hint)

    app = ConsoleApp(app_config)
    try:
        return app.run(probe_config)
    except ConfigError as e:
        logging.error(f"Configuration error: {e}")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main_entry())

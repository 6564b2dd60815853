#!/usr/bin/env python3
"""
Production Server CLI.

Serves the built static assets and, when --db is given, a real-time sync
endpoint at /socket.

Usage:
    python -m treeserve.cli.serve --httpport 8080
    python -m treeserve.cli.serve --sslKey key.pem --sslCert cert.pem
    python -m treeserve.cli.serve --db sqlite --dbfolder ./data --password s3cret

Every option can also be given as an environment variable named
TREESERVE_<OPTION> (e.g. TREESERVE_HTTPPORT), including through a .env file.
"""

import argparse
import os
import sys
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from treeserve.core.logging_config import get_logger, setup_logging, shutdown_logging
from treeserve.webserver.bootstrap import TransportBootstrapper
from treeserve.webserver.config import ResolutionStatus, resolve_config

logger = get_logger(__name__)

ENV_PREFIX = "TREESERVE_"
OPTION_NAMES = [
    "host",
    "httpport",
    "httpsport",
    "sslKey",
    "sslCert",
    "db",
    "dbfolder",
    "password",
    "staticDir",
]

USAGE = """
      Usage: treeserve [options]
          -h, --help: help menu

          --host $hostname: Host to listen on
          --httpport $portnumber: Port to run http server on
          --httpsport $portnumber: Port to run https server on

          --sslKey: Path to key; enables https server
          --sslCert: Path to cert

          --db $dbtype: If a db is set, we will additionally run a socket server.
            Available options:
            - 'memory' to use an in-memory backend
            - 'sqlite' to use sqlite backend
          --password: password to protect database with (defaults to empty)

          --dbfolder: For sqlite backend only.  Folder for sqlite to store data
            (defaults to in-memory if unspecified)

          --staticDir: Where static assets should be served from.  Defaults to the `static`
            folder at the repo root.

          -v, --verbose: Enable debug logging
"""


def build_parser() -> argparse.ArgumentParser:
    # Help is handled by resolve_config so it short-circuits validation
    parser = argparse.ArgumentParser(
        prog="treeserve", description="Serve treeserve assets", add_help=False
    )
    parser.add_argument("--help", "-h", action="store_true", dest="help")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )
    for name in OPTION_NAMES:
        parser.add_argument(f"--{name}", dest=name, default=None)
    return parser


def collect_options(args: argparse.Namespace) -> Dict[str, Any]:
    """
    Merges parsed CLI options with TREESERVE_* environment fallbacks.

    Args:
        args: Parsed command-line arguments.

    Returns:
        Dict[str, Any]: Raw option values keyed by option name.
    """
    raw: Dict[str, Any] = {"help": args.help}
    for name in OPTION_NAMES:
        value = getattr(args, name)
        if value is None:
            value = os.getenv(ENV_PREFIX + name.upper())
        raw[name] = value
    return raw


def run(argv: Optional[List[str]] = None) -> int:
    """
    Resolves configuration and runs the server.

    Args:
        argv: Command-line arguments, defaults to sys.argv[1:].

    Returns:
        int: Exit code. Only returns once every listener has stopped.
    """
    load_dotenv()
    args = build_parser().parse_args(argv)

    setup_logging(debug_mode=args.verbose)

    resolution = resolve_config(collect_options(args))
    if resolution.status is ResolutionStatus.HELP:
        sys.stdout.write(USAGE)
        sys.stdout.flush()
        return 0

    if resolution.status is ResolutionStatus.MISSING_ASSETS:
        logger.info(resolution.message)
        return resolution.exit_code
    if resolution.status is ResolutionStatus.INVALID:
        logger.error(resolution.message)
        return resolution.exit_code

    try:
        TransportBootstrapper(resolution.config).run()
    except KeyboardInterrupt:
        logger.info("Server stopped.")
    return 0


def main() -> None:
    try:
        exit_code = run()
    finally:
        logger.info("Shutting down logging.")
        shutdown_logging()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()

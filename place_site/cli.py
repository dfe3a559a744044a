# cli.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
Command line interface.

    place [serve] [path] [@host[:port]] [options]
    place enable [path] [options]
    place disable | start | stop | restart | status | version

@localhost (the default) serves with locally-trusted certificates; any other
host (e.g. @hostname) serves globally with certificates for --domain.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional, Sequence, Tuple

from . import VERSION, daemon
from .config import DEFAULT_PORT, MAX_PORT, QUIET_ENVIRONMENT_FLAG, ServerOptions, running_as_daemon
from .errors import PlaceError
from .server import Place

COMMANDS = ("serve", "enable", "disable", "start", "stop", "restart", "status", "version")


class UsageError(PlaceError):
    """The command line could not be understood."""


def parse_host(argument: str) -> Tuple[bool, int]:
    """`@localhost:8443` -> (is_global, port)."""
    host = argument[1:]
    port = DEFAULT_PORT
    if ":" in host:
        parts = host.split(":")
        if len(parts) != 2:
            raise UsageError("Host definition syntax can only contain one colon: @localhost:port. Default: @localhost:443")
        host, port_text = parts
        try:
            port = int(port_text)
        except ValueError:
            raise UsageError(f"Port must be a number (got {port_text}).")
        if not 0 <= port <= MAX_PORT:
            raise UsageError(f"Port must be between 0 and {MAX_PORT:,} inclusive (got {port}).")
    if not host:
        raise UsageError("Host definition is empty. Use @localhost or @hostname.")
    return host != "localhost", port


def parse_serve_targets(targets: Sequence[str]) -> Tuple[str, bool, int]:
    """Positional serve arguments -> (path, is_global, port)."""
    if len(targets) > 2:
        raise UsageError("Serve command has maximum of two arguments (what to serve and where to serve it).")
    path: Optional[str] = None
    host: Optional[Tuple[bool, int]] = None
    for target in targets:
        if target.startswith("@"):
            if host is not None:
                raise UsageError("Multiple host definitions encountered. Please only use one.")
            host = parse_host(target)
        else:
            if path is not None:
                raise UsageError("Two folders found to serve. Please only supply one.")
            path = target
    is_global, port = host if host is not None else (False, DEFAULT_PORT)
    return path or ".", is_global, port


def add_server_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--domain", default=None, help="Main domain to serve (defaults to this machine's hostname).")
    parser.add_argument("--aliases", default="", help="Comma-separated additional domains (www expands to www.<domain>).")
    parser.add_argument("--skip-domain-reachability-check", action="store_true",
                        help="Do not check that global domains reach this machine before starting.")
    parser.add_argument("--access-log-errors-only", action="store_true", help="Only log 4xx and 5xx responses.")
    parser.add_argument("--access-log-disable", action="store_true", help="Do not log requests at all.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="place", description="Serve a place (a folder) as a small web site.")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Serve a folder as a regular process.")
    serve.add_argument("targets", nargs="*", help="[path] [@host[:port]]")
    add_server_options(serve)
    serve.add_argument("--exit-after-launch", action="store_true", help=argparse.SUPPRESS)

    enable = subparsers.add_parser("enable", help="Serve a folder globally as a systemd daemon.")
    enable.add_argument("path", nargs="?", default=".")
    add_server_options(enable)

    subparsers.add_parser("disable", help="Stop and disable the daemon.")
    subparsers.add_parser("start", help="Start the daemon.")
    subparsers.add_parser("stop", help="Stop the daemon.")
    subparsers.add_parser("restart", help="Restart the daemon.")
    subparsers.add_parser("status", help="Show the daemon status.")
    subparsers.add_parser("version", help="Show the version.")
    return parser


def options_from_args(args: argparse.Namespace, path: str, is_global: bool, port: int) -> ServerOptions:
    return ServerOptions.create(
        path=path,
        domain=args.domain,
        port=port,
        is_global=is_global,
        aliases=args.aliases.split(",") if args.aliases else (),
        skip_domain_reachability_check=args.skip_domain_reachability_check,
        access_log_errors_only=args.access_log_errors_only,
        access_log_disable=args.access_log_disable,
    )


def serve_arguments(args: argparse.Namespace) -> List[str]:
    """The flags to hand on to `place serve` (used for the daemon unit)."""
    arguments = []
    if args.domain:
        arguments.append(f"--domain={args.domain}")
    if args.aliases:
        arguments.append(f"--aliases={args.aliases}")
    for flag in ("skip_domain_reachability_check", "access_log_errors_only", "access_log_disable"):
        if getattr(args, flag):
            arguments.append("--" + flag.replace("_", "-"))
    return arguments


def run_place(options: ServerOptions, exit_after_launch: bool = False) -> None:
    place = Place(options)
    try:
        asyncio.run(place.run(exit_after_launch=exit_after_launch))
    except KeyboardInterrupt:
        logging.info("Server manually stopped via Ctrl+C. Exiting gracefully.")


def command_serve(args: argparse.Namespace) -> int:
    if not running_as_daemon() and daemon.is_active():
        raise PlaceError("Place daemon is already running. Please stop it with place stop before using serve.")
    path, is_global, port = parse_serve_targets(args.targets)
    run_place(options_from_args(args, path, is_global, port), exit_after_launch=args.exit_after_launch)
    return 0


def command_enable(args: argparse.Namespace) -> int:
    options = options_from_args(args, args.path, True, DEFAULT_PORT)
    logging.info("✨ Launch pre-flight check…")
    run_place(options, exit_after_launch=True)
    daemon.enable([str(options.path), "@hostname", *serve_arguments(args)])
    return 0


def command_status(args: argparse.Namespace) -> int:
    current = daemon.status()
    print(f"Place daemon is {'active' if current.is_active else 'inactive'} "
          f"and {'enabled' if current.is_enabled else 'disabled'}.")
    return 0


def command_version(args: argparse.Namespace) -> int:
    print(f"place {VERSION}")
    return 0


def _daemon_command(action):
    def command(args: argparse.Namespace) -> int:
        action()
        return 0
    return command


HANDLERS = {
    "serve": command_serve,
    "enable": command_enable,
    "disable": _daemon_command(daemon.disable),
    "start": _daemon_command(daemon.start),
    "stop": _daemon_command(daemon.stop),
    "restart": _daemon_command(daemon.restart),
    "status": command_status,
    "version": command_version,
}


def configure_logging() -> None:
    quiet = os.environ.get(QUIET_ENVIRONMENT_FLAG, "") not in ("", "0", "false")
    logging.basicConfig(level=logging.WARNING if quiet else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')


def main(argv: Optional[Sequence[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    # `place`, `place some/folder` and `place @hostname` all mean serve.
    if not argv or argv[0] not in COMMANDS + ("-h", "--help"):
        argv.insert(0, "serve")

    configure_logging()
    args = build_parser().parse_args(argv)
    try:
        return HANDLERS[args.command](args)
    except PlaceError as error:
        logging.error("❌ %s", error.message)
        return 1


if __name__ == "__main__":
    sys.exit(main())

# config.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
Server options and well-known locations.

ServerOptions is captured once when a Place is created and is never mutated;
an in-process restart hands the very same object to the new Place.
"""

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Tuple

from .errors import InvalidPathToServeError, InvalidPortError

# Ports above 49151 are ephemeral.
MAX_PORT = 49151
DEFAULT_PORT = 443

# Set in the systemd unit; when present, a restart is a process exit.
DAEMON_ENVIRONMENT_FLAG = "PLACE_DAEMON"
SETTINGS_DIRECTORY_ENVIRONMENT_VARIABLE = "PLACE_SETTINGS_DIR"
QUIET_ENVIRONMENT_FLAG = "PLACE_QUIET"

# Conventional names inside a place.
ROUTES_DIRECTORY_NAME = "routes"
LEGACY_DYNAMIC_DIRECTORY_NAME = ".dynamic"
WILDCARD_DIRECTORY_NAME = ".wildcard"
GENERATED_DIRECTORY_NAME = ".generated"
DATABASE_DIRECTORY_NAME = ".db"


def settings_directory() -> Path:
    """Where certificates, statistics and git data live (~/.place by default)."""
    override = os.environ.get(SETTINGS_DIRECTORY_ENVIRONMENT_VARIABLE)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".place"


def running_as_daemon() -> bool:
    return os.environ.get(DAEMON_ENVIRONMENT_FLAG, "") not in ("", "0", "false")


def default_hostname() -> str:
    return socket.gethostname()


def expand_aliases(domain: str, aliases: Iterable[str]) -> Tuple[str, ...]:
    """Expand the `www` shorthand and drop blanks, keeping order."""
    expanded = []
    for alias in aliases:
        alias = alias.strip()
        if not alias:
            continue
        expanded.append(f"www.{domain}" if alias == "www" else alias)
    return tuple(expanded)


@dataclass(frozen=True)
class ServerOptions:
    # Main domain to serve. Defaults to the machine's hostname.
    domain: str
    # Absolute path of the place (the folder to serve).
    path: Path
    # TCP port for HTTPS traffic (0..49151).
    port: int = DEFAULT_PORT
    # True to use globally-trusted certificates, False for the local certificate authority.
    is_global: bool = False
    # Additional hostnames, in order. Only meaningful for global servers.
    aliases: Tuple[str, ...] = ()
    # Skip the port 80 pre-flight check for global servers (e.g. while DNS propagates).
    skip_domain_reachability_check: bool = False
    # Only show 4xx/5xx responses in the access log.
    access_log_errors_only: bool = False
    # No access log at all (wins over access_log_errors_only).
    access_log_disable: bool = False
    # Quiet period (seconds) after the last routes change before restarting.
    restart_debounce: float = 0.5
    # Seconds to let connections drain on shutdown. 0 closes them immediately.
    shutdown_grace: float = 0.0
    # Host interface the listener binds to.
    bind: str = "0.0.0.0"
    # Settings directory override (tests); None means settings_directory().
    settings_path: Optional[Path] = field(default=None, compare=False)

    @classmethod
    def create(
        cls,
        path: str = ".",
        domain: Optional[str] = None,
        port: int = DEFAULT_PORT,
        is_global: bool = False,
        aliases: Iterable[str] = (),
        **kwargs,
    ) -> "ServerOptions":
        """Normalise raw (command-line style) values into a ServerOptions."""
        domain = domain or default_hostname()
        return cls(
            domain=domain,
            path=Path(path).expanduser().resolve(),
            port=port,
            is_global=is_global,
            aliases=expand_aliases(domain, aliases),
            **kwargs,
        )

    def validate(self) -> None:
        """Raise if the options cannot possibly be served."""
        if not isinstance(self.port, int) or self.port < 0 or self.port > MAX_PORT:
            raise InvalidPortError(f"Specified port must be between 0 and {MAX_PORT:,} inclusive (got {self.port}).")

        if not self.path.exists():
            raise InvalidPathToServeError(f"Path {self.path} does not exist.")
        if not self.path.is_dir():
            raise InvalidPathToServeError(f"{self.path} is a file. Place can only serve directories.")
        if self.path == Path(self.path.anchor):
            raise InvalidPathToServeError("Refusing to serve the root directory due to security concerns.")
        if self.path == Path.home().resolve():
            raise InvalidPathToServeError("Refusing to serve the home directory due to security concerns.")

    @property
    def settings(self) -> Path:
        return self.settings_path if self.settings_path is not None else settings_directory()

    @property
    def place_name(self) -> str:
        return self.path.name

    @property
    def domains(self) -> Tuple[str, ...]:
        return (self.domain,) + self.aliases

    @property
    def routes_directory(self) -> Path:
        return self.path / ROUTES_DIRECTORY_NAME

    @property
    def legacy_dynamic_directory(self) -> Path:
        return self.path / LEGACY_DYNAMIC_DIRECTORY_NAME

    @property
    def wildcard_directory(self) -> Path:
        return self.path / WILDCARD_DIRECTORY_NAME

    @property
    def generated_directory(self) -> Path:
        return self.path / GENERATED_DIRECTORY_NAME

    @property
    def database_path(self) -> Path:
        return self.path / DATABASE_DIRECTORY_NAME

    @property
    def data_directory(self) -> Path:
        """Per-place data (git repositories) inside the settings directory."""
        return self.settings / self.place_name

    def pretty_location(self) -> str:
        port_suffix = "" if self.port == DEFAULT_PORT else f":{self.port}"
        host = self.domain if self.is_global else "localhost"
        return f"{host}{port_suffix}"

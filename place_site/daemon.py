# daemon.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
Runs Place as a systemd service (Linux only).

The unit sets PLACE_DAEMON=1 so that a routes change exits the process and
systemd (Restart=always) starts a fresh one.
"""

import getpass
import logging
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from .config import DAEMON_ENVIRONMENT_FLAG
from .errors import PlaceError

SERVICE_NAME = "place"
UNIT_PATH = Path("/etc/systemd/system") / f"{SERVICE_NAME}.service"


class DaemonError(PlaceError):
    """systemd is unavailable or refused a request."""


@dataclass(frozen=True)
class DaemonStatus:
    is_active: bool
    is_enabled: bool


def ensure_systemctl() -> None:
    if sys.platform.startswith("win") or shutil.which("systemctl") is None:
        raise DaemonError("Daemons are only supported on Linux systems with systemd (systemctl required).")


def _systemctl_succeeds(*args: str) -> bool:
    result = subprocess.run(["systemctl", *args, SERVICE_NAME], capture_output=True, text=True)
    return result.returncode == 0


def status() -> DaemonStatus:
    if sys.platform.startswith("win") or shutil.which("systemctl") is None:
        return DaemonStatus(is_active=False, is_enabled=False)
    return DaemonStatus(is_active=_systemctl_succeeds("is-active"), is_enabled=_systemctl_succeeds("is-enabled"))


def is_active() -> bool:
    return status().is_active


def is_enabled() -> bool:
    return status().is_enabled


def _sudo_systemctl(*args: str) -> None:
    try:
        subprocess.run(["sudo", "systemctl", *args], check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        raise DaemonError(f"systemctl {' '.join(args)} failed ({(e.stderr or '').strip() or e.returncode}).") from e


def unit_file(serve_arguments: Sequence[str], account_name: str, executable: str = "") -> str:
    """The systemd unit that runs `place serve <serve_arguments>`."""
    launch = " ".join([executable or shutil.which("place") or f"{sys.executable} -m place_site", "serve", *serve_arguments])
    return "\n".join([
        "[Unit]",
        "Description=Place",
        "After=network.target",
        "StartLimitIntervalSec=0",
        "",
        "[Service]",
        "Type=simple",
        f"User={account_name}",
        "Environment=PATH=/sbin:/usr/bin:/usr/local/bin",
        f"Environment={DAEMON_ENVIRONMENT_FLAG}=1",
        "RestartSec=1",
        "Restart=always",
        "",
        f"ExecStart={launch}",
        "",
        "[Install]",
        "WantedBy=multi-user.target",
        "",
    ])


def enable(serve_arguments: List[str]) -> None:
    ensure_systemctl()
    if is_active():
        raise DaemonError("Place daemon is already active. Please stop it before enabling it again.")
    unit = unit_file(serve_arguments, getpass.getuser())
    try:
        subprocess.run(["sudo", "tee", str(UNIT_PATH)], input=unit, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        raise DaemonError(f"Could not write {UNIT_PATH} ({(e.stderr or '').strip()}).") from e
    _sudo_systemctl("daemon-reload")
    _sudo_systemctl("enable", SERVICE_NAME)
    _sudo_systemctl("start", SERVICE_NAME)
    logging.info("😈 Place daemon enabled and started.")


def disable() -> None:
    ensure_systemctl()
    if not is_enabled():
        raise DaemonError("Place daemon is not enabled. Nothing to disable.")
    _sudo_systemctl("disable", "--now", SERVICE_NAME)
    logging.info("🎈 Place daemon stopped and disabled.")


def start() -> None:
    ensure_systemctl()
    current = status()
    if not current.is_enabled:
        raise DaemonError("Place daemon is not enabled. Please run place enable to enable it.")
    if current.is_active:
        raise DaemonError("Place daemon is already active. Nothing to start.")
    _sudo_systemctl("start", SERVICE_NAME)
    logging.info("🎈 Place daemon started.")


def stop() -> None:
    ensure_systemctl()
    if not is_active():
        raise DaemonError("Place daemon is not active. Nothing to stop.")
    _sudo_systemctl("stop", SERVICE_NAME)
    logging.info("🎈 Place daemon stopped.")


def restart() -> None:
    ensure_systemctl()
    if not is_enabled():
        raise DaemonError("Place daemon is not enabled. Please run place enable to enable it.")
    _sudo_systemctl("restart", SERVICE_NAME)
    logging.info("🎈 Place daemon restarted.")

"""Utility functions for GRE Tunnel Manager."""

import os
import sys
import shutil
import logging
import subprocess
import ipaddress
from pathlib import Path
from typing import Optional, List, Tuple

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def check_root() -> bool:
    """Check if running as root."""
    return os.geteuid() == 0


def require_root() -> None:
    """Exit if not running as root."""
    if not check_root():
        print("Error: This command must be run as root")
        sys.exit(1)


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> None:
    """
    Setup application logging.

    Logs go to stderr and, when it is writable, to log_file.

    Args:
        level: Logging level
        log_file: Path of the persistent log file
    """
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    file_error = None

    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_file))
        except OSError as e:
            file_error = e

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)

    if file_error is not None:
        logger.warning(f"Log file {log_file} not writable, logging to stderr only: {file_error}")


def run(
    cmd: List[str],
    check: bool = True,
    capture: bool = True,
    timeout: int = 30,
    input_text: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """Run a system command."""
    logger.debug(f"Running command: {' '.join(cmd)}")

    try:
        return subprocess.run(
            cmd,
            input=input_text,
            capture_output=capture,
            text=True,
            timeout=timeout,
            check=check,
        )
    except subprocess.CalledProcessError as e:
        logger.debug(f"Command failed: {' '.join(cmd)}: {(e.stderr or '').strip()}")
        raise
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out: {' '.join(cmd)}")
        raise


def run_silent(cmd: List[str], timeout: int = 30) -> Tuple[bool, str]:
    """Run command without raising, return (success, output).

    Output is stdout on success, otherwise stderr or the error that stopped
    the command from running.
    """
    try:
        result = run(cmd, check=False, timeout=timeout)
    except (OSError, subprocess.SubprocessError) as e:
        return False, str(e)
    if result.returncode == 0:
        return True, result.stdout or ""
    return False, (result.stderr or result.stdout or "").strip()


def command_exists(name: str) -> bool:
    """Check whether an executable is on PATH."""
    return shutil.which(name) is not None


def validate_ipv4(ip: str) -> bool:
    """Validate a dotted-quad IPv4 address."""
    try:
        ipaddress.IPv4Address(ip)
        return True
    except ValueError:
        return False


def validate_port(port: int) -> bool:
    """Validate port number."""
    return 1 <= port <= 65535


def enable_ip_forwarding(sysctl_conf: Path = Path("/etc/sysctl.conf")) -> None:
    """Enable IPv4 forwarding now and persist it in sysctl_conf."""
    ok, output = run_silent(["sysctl", "-w", "net.ipv4.ip_forward=1"])
    if not ok:
        logger.warning(f"Could not enable IP forwarding: {output}")

    try:
        content = sysctl_conf.read_text() if sysctl_conf.exists() else ""
        if "net.ipv4.ip_forward=1" not in content:
            with open(sysctl_conf, "a") as f:
                f.write("net.ipv4.ip_forward=1\n")
    except OSError as e:
        logger.warning(f"Could not persist IP forwarding in {sysctl_conf}: {e}")


def load_gre_module() -> bool:
    """Load the ip_gre kernel module."""
    ok, output = run_silent(["modprobe", "ip_gre"])
    if not ok:
        logger.warning(f"Failed to load ip_gre module: {output}")
        return False
    return True


def atomic_write(path: Path, content: str) -> None:
    """Write a file through a temporary sibling and rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(content)
    os.replace(tmp, path)

"""Locate and run the iptables binary."""

import os
import shutil
import subprocess
from typing import Sequence

from ..exceptions import KernelProgrammingFailure
from ..utils import run

IPTABLES_CANDIDATES = ("iptables", "iptables-nft", "iptables-legacy")


def _resolve_override(raw: str) -> str:
    cand = str(raw or "").strip()
    if not cand:
        return ""
    if "/" in cand:
        if os.path.isfile(cand) and os.access(cand, os.X_OK):
            return cand
        return ""
    return shutil.which(cand) or ""


def iptables_command() -> str:
    """Path of the iptables binary, or "" if none is installed."""
    env_cmd = _resolve_override(os.getenv("GRE_TUNNELS_IPTABLES_BIN", ""))
    if env_cmd:
        return env_cmd
    for cand in IPTABLES_CANDIDATES:
        found = shutil.which(cand)
        if found:
            return found
    return ""


def iptables_available() -> bool:
    return bool(iptables_command())


def iptables_check(args: Sequence[str], timeout: int = 30) -> bool:
    """Run iptables and report success; for `-C` probes and best-effort deletes."""
    cmd = iptables_command() or "iptables"
    try:
        result = run([cmd, *args], check=False, timeout=timeout)
    except (subprocess.TimeoutExpired, OSError):
        return False
    return result.returncode == 0


def iptables(args: Sequence[str], timeout: int = 30) -> None:
    """
    Run iptables, raising on failure.

    Raises:
        KernelProgrammingFailure: If the command fails or times out
    """
    cmd = [iptables_command() or "iptables", *args]
    try:
        run(cmd, timeout=timeout)
    except subprocess.CalledProcessError as e:
        raise KernelProgrammingFailure(cmd, e.stderr) from e
    except (subprocess.TimeoutExpired, OSError) as e:
        raise KernelProgrammingFailure(cmd, str(e)) from e

"""iproute2 command layer for GRE interfaces, addresses and routes."""

import logging
import subprocess
from typing import List

from ..exceptions import KernelProgrammingFailure
from ..utils import run

logger = logging.getLogger(__name__)

# Created by the ip_gre module itself; it cannot be deleted.
FALLBACK_DEVICE = "gre0"


class IpRoute:
    """Thin wrapper around `ip` invocations used by the reconciler."""

    def __init__(self, timeout: int = 30):
        self.timeout = timeout

    def _ip(self, *args: str) -> subprocess.CompletedProcess:
        cmd = ["ip", *args]
        try:
            return run(cmd, timeout=self.timeout)
        except subprocess.CalledProcessError as e:
            raise KernelProgrammingFailure(cmd, e.stderr) from e
        except (subprocess.TimeoutExpired, OSError) as e:
            raise KernelProgrammingFailure(cmd, str(e)) from e

    def list_gre_interfaces(self) -> List[str]:
        """
        List every GRE interface on the host, whatever its name.

        Returns:
            Interface names, without the `@peer` suffix
        """
        result = self._ip("-o", "link", "show", "type", "gre")
        names = []
        for line in result.stdout.splitlines():
            parts = line.split(": ")
            if len(parts) < 2:
                continue
            name = parts[1].split("@")[0].strip()
            if name:
                names.append(name)
        return names

    def link_exists(self, name: str) -> bool:
        result = run(["ip", "link", "show", name], check=False, timeout=self.timeout)
        return result.returncode == 0

    def add_gre_tunnel(self, name: str, local: str, remote: str, ttl: int = 255) -> None:
        self._ip("tunnel", "add", name, "mode", "gre",
                 "local", local, "remote", remote, "ttl", str(ttl))

    def delete_tunnel(self, name: str) -> None:
        self._ip("tunnel", "del", name)

    def set_up(self, name: str) -> None:
        self._ip("link", "set", name, "up")

    def add_address(self, name: str, cidr: str) -> None:
        self._ip("addr", "add", cidr, "dev", name)

    def add_route(self, destination: str, name: str) -> None:
        self._ip("route", "add", destination, "dev", name)

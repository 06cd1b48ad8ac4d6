"""Port forward rule data model."""

from dataclasses import dataclass


@dataclass(frozen=True)
class PortForwardRule:
    """One `listen_ip listen_port dest_ip dest_port` entry."""

    listen_address: str
    listen_port: int
    dest_address: str
    dest_port: int

    def to_line(self) -> str:
        """Convert to rule-file / rinetd format."""
        return f"{self.listen_address} {self.listen_port} {self.dest_address} {self.dest_port}"

    @property
    def destination(self) -> str:
        return f"{self.dest_address}:{self.dest_port}"

    def __str__(self) -> str:
        return f"{self.listen_address}:{self.listen_port} -> {self.destination}"

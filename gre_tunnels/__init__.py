"""GRE Tunnel Manager - declarative GRE tunnel mesh for iran/external servers."""

from pathlib import Path

try:
    version_file = Path(__file__).parent.parent / "VERSION"
    if version_file.exists():
        __version__ = version_file.read_text().strip()
    else:
        __version__ = "1.4.0"
except OSError:
    __version__ = "1.4.0"

__all__ = ["__version__"]

"""Coverage-driven design of multiplex PCR primer sets."""

from coverplex.version import __version__

__all__ = ["__version__"]

"""Install a running live system onto on-board eMMC storage."""

from .__version__ import __version__


__all__ = ["__version__"]

"""Code Accounts - credential catalogue and quota-aware account scheduling."""

from ._version import __version__


__all__ = ["__version__"]

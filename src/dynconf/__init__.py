"""dynconf package bootstrap.

Only lightweight metadata lives here so importing the package stays cheap;
the store, accessors and models are imported from their own modules.
"""
from __future__ import annotations

__all__ = ["__version__", "get_version"]

# NOTE: The version is duplicated in ``pyproject.toml`` and managed by Hatch.
__version__ = "0.1.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__

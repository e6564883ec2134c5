"""anicatalog: tiered catalog resolution for anime and character metadata."""

from __future__ import annotations

import warnings
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("anicatalog")
except PackageNotFoundError:
    # Running from a source checkout; Jikan still gets a well-formed agent string.
    warnings.warn(
        "anicatalog is not installed; identifying to Jikan as 'anicatalog/0.0.0+unknown'.",
        RuntimeWarning,
        stacklevel=2,
    )
    __version__ = "0.0.0+unknown"

# Sent on every upstream request so the API operator can identify the client.
USER_AGENT = f"anicatalog/{__version__}"

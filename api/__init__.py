"""API module."""

from .guards import require, require_any, require_all, require_compliance

__all__ = [
    "require",
    "require_any",
    "require_all",
    "require_compliance",
]

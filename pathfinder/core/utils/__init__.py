"""Utility functions shared across Pathfinder components."""

from pathfinder.core.utils.checks import first_not_none, ifnone
from pathfinder.core.utils.timestamps import now_ms, utc_now

__all__ = ["first_not_none", "ifnone", "now_ms", "utc_now"]

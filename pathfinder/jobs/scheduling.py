"""Cron helpers shared by the brokers for recurring schedules."""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any

from croniter import croniter

from pathfinder.core.exceptions import InvalidInputError


def validate_cron(cron: str) -> str:
    """Return the stripped cron expression, raising ``InvalidInputError`` when croniter cannot parse it."""
    expression = (cron or "").strip()
    if not expression or not croniter.is_valid(expression):
        raise InvalidInputError(f"Invalid cron expression: {cron!r}")
    return expression


def next_fire_time(cron: str, after_ms: int) -> int:
    """The first fire time strictly after ``after_ms``, in epoch milliseconds (UTC)."""
    start = datetime.fromtimestamp(after_ms / 1000.0, tz=timezone.utc)
    fire = croniter(cron, start).get_next(datetime)
    return int(fire.timestamp() * 1000)


def schedule_id(cron: str, payload: dict[str, Any]) -> str:
    """Deterministic id for a (cron, payload) pair so registering the same schedule twice is a no-op."""
    canonical = json.dumps([cron, payload], sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:16]


def recurring_job_id(sid: str, fire_ms: int) -> str:
    """Job id for one fire of a schedule. Brokers insert it only if absent, so concurrent ticks cannot duplicate it."""
    return f"repeat:{sid}:{fire_ms}"

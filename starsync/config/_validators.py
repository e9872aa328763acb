from __future__ import annotations

from typing import Any

from apscheduler.triggers.cron import CronTrigger


def _parse_bounded_int(value: Any, *, default: int, name: str, bounds: tuple[int, int]) -> int:
    try:
        parsed = int(str(value if value not in (None, "") else default))
    except ValueError as exc:
        msg = f"{name} must be a valid integer"
        raise ValueError(msg) from exc
    min_val, max_val = bounds
    if parsed < min_val or parsed > max_val:
        msg = f"{name.capitalize()} must be between {min_val} and {max_val}"
        raise ValueError(msg)
    return parsed


def validate_cron_expression(value: Any, *, default: str) -> str:
    """Accept a standard 5-field crontab expression."""
    expr = " ".join(str(value or default).split())
    if len(expr.split(" ")) != 5:
        msg = f"Cron expression must have 5 fields: {expr!r}"
        raise ValueError(msg)
    try:
        CronTrigger.from_crontab(expr)
    except ValueError as exc:
        msg = f"Invalid cron expression {expr!r}: {exc}"
        raise ValueError(msg) from exc
    return expr

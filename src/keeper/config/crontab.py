"""Crontab expressions as APScheduler cron triggers."""

from __future__ import annotations

from datetime import tzinfo

from apscheduler.triggers.cron import CronTrigger

# crontab numbering: 0 and 7 are Sunday
_CRON_DAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _day_bound(token: str) -> int:
    name = token.lower()
    if name in _CRON_DAY_NAMES:
        return _CRON_DAY_NAMES.index(name)
    if not token.isdigit() or int(token) > 7:
        raise ValueError(f"invalid day of week '{token}'")
    return int(token)


def _expand_day_of_week(field: str) -> set[int]:
    """Expand a crontab day-of-week field into crontab day numbers.

    Args:
        field: Day-of-week field, e.g. ``1-5`` or ``*/2`` or ``sat,sun``.

    Returns:
        Day numbers, Sunday as ``0``.

    Raises:
        ValueError: If the field is malformed.
    """
    days: set[int] = set()
    for item in field.split(","):
        span, _, step_text = item.partition("/")
        step = 1
        if step_text:
            if not step_text.isdigit() or int(step_text) == 0:
                raise ValueError(f"invalid day of week step '{item}'")
            step = int(step_text)
        if span == "*":
            first, last = 0, 6
        else:
            low, _, high = span.partition("-")
            first = _day_bound(low)
            if high:
                last = _day_bound(high)
            else:
                last = 6 if step_text else first
        if first > last:
            raise ValueError(f"invalid day of week range '{item}'")
        days.update(day % 7 for day in range(first, last + 1, step))
    return days


def cron_day_of_week(field: str) -> str:
    """Translate a crontab day-of-week field into APScheduler's notation.

    APScheduler counts weekdays from Monday, so numeric fields are rewritten
    as day names, which mean the same thing to both.

    Args:
        field: Crontab day-of-week field.

    Returns:
        Equivalent APScheduler ``day_of_week`` value.
    """
    if field == "*":
        return field
    return ",".join(_CRON_DAY_NAMES[day] for day in sorted(_expand_day_of_week(field)))


def crontab_trigger(
    expression: str, timezone: tzinfo | str | None = None
) -> CronTrigger:
    """Build a trigger firing exactly when cron would run ``expression``.

    Args:
        expression: Five-field crontab expression.
        timezone: Trigger timezone, the scheduler's when omitted.

    Returns:
        Cron trigger.

    Raises:
        ValueError: If the expression is malformed.
    """
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"wrong number of fields; got {len(fields)}, expected 5")
    minute, hour, day, month, day_of_week = fields
    return CronTrigger(
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=cron_day_of_week(day_of_week),
        timezone=timezone,
    )

"""Next delivery date resolution.

Pure functions that compute the next calendar day a recurring order should
be delivered on. The caller always supplies ``now``; nothing here reads the
wall clock, so the same rule and instant always resolve to the same day.
"""

from datetime import date, datetime, timedelta
from typing import Optional, Union

from recurring_orders.services.orders.recurrence import RecurrenceRule, to_calendar_day

# Weekday scan window; a weekly rule whose weekdays are all excluded for four
# weeks is treated as having no next delivery.
SEARCH_HORIZON_DAYS = 28


def weekday_index(day: date) -> int:
    """Weekday number with Sunday as 0 and Saturday as 6."""
    return (day.weekday() + 1) % 7


def resolve_next_delivery(
    rule: RecurrenceRule,
    now: Union[datetime, date],
) -> Optional[date]:
    """Resolve the earliest delivery day on or after ``now``.

    Explicit days (selected first, then included) win over the weekly
    pattern: the earliest of them that is not before the lower bound and
    not excluded is returned. Only when none qualifies are the rule's
    weekdays scanned forward, for at most SEARCH_HORIZON_DAYS days.

    The rule's end date is not consulted; callers decide whether a resolved
    day lies beyond it.

    Args:
        rule: Recurrence rule to evaluate
        now: Reference instant; its UTC calendar day is the earliest candidate

    Returns:
        Next delivery day, or None if the rule yields none
    """
    lower_bound = max(to_calendar_day(now), rule.start_day)

    candidates = [
        day
        for day in (*rule.selected_dates, *rule.include_dates)
        if day >= lower_bound and day not in rule.exclude_dates
    ]
    if candidates:
        return min(candidates)

    if rule.days_of_week:
        for offset in range(SEARCH_HORIZON_DAYS):
            candidate = lower_bound + timedelta(days=offset)
            if (
                weekday_index(candidate) in rule.days_of_week
                and candidate not in rule.exclude_dates
            ):
                return candidate

    return None


def resolve_following_delivery(rule: RecurrenceRule, after_day: date) -> Optional[date]:
    """Resolve the first delivery day strictly after ``after_day``."""
    return resolve_next_delivery(rule, after_day + timedelta(days=1))

"""Expansion of weekly day rules into concrete market occurrences."""
import hashlib
import logging
from datetime import datetime, time, timedelta
from typing import AbstractSet, Iterable, List, Optional, Tuple

from processor.models import DayRule, Occurrence, TimeOfDay

logger = logging.getLogger(__name__)

GENERATION_SOURCE = 'opening_hours'
WEEKDAY_CODES = ('SU', 'MO', 'TU', 'WE', 'TH', 'FR', 'SA')
WEEKEND_DAYS = frozenset({0, 6})

MIN_WINDOW_DAYS = 7
MAX_WINDOW_DAYS = 60


def clamp_window_days(window_days: int) -> int:
    """Clamp a look-ahead window into the supported number of days."""
    return min(max(window_days, MIN_WINDOW_DAYS), MAX_WINDOW_DAYS)


def window_bounds(now: datetime, window_days: int) -> Tuple[datetime, datetime]:
    """Return (window_start, window_end) for a run started at ``now``."""
    return now, now + timedelta(days=clamp_window_days(window_days))


def sunday_based_weekday(moment: datetime) -> int:
    return moment.isoweekday() % 7


def recurrence_rule(weekday: int) -> str:
    return f'FREQ=WEEKLY;BYDAY={WEEKDAY_CODES[weekday]}'


def generate_event_id(place_id: str, source: str, start_at: datetime) -> str:
    """
    Generate a stable identifier for an occurrence.

    Args:
        place_id: Place the occurrence belongs to
        source: Generation source tag
        start_at: Occurrence start

    Returns:
        SHA256 hex digest of place, source and start
    """
    composite = f"{place_id}|{source}|{start_at.isoformat()}"
    return hashlib.sha256(composite.encode('utf-8')).hexdigest()


def _at(day: datetime, time_of_day: TimeOfDay) -> datetime:
    return datetime.combine(day.date(), time(time_of_day.hour, time_of_day.minute))


def next_occurrence(weekday: int, start: TimeOfDay, now: datetime) -> datetime:
    """
    Find the first start on ``weekday`` strictly after ``now``.

    Args:
        weekday: Weekday number, Sunday=0
        start: Opening time on that day
        now: Reference moment

    Returns:
        Start datetime, a week out if today's start has already passed
    """
    diff = (weekday - sunday_based_weekday(now) + 7) % 7
    candidate = _at(now + timedelta(days=diff), start)
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate


def occurrence_end(start_at: datetime, end: Optional[TimeOfDay]) -> Optional[datetime]:
    """Combine the start date with the closing time, rolling past midnight."""
    if end is None:
        return None
    end_at = _at(start_at, end)
    if end_at <= start_at:
        end_at += timedelta(days=1)
    return end_at


def materialize_occurrences(
    place_id: str,
    rules: Iterable[DayRule],
    now: datetime,
    window_days: int,
    restrict_to_days: Optional[AbstractSet[int]] = None,
    source: str = GENERATION_SOURCE
) -> List[Occurrence]:
    """
    Produce every occurrence of the given rules inside the window.

    Occurrences start strictly after ``now`` and no later than
    ``now + window_days``. The result depends only on the arguments, so
    re-running with the same inputs reproduces the same set.

    Args:
        place_id: Place the rules belong to
        rules: Parsed day rules of a market
        now: Start of the window
        window_days: Look-ahead in days, clamped to [7, 60]
        restrict_to_days: Optional weekday numbers to keep
        source: Generation source tag stored on each occurrence

    Returns:
        Occurrences ordered by start time
    """
    _, window_end = window_bounds(now, window_days)
    occurrences = {}

    for rule in rules:
        if restrict_to_days is not None and rule.weekday not in restrict_to_days:
            continue

        weekday_code = WEEKDAY_CODES[rule.weekday]
        cursor = next_occurrence(rule.weekday, rule.start, now)
        while cursor <= window_end:
            event_id = generate_event_id(place_id, source, cursor)
            # Repeated lines for the same day and start collapse into one
            occurrences.setdefault(event_id, Occurrence(
                event_id=event_id,
                place_id=place_id,
                start_at=cursor,
                end_at=occurrence_end(cursor, rule.end),
                weekday_code=weekday_code,
                recurrence_rule=recurrence_rule(rule.weekday),
                source=source,
                last_verified_at=now
            ))
            cursor += timedelta(days=7)

    ordered = sorted(occurrences.values(), key=lambda occurrence: occurrence.start_at)
    logger.debug(
        f"Materialized {len(ordered)} occurrences for place {place_id} "
        f"until {window_end.isoformat()}"
    )
    return ordered

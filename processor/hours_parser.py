"""Parsing of provider business-hours text into day rules."""
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from processor.models import DayRule, TimeOfDay

logger = logging.getLogger(__name__)

DASH_PATTERN = re.compile(r'[\u2013\u2014]')
SPACE_PATTERN = re.compile(r'[\u00a0\u202f\u2009]')
WHITESPACE_PATTERN = re.compile(r'\s+')

FULL_DAY_RULE_START = TimeOfDay(hour=0, minute=0)
FULL_DAY_RULE_END = TimeOfDay(hour=23, minute=59)


class NoTimeFound(ValueError):
    """Raised when a token carries no recognizable hour."""


@dataclass(frozen=True)
class HoursConfig:
    """
    Locale rules for reading hours text.

    Weekday names are ordered Sunday first, so the index of a name is its
    weekday number.
    """
    weekday_names: Tuple[str, ...] = (
        'sunday',
        'monday',
        'tuesday',
        'wednesday',
        'thursday',
        'friday',
        'saturday',
    )
    closed_token: str = 'closed'
    full_day_token: str = '24 hours'
    am_token: str = 'am'
    pm_token: str = 'pm'

    def weekday_for(self, day_name: str) -> Optional[int]:
        """Return the weekday number for a day name, or None if unknown."""
        key = day_name.strip().lower()
        if key in self.weekday_names:
            return self.weekday_names.index(key)
        return None

    @property
    def time_pattern(self) -> re.Pattern:
        meridiem = f'{re.escape(self.am_token)}|{re.escape(self.pm_token)}'
        return re.compile(
            rf'(\d{{1,2}})(?::(\d{{2}}))?\s*({meridiem})?',
            re.IGNORECASE
        )


DEFAULT_HOURS_CONFIG = HoursConfig()


def normalize_text(text: str) -> str:
    """
    Canonicalize dashes and whitespace in hours text.

    Args:
        text: Raw text from the provider

    Returns:
        Text with en/em dashes as '-', exotic spaces as ' ', whitespace
        runs collapsed and ends trimmed
    """
    text = DASH_PATTERN.sub('-', text)
    text = SPACE_PATTERN.sub(' ', text)
    return WHITESPACE_PATTERN.sub(' ', text).strip()


def clamp_hour(hour: int) -> int:
    """Clamp a 24-hour clock hour into [0, 23]."""
    return min(max(hour, 0), 23)


def parse_time(token: str, config: HoursConfig = DEFAULT_HOURS_CONFIG) -> TimeOfDay:
    """
    Extract the first time of day found in a token.

    Args:
        token: Text such as "2:30pm", "09:00" or "9 AM"
        config: Locale rules

    Returns:
        Parsed TimeOfDay

    Raises:
        NoTimeFound: If the token holds no hour digits or its minutes
            are outside 0-59
    """
    match = config.time_pattern.search(normalize_text(token))
    if not match:
        raise NoTimeFound(f"No time found in '{token}'")

    hour = int(match.group(1))
    minute = int(match.group(2) or '0')
    if minute > 59:
        raise NoTimeFound(f"Invalid minutes in '{token}'")
    meridiem = match.group(3)

    if meridiem:
        hour = hour % 12
        if meridiem.lower() == config.pm_token.lower():
            hour += 12
    else:
        hour = clamp_hour(hour)

    return TimeOfDay(hour=hour, minute=minute)


def split_day_line(line: str) -> Optional[Tuple[str, str]]:
    """
    Split a weekday line at its first colon.

    Returns:
        Tuple of (day name, remainder) or None if the line has no colon
    """
    normalized = normalize_text(line)
    day, separator, remainder = normalized.partition(':')
    if not separator:
        return None
    return day.strip(), remainder.strip()


def _split_range(remainder: str) -> List[str]:
    return [part.strip() for part in remainder.split('-', 1)]


def parse_day_line(
    line: str,
    config: HoursConfig = DEFAULT_HOURS_CONFIG
) -> Optional[DayRule]:
    """
    Parse one weekday line such as "Saturday: 8am-1pm".

    Args:
        line: Raw or normalized weekday line
        config: Locale rules

    Returns:
        DayRule, or None when the line is malformed, for an unknown day,
        or closed
    """
    split = split_day_line(line)
    if split is None:
        return None

    day, remainder = split
    weekday = config.weekday_for(day)
    if weekday is None:
        return None

    lowered = remainder.lower()
    if not remainder or lowered == config.closed_token:
        return None

    if config.full_day_token in lowered:
        return DayRule(
            weekday=weekday,
            start=FULL_DAY_RULE_START,
            end=FULL_DAY_RULE_END
        )

    parts = _split_range(remainder)
    try:
        start = parse_time(parts[0], config)
    except NoTimeFound:
        return None

    end = None
    if len(parts) > 1:
        try:
            end = parse_time(parts[1], config)
        except NoTimeFound:
            end = None

    return DayRule(weekday=weekday, start=start, end=end)


def parse_day_rules(
    lines: Iterable[str],
    config: HoursConfig = DEFAULT_HOURS_CONFIG
) -> List[DayRule]:
    """Parse every line, skipping those that yield no rule."""
    rules = []
    for line in lines:
        rule = parse_day_line(line, config)
        if rule is None:
            logger.debug(f"Skipping hours line without a rule: '{line}'")
            continue
        rules.append(rule)
    return rules


def parse_duration_hours(
    remainder: str,
    config: HoursConfig = DEFAULT_HOURS_CONFIG
) -> Optional[float]:
    """
    Compute how many hours a single day's range is open.

    Args:
        remainder: Time range text with the day name already stripped
        config: Locale rules

    Returns:
        Duration in hours, or None when unknown. Ranges that end at or
        before their start (including overnight ones) are unknown.
    """
    normalized = normalize_text(remainder)
    if config.full_day_token in normalized.lower():
        return 24.0

    parts = normalized.split('-')
    if len(parts) < 2:
        return None

    try:
        start = parse_time(parts[0], config)
        end = parse_time(parts[1], config)
    except NoTimeFound:
        return None

    duration = end.minutes_of_day - start.minutes_of_day
    if duration <= 0:
        return None
    return duration / 60

"""Heuristics that decide whether a place is a recurring market."""
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from processor.hours_parser import (
    DEFAULT_HOURS_CONFIG,
    HoursConfig,
    parse_duration_hours,
    split_day_line,
)
from processor.models import Verdict

logger = logging.getLogger(__name__)


def clamp_threshold(value: float, lower: float, upper: float) -> float:
    """Clamp a classifier threshold into its supported range."""
    return min(max(value, lower), upper)


@dataclass(frozen=True)
class ClassifierConfig:
    """Name, category and opening-hours rules for classification."""
    market_token: str = 'market'
    name_excludes: Tuple[str, ...] = (
        'store',
        'cafe',
        'bar',
        'office',
        'truck',
        'gallery',
        'kmart',
        'deal',
        'mall',
        'dealonline',
        'asaving',
        'cart',
        'kai',
        'cars',
        'wharf',
        'fishing',
        'tackle',
        'warehouse',
        'garden',
        'nursery',
        'marketplace',
        'supermarket',
    )
    category_excludes: Tuple[str, ...] = ('restaurant',)
    supermarket_categories: Tuple[str, ...] = (
        'supermarket',
        'grocery_or_supermarket',
    )
    supermarket_name_tokens: Tuple[str, ...] = ('supermarket', 'super market')
    open_day_threshold: int = 5
    long_day_threshold: int = 5
    long_day_hours: float = 8.0
    min_weekday_lines: int = 7

    def __post_init__(self):
        # Out-of-range thresholds are clamped rather than rejected
        object.__setattr__(
            self, 'open_day_threshold',
            int(clamp_threshold(self.open_day_threshold, 1, 7))
        )
        object.__setattr__(
            self, 'long_day_threshold',
            int(clamp_threshold(self.long_day_threshold, 1, 7))
        )
        object.__setattr__(
            self, 'long_day_hours',
            float(clamp_threshold(self.long_day_hours, 1, 24))
        )


DEFAULT_CLASSIFIER_CONFIG = ClassifierConfig()


def is_likely_store_by_hours(
    weekday_text: Optional[Sequence[str]],
    config: ClassifierConfig = DEFAULT_CLASSIFIER_CONFIG,
    hours_config: HoursConfig = DEFAULT_HOURS_CONFIG
) -> bool:
    """
    Detect permanently-open stores from a week of opening hours.

    A place looks like a store when it lists a full week, is open on at
    least ``open_day_threshold`` days and has at least
    ``long_day_threshold`` days lasting ``long_day_hours`` or more.

    Args:
        weekday_text: One line per weekday, e.g. "Monday: 9am-5pm"
        config: Classifier thresholds
        hours_config: Locale rules for the hours text

    Returns:
        True if the hours describe a store
    """
    if not weekday_text or len(weekday_text) < config.min_weekday_lines:
        return False

    open_days = 0
    long_day_count = 0
    for line in weekday_text:
        split = split_day_line(line)
        if split is None:
            continue
        _, remainder = split
        if not remainder or remainder.lower() == hours_config.closed_token:
            continue
        open_days += 1
        duration = parse_duration_hours(remainder, hours_config)
        if duration is not None and duration >= config.long_day_hours:
            long_day_count += 1

    return (
        open_days >= config.open_day_threshold and
        long_day_count >= config.long_day_threshold
    )


def is_market_by_name(
    name: str,
    config: ClassifierConfig = DEFAULT_CLASSIFIER_CONFIG
) -> bool:
    return config.market_token in name.lower()


def is_supermarket(
    name: str,
    categories: Iterable[str],
    config: ClassifierConfig = DEFAULT_CLASSIFIER_CONFIG
) -> bool:
    """Check categories, then the name, for a supermarket chain."""
    if any(category in config.supermarket_categories for category in categories):
        return True
    lowered = name.lower()
    return any(token in lowered for token in config.supermarket_name_tokens)


def is_excluded_by_name(
    name: str,
    config: ClassifierConfig = DEFAULT_CLASSIFIER_CONFIG
) -> bool:
    lowered = name.lower()
    return any(token in lowered for token in config.name_excludes)


def is_excluded_by_category(
    categories: Iterable[str],
    config: ClassifierConfig = DEFAULT_CLASSIFIER_CONFIG
) -> bool:
    return any(category in config.category_excludes for category in categories)


def classify(
    name: str,
    categories: Iterable[str],
    weekday_text: Optional[Sequence[str]],
    config: ClassifierConfig = DEFAULT_CLASSIFIER_CONFIG,
    hours_config: HoursConfig = DEFAULT_HOURS_CONFIG
) -> Verdict:
    """
    Classify a place as a market, a store or neither.

    Args:
        name: Display name of the place
        categories: Provider category tags
        weekday_text: Raw opening-hours lines, possibly empty
        config: Classifier rules
        hours_config: Locale rules for the hours text

    Returns:
        Verdict.EXCLUDED when the name does not mention a market,
        Verdict.MARKET when no store signal applies, Verdict.STORE otherwise
    """
    categories = list(categories)

    if not is_market_by_name(name, config):
        return Verdict.EXCLUDED

    if is_supermarket(name, categories, config):
        logger.debug(f"'{name}' classified as store: supermarket")
        return Verdict.STORE
    if is_excluded_by_name(name, config):
        logger.debug(f"'{name}' classified as store: excluded name")
        return Verdict.STORE
    if is_excluded_by_category(categories, config):
        logger.debug(f"'{name}' classified as store: excluded category")
        return Verdict.STORE
    if is_likely_store_by_hours(weekday_text, config, hours_config):
        logger.debug(f"'{name}' classified as store: opening hours")
        return Verdict.STORE

    return Verdict.MARKET

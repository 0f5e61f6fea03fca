"""Classification and occurrence generation for market places."""
import logging
from datetime import datetime
from typing import AbstractSet, Iterable, List, Optional, Sequence

from processor.classifier import (
    DEFAULT_CLASSIFIER_CONFIG,
    ClassifierConfig,
    classify,
)
from processor.hours_parser import DEFAULT_HOURS_CONFIG, HoursConfig, parse_day_rules
from processor.materializer import (
    WEEKEND_DAYS,
    clamp_window_days,
    materialize_occurrences,
)
from processor.models import EnrichmentResult, Place, Verdict

logger = logging.getLogger(__name__)


def classify_and_materialize(
    place_id: str,
    raw_hours_lines: Sequence[str],
    place_name: str,
    place_categories: Iterable[str],
    now: datetime,
    window_days: int,
    restrict_to_days: Optional[AbstractSet[int]] = None,
    hours_config: Optional[HoursConfig] = None,
    classifier_config: Optional[ClassifierConfig] = None
) -> EnrichmentResult:
    """
    Classify a place and, for markets, materialize upcoming occurrences.

    Malformed hours lines are skipped; classification still runs on the
    remaining rules and the name and category signals.

    Args:
        place_id: Identifier of the place
        raw_hours_lines: Up to seven "<Weekday>: <hours>" lines
        place_name: Display name
        place_categories: Provider category tags
        now: Start of the look-ahead window
        window_days: Window length in days, clamped to [7, 60]
        restrict_to_days: Optional weekday numbers (Sunday=0) to keep
        hours_config: Locale rules, defaults to English weekday names
        classifier_config: Classifier rules and thresholds

    Returns:
        EnrichmentResult with the verdict; occurrences only for markets
    """
    hours_config = hours_config or DEFAULT_HOURS_CONFIG
    classifier_config = classifier_config or DEFAULT_CLASSIFIER_CONFIG
    raw_hours_lines = list(raw_hours_lines or [])

    day_rules = parse_day_rules(raw_hours_lines, hours_config)
    verdict = classify(
        place_name,
        place_categories,
        raw_hours_lines,
        classifier_config,
        hours_config
    )

    occurrences = []
    if verdict is Verdict.MARKET:
        occurrences = materialize_occurrences(
            place_id,
            day_rules,
            now,
            window_days,
            restrict_to_days
        )

    return EnrichmentResult(
        place_id=place_id,
        verdict=verdict,
        day_rules=day_rules,
        occurrences=occurrences
    )


class MarketProcessor:
    """Processor that runs classification over a batch of places."""

    def __init__(
        self,
        window_days: int = 30,
        weekend_only: bool = True,
        hours_config: Optional[HoursConfig] = None,
        classifier_config: Optional[ClassifierConfig] = None
    ):
        """
        Initialize the processor.

        Args:
            window_days: Look-ahead window in days (clamped to [7, 60])
            weekend_only: Only materialize Saturday and Sunday occurrences
            hours_config: Locale rules for hours text
            classifier_config: Classifier rules and thresholds
        """
        self.window_days = clamp_window_days(window_days)
        self.restrict_to_days = WEEKEND_DAYS if weekend_only else None
        self.hours_config = hours_config or DEFAULT_HOURS_CONFIG
        self.classifier_config = classifier_config or DEFAULT_CLASSIFIER_CONFIG

    def process_places(
        self,
        places: List[Place],
        now: datetime
    ) -> List[EnrichmentResult]:
        """
        Classify and materialize a batch of places.

        Places without hours text are skipped. A place that fails is logged
        and skipped so the rest of the batch still runs.

        Args:
            places: Places loaded from the store
            now: Start of the look-ahead window

        Returns:
            One EnrichmentResult per processed place
        """
        results = []

        for place in places:
            if not place.opening_hours_text:
                logger.debug(f"Place {place.place_id} has no opening hours")
                continue
            try:
                results.append(self.process_place(place, now))
            except Exception as e:
                logger.warning(
                    f"Failed to process place '{place.name}' "
                    f"({place.place_id}): {e}"
                )
                continue

        logger.info(
            f"Processed {len(results)} places with hours out of "
            f"{len(places)} total places"
        )
        return results

    def process_place(self, place: Place, now: datetime) -> EnrichmentResult:
        result = classify_and_materialize(
            place.place_id,
            place.opening_hours_text,
            place.name,
            place.categories,
            now,
            self.window_days,
            self.restrict_to_days,
            self.hours_config,
            self.classifier_config
        )
        logger.info(
            f"Place '{place.name}' classified as {result.verdict.value} "
            f"with {len(result.occurrences)} occurrences"
        )
        return result

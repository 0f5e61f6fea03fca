"""Data models for market hours enrichment."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


@dataclass(frozen=True)
class TimeOfDay:
    """Local wall-clock time without a date."""
    hour: int
    minute: int

    @property
    def minutes_of_day(self) -> int:
        return self.hour * 60 + self.minute


@dataclass(frozen=True)
class DayRule:
    """Parsed opening window for one weekday (Sunday=0)."""
    weekday: int
    start: TimeOfDay
    end: Optional[TimeOfDay]


class Verdict(Enum):
    """Classification outcome for a place."""
    MARKET = 'market'
    STORE = 'store'
    EXCLUDED = 'excluded'


@dataclass
class Place:
    """Place record as held in the places table."""
    place_id: str
    name: str
    categories: List[str]
    opening_hours_text: List[str]
    is_market: bool = True


@dataclass
class Occurrence:
    """One concrete calendar instance of a recurring market."""
    event_id: str
    place_id: str
    start_at: datetime
    end_at: Optional[datetime]
    weekday_code: str
    recurrence_rule: str
    source: str
    last_verified_at: datetime


@dataclass
class EnrichmentResult:
    """Verdict and occurrences produced for a single place."""
    place_id: str
    verdict: Verdict
    day_rules: List[DayRule] = field(default_factory=list)
    occurrences: List[Occurrence] = field(default_factory=list)


@dataclass
class SyncResult:
    """Result of applying enrichment results to the store."""
    created: int
    deleted: int
    stores_flagged: int
    errors: list[str]


@dataclass
class EnrichmentSummary:
    """Statistics for one enrichment run."""
    processed: int = 0
    markets_with_hours: int = 0
    markets_with_occurrences: int = 0
    occurrences_total: int = 0
    excluded: int = 0

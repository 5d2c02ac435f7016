"""Data models for duplicate event detection."""
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class RaceSummary:
    """Race projection used for category comparison."""
    category_level1: Optional[str] = None


@dataclass(frozen=True)
class EditionSummary:
    """One yearly occurrence of an event."""
    id: int
    year: str
    start_date: Optional[date] = None
    races: List[RaceSummary] = field(default_factory=list)


@dataclass(frozen=True)
class EventSummary:
    """Catalog event projection used for scoring and matching."""
    id: int
    name: str
    city: str
    subdivision_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    status: Optional[str] = None
    created_at: Optional[datetime] = None
    editions: List[EditionSummary] = field(default_factory=list)

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class ScoreDetails:
    """Sub-scores kept for audit and debugging."""
    name_score: float
    location_score: float
    date_score: float
    category_score: float
    edition_ratio: float
    distance_km: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        details = {
            'nameScore': self.name_score,
            'locationScore': self.location_score,
            'dateScore': self.date_score,
            'categoryScore': self.category_score,
            'editionRatio': self.edition_ratio,
        }
        if self.distance_km is not None:
            details['distanceKm'] = self.distance_km
        return details


@dataclass(frozen=True)
class DuplicateScore:
    """Result of scoring two events against each other."""
    score: float
    is_duplicate: bool
    details: ScoreDetails


@dataclass(frozen=True)
class KeepDecision:
    """Which event of a duplicate pair survives, and why."""
    keep: EventSummary
    duplicate: EventSummary
    reason: str


@dataclass
class PairRecord:
    """Memoized verdict for one analyzed pair."""
    analyzed_at: str
    score: float
    proposal_created: bool = False


def get_pair_key(event_id1: int, event_id2: int) -> str:
    """Order-independent key for a pair of event ids."""
    low, high = sorted((int(event_id1), int(event_id2)))
    return f"{low}-{high}"


@dataclass
class ScanProgress:
    """
    Persisted state of the detection sweep.

    The cursor moves forward through event ids during a sweep and goes back
    to 0 once the whole catalog has been visited. ``analyzed_pairs`` maps a
    pair key (see ``get_pair_key``) to the verdict recorded for that pair.
    """
    last_processed_event_id: int = 0
    last_full_scan_at: Optional[str] = None
    total_events_analyzed: int = 0
    total_duplicates_found: int = 0
    analyzed_pairs: Dict[str, PairRecord] = field(default_factory=dict)

    def has_pair(self, pair_key: str) -> bool:
        return pair_key in self.analyzed_pairs

    def record_pair(self, pair_key: str, score: float, analyzed_at: str) -> None:
        self.analyzed_pairs[pair_key] = PairRecord(
            analyzed_at=analyzed_at,
            score=score,
            proposal_created=False
        )

    def mark_proposal_created(self, pair_key: str) -> None:
        record = self.analyzed_pairs.get(pair_key)
        if record:
            record.proposal_created = True

    def purge_pairs_older_than(self, cutoff: datetime) -> int:
        """
        Drop pair verdicts analyzed before ``cutoff``.

        Args:
            cutoff: Timezone-aware datetime; older entries are removed

        Returns:
            Number of entries removed
        """
        stale_keys = [
            key for key, record in self.analyzed_pairs.items()
            if _parse_timestamp(record.analyzed_at) < cutoff
        ]
        for key in stale_keys:
            del self.analyzed_pairs[key]
        return len(stale_keys)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'lastProcessedEventId': self.last_processed_event_id,
            'lastFullScanAt': self.last_full_scan_at,
            'totalEventsAnalyzed': self.total_events_analyzed,
            'totalDuplicatesFound': self.total_duplicates_found,
            'analyzedPairs': {
                key: {
                    'analyzedAt': record.analyzed_at,
                    'score': record.score,
                    'proposalCreated': record.proposal_created
                }
                for key, record in self.analyzed_pairs.items()
            }
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScanProgress':
        pairs = {
            key: PairRecord(
                analyzed_at=value['analyzedAt'],
                score=float(value['score']),
                proposal_created=bool(value.get('proposalCreated', False))
            )
            for key, value in (data.get('analyzedPairs') or {}).items()
        }
        return cls(
            last_processed_event_id=int(data.get('lastProcessedEventId', 0)),
            last_full_scan_at=data.get('lastFullScanAt'),
            total_events_analyzed=int(data.get('totalEventsAnalyzed', 0)),
            total_duplicates_found=int(data.get('totalDuplicatesFound', 0)),
            analyzed_pairs=pairs
        )


@dataclass(frozen=True)
class MergeRecommendation:
    """Merge proposal submitted for human review."""
    keep_event_id: int
    keep_event_name: str
    keep_event_city: str
    keep_event_editions_count: int
    duplicate_event_id: int
    duplicate_event_name: str
    duplicate_event_city: str
    duplicate_event_editions_count: int
    confidence: float
    justification: List[Dict[str, Any]]

    def changes(self) -> Dict[str, Any]:
        return {
            'merge': {
                'keepEventId': self.keep_event_id,
                'keepEventName': self.keep_event_name,
                'keepEventCity': self.keep_event_city,
                'keepEventEditionsCount': self.keep_event_editions_count,
                'duplicateEventId': self.duplicate_event_id,
                'duplicateEventName': self.duplicate_event_name,
                'duplicateEventCity': self.duplicate_event_city,
                'duplicateEventEditionsCount': self.duplicate_event_editions_count,
                'newEventName': None,
                'copyMissingEditions': True
            }
        }


@dataclass
class BatchResult:
    """Outcome of one detection invocation."""
    success: bool
    message: str
    events_processed: int
    duplicates_found: int
    recommendations_created: int
    last_processed_event_id: int
    sweep_complete: bool = False
    dry_run: bool = False
    duration_seconds: float = 0.0
    errors: List[str] = field(default_factory=list)


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

"""
Multi-criteria duplicate scoring for sports events.

Criteria and default weights: name similarity (40%), location (30%),
edition dates (20%), race categories (10%).
"""
from datetime import date, datetime
from typing import Iterable, List, Optional, Set, Tuple

from rapidfuzz import fuzz

from detection.config import DEFAULT_SCORING_CONFIG, ScoringConfig
from detection.models import (
    DuplicateScore,
    EditionSummary,
    EventSummary,
    KeepDecision,
    ScoreDetails,
)
from detection.text_utils import (
    haversine_distance,
    normalize_city,
    normalize_string,
    remove_edition_number,
    remove_stopwords,
)

# Similarity below this percentage is treated as no match at all
FUZZY_SCORE_CUTOFF = 40
FUZZY_WEIGHT = 0.7
KEYWORD_WEIGHT = 0.3

RECENT_YEARS = 3
NEUTRAL_CATEGORY_SCORE = 0.5
SAME_SUBDIVISION_SCORE = 0.6

SAME_PLACE_DATE_BONUS = 0.05
EDITION_RATIO_THRESHOLD = 0.2
EDITION_RATIO_MALUS = 0.9

LIVE_STATUS = 'LIVE'


def _round(value: float) -> float:
    return round(value, 3)


def calculate_name_score(event1: EventSummary, event2: EventSummary) -> float:
    """
    Similarity of two event names.

    Names are normalized and stripped of edition numbers first. Identical
    results score 1.0, otherwise 70% fuzzy similarity of the full names and
    30% Jaccard overlap of their significant keywords.
    """
    name1 = normalize_string(remove_edition_number(event1.name))
    name2 = normalize_string(remove_edition_number(event2.name))

    if name1 == name2:
        return 1.0

    fuzzy_score = fuzz.WRatio(name1, name2, score_cutoff=FUZZY_SCORE_CUTOFF) / 100

    keywords1 = set(remove_stopwords(name1).split())
    keywords2 = set(remove_stopwords(name2).split())
    keyword_score = _jaccard(keywords1, keywords2)

    return fuzzy_score * FUZZY_WEIGHT + keyword_score * KEYWORD_WEIGHT


def calculate_location_score(
    event1: EventSummary,
    event2: EventSummary,
    max_distance_km: float = 15
) -> Tuple[float, Optional[float]]:
    """
    Geographic proximity score.

    Returns:
        Tuple of (score, distance in km or None when not computed)
    """
    city1 = normalize_city(event1.city)
    city2 = normalize_city(event2.city)
    if city1 and city1 == city2:
        return 1.0, None

    if event1.has_coordinates and event2.has_coordinates:
        distance_km = haversine_distance(
            event1.latitude, event1.longitude,
            event2.latitude, event2.longitude
        )
        if distance_km <= 5:
            return 1.0, distance_km
        if distance_km <= max_distance_km:
            return 0.8, distance_km
        if distance_km <= 30:
            return 0.5, distance_km
        if distance_km <= 50:
            return 0.3, distance_km
        return 0.0, distance_km

    same_subdivision = (
        event1.subdivision_code and
        event1.subdivision_code == event2.subdivision_code
    )
    return (SAME_SUBDIVISION_SCORE if same_subdivision else 0.0), None


def get_recent_editions(
    editions: Iterable[EditionSummary],
    years_back: int = RECENT_YEARS,
    today: Optional[date] = None
) -> List[EditionSummary]:
    min_year = (today or date.today()).year - years_back
    recent = []
    for edition in editions:
        try:
            year = int(edition.year)
        except (TypeError, ValueError):
            continue
        if year >= min_year:
            recent.append(edition)
    return recent


def calculate_date_score(
    event1: EventSummary,
    event2: EventSummary,
    tolerance_days: int = 30,
    today: Optional[date] = None
) -> float:
    """
    Best temporal match between recent editions of the same year.

    Same day 1.0, within a week 0.9, within tolerance 0.7, same year but far
    apart 0.3, same year with an unknown date 0.5, nothing comparable 0.0.
    """
    recent1 = get_recent_editions(event1.editions, today=today)
    recent2 = get_recent_editions(event2.editions, today=today)

    if not recent1 or not recent2:
        return 0.0

    best_score = 0.0
    for edition1 in recent1:
        for edition2 in recent2:
            if edition1.year != edition2.year:
                continue
            if edition1.start_date and edition2.start_date:
                diff_days = abs((_as_date(edition1.start_date) -
                                 _as_date(edition2.start_date)).days)
                if diff_days == 0:
                    score = 1.0
                elif diff_days <= 7:
                    score = 0.9
                elif diff_days <= tolerance_days:
                    score = 0.7
                else:
                    score = 0.3
            else:
                score = 0.5
            best_score = max(best_score, score)

    return best_score


def calculate_category_score(event1: EventSummary, event2: EventSummary) -> float:
    """Jaccard overlap of race categories; neutral when either side has none."""
    categories1 = _collect_categories(event1)
    categories2 = _collect_categories(event2)

    if not categories1 or not categories2:
        return NEUTRAL_CATEGORY_SCORE

    return _jaccard(categories1, categories2)


def calculate_duplicate_score(
    event1: EventSummary,
    event2: EventSummary,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
    min_duplicate_score: float = 0.80,
    today: Optional[date] = None
) -> DuplicateScore:
    """
    Combined duplicate likelihood of two events.

    Args:
        event1: Event being analyzed
        event2: Candidate event
        config: Weights and tolerances
        min_duplicate_score: Threshold above which the pair is a duplicate
        today: Reference date for "recent" editions (defaults to today)

    Returns:
        DuplicateScore with the rounded score and its sub-scores
    """
    name_score = calculate_name_score(event1, event2)
    location_score, distance_km = calculate_location_score(
        event1, event2, config.max_distance_km
    )
    date_score = calculate_date_score(
        event1, event2, config.date_tolerance_days, today=today
    )
    category_score = calculate_category_score(event1, event2)

    final_score = (
        name_score * config.name_weight +
        location_score * config.location_weight +
        date_score * config.date_weight +
        category_score * config.category_weight
    )

    editions1 = len(event1.editions)
    editions2 = len(event2.editions)
    edition_ratio = min(editions1, editions2) / max(editions1, editions2, 1)

    # Same place and (almost) same day
    if location_score == 1.0 and date_score >= 0.9:
        final_score = min(1.0, final_score + SAME_PLACE_DATE_BONUS)

    # One event has a much longer history than the other
    if edition_ratio < EDITION_RATIO_THRESHOLD:
        final_score = final_score * EDITION_RATIO_MALUS

    score = _round(final_score)
    return DuplicateScore(
        score=score,
        is_duplicate=score >= min_duplicate_score,
        details=ScoreDetails(
            name_score=_round(name_score),
            location_score=_round(location_score),
            date_score=_round(date_score),
            category_score=_round(category_score),
            edition_ratio=_round(edition_ratio),
            distance_km=_round(distance_km) if distance_km is not None else None
        )
    )


def choose_keep_event(event1: EventSummary, event2: EventSummary) -> KeepDecision:
    """
    Decide which event of a duplicate pair to keep.

    First decisive rule wins: more editions, LIVE status, earlier creation
    date, lower id.
    """
    editions1 = len(event1.editions)
    editions2 = len(event2.editions)
    if editions1 != editions2:
        keep, duplicate = (event1, event2) if editions1 > editions2 else (event2, event1)
        return KeepDecision(
            keep=keep,
            duplicate=duplicate,
            reason=f"More editions ({len(keep.editions)} vs {len(duplicate.editions)})"
        )

    live1 = event1.status == LIVE_STATUS
    live2 = event2.status == LIVE_STATUS
    if live1 != live2:
        keep, duplicate = (event1, event2) if live1 else (event2, event1)
        return KeepDecision(keep=keep, duplicate=duplicate, reason='Status LIVE')

    if event1.created_at and event2.created_at and event1.created_at != event2.created_at:
        keep, duplicate = (
            (event1, event2) if event1.created_at < event2.created_at
            else (event2, event1)
        )
        return KeepDecision(keep=keep, duplicate=duplicate, reason='Older')

    keep, duplicate = (event1, event2) if event1.id <= event2.id else (event2, event1)
    return KeepDecision(keep=keep, duplicate=duplicate, reason='Older id')


def _collect_categories(event: EventSummary) -> Set[str]:
    return {
        race.category_level1
        for edition in event.editions
        for race in edition.races
        if race.category_level1
    }


def _jaccard(first: Set[str], second: Set[str]) -> float:
    union = first | second
    if not union:
        return 0.0
    return len(first & second) / len(union)


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value

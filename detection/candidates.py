"""
Candidate retrieval for duplicate detection.

Funnel strategy: the full-text search index first when it is configured,
then a two-pass SQL keyword search (same subdivision, then everywhere).
"""
import logging
from typing import List, Optional, Protocol, Sequence

from detection.config import DEFAULT_CANDIDATE_CONFIG, CandidateConfig
from detection.models import EventSummary
from detection.text_utils import extract_keywords, normalize_string, remove_edition_number
from search.meilisearch_client import MeilisearchClient, SearchIndexError
from storage.event_store import EventStore

logger = logging.getLogger(__name__)

SQL_KEYWORD_LIMIT = 3
MIN_NARROW_RESULTS = 5


class CandidateSource(Protocol):
    """Something able to propose duplicate candidates for an event."""

    name: str
    optional: bool

    def find_candidates(
        self,
        event: EventSummary,
        keywords: Sequence[str],
        limit: int
    ) -> List[EventSummary]:
        ...


class SearchIndexCandidateSource:
    """Candidates from the full-text index, enriched from the event store."""

    name = 'search-index'
    optional = True

    def __init__(self, client: MeilisearchClient, event_store: EventStore):
        self.client = client
        self.event_store = event_store

    def find_candidates(
        self,
        event: EventSummary,
        keywords: Sequence[str],
        limit: int
    ) -> List[EventSummary]:
        query = normalize_string(remove_edition_number(event.name))

        filters = []
        if event.subdivision_code:
            filters.append(f'department = "{event.subdivision_code}"')
        filters.append(f'objectID != {event.id}')

        hits = self.client.search(query, ' AND '.join(filters), limit=limit)
        hit_ids = [hit.id for hit in hits if hit.id != event.id][:limit]
        if not hit_ids:
            return []

        # The index holds no editions or races
        enriched = {
            candidate.id: candidate
            for candidate in self.event_store.get_events_by_ids(hit_ids)
        }
        logger.debug(f"Enriched {len(enriched)} of {len(hit_ids)} index hits")
        return [enriched[hit_id] for hit_id in hit_ids if hit_id in enriched]


class SqlCandidateSource:
    """Keyword candidates from the relational store, narrow then broad."""

    name = 'sql'
    optional = False

    def __init__(self, event_store: EventStore):
        self.event_store = event_store

    def find_candidates(
        self,
        event: EventSummary,
        keywords: Sequence[str],
        limit: int
    ) -> List[EventSummary]:
        top_keywords = list(keywords[:SQL_KEYWORD_LIMIT])
        if not top_keywords:
            logger.debug(f"Event {event.id} has no significant keyword, no SQL candidates")
            return []

        candidates = {}

        if event.subdivision_code:
            narrow = self.event_store.search_by_keywords(
                top_keywords,
                limit=limit,
                subdivision_code=event.subdivision_code,
                exclude_ids=[event.id]
            )
            logger.debug(f"SQL pass 1 (same subdivision + keywords): {len(narrow)} results")
            for candidate in narrow:
                candidates.setdefault(candidate.id, candidate)

        if len(candidates) < MIN_NARROW_RESULTS:
            remaining = limit - len(candidates)
            broad = self.event_store.search_by_keywords(
                top_keywords,
                limit=remaining,
                exclude_ids=[event.id, *candidates.keys()]
            )
            logger.debug(f"SQL pass 2 (all subdivisions + keywords): {len(broad)} results")
            for candidate in broad:
                candidates.setdefault(candidate.id, candidate)

        return list(candidates.values())


class CandidateRetriever:
    """Runs candidate sources in order until one of them yields results."""

    def __init__(
        self,
        sources: Sequence[CandidateSource],
        config: CandidateConfig = DEFAULT_CANDIDATE_CONFIG
    ):
        self.sources = list(sources)
        self.config = config

    @classmethod
    def build(
        cls,
        event_store: EventStore,
        search_client: Optional[MeilisearchClient] = None,
        config: CandidateConfig = DEFAULT_CANDIDATE_CONFIG
    ) -> 'CandidateRetriever':
        sources: List[CandidateSource] = []
        if config.use_search_index and search_client is not None:
            sources.append(SearchIndexCandidateSource(search_client, event_store))
        sources.append(SqlCandidateSource(event_store))
        return cls(sources, config)

    def find_candidates(self, event: EventSummary) -> List[EventSummary]:
        """
        Return plausible duplicates of an event.

        Search index failures fall through to the next source; errors from
        the relational store propagate.
        """
        keywords = extract_keywords(event.name)
        limit = self.config.max_candidates_per_event

        logger.debug(
            f"Finding candidates for '{event.name}' ({event.city})",
            extra={'keywords': keywords, 'subdivision_code': event.subdivision_code}
        )

        for source in self.sources:
            try:
                candidates = source.find_candidates(event, keywords, limit)
            except SearchIndexError as e:
                if not source.optional:
                    raise
                logger.warning(f"Candidate source {source.name} failed, falling back: {e}")
                continue

            candidates = [c for c in candidates if c.id != event.id][:limit]
            if candidates:
                logger.debug(f"{source.name} found {len(candidates)} candidates for event {event.id}")
                return candidates

            logger.debug(f"{source.name} returned no candidates for event {event.id}")

        return []

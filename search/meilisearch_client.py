"""Client for the Meilisearch full-text index of catalog events."""
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


class SearchIndexError(Exception):
    """Raised when the search index cannot answer a query."""


@dataclass
class SearchHit:
    """Lightweight event hit returned by the index."""
    id: int
    name: str
    city: str
    subdivision_code: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    status: Optional[str]


class MeilisearchClient:
    """Minimal Meilisearch search client with bounded timeout and retries."""

    def __init__(
        self,
        url: str,
        api_key: str,
        index_name: str = 'fra_events',
        timeout: float = 5,
        max_retries: int = 2,
        base_delay: float = 0.5
    ):
        """
        Initialize the search client.

        Args:
            url: Base URL of the Meilisearch instance
            api_key: Search API key
            index_name: Name of the events index (default: fra_events)
            timeout: HTTP request timeout in seconds (default: 5)
            max_retries: Attempts per query before giving up (default: 2)
            base_delay: Initial backoff delay in seconds
        """
        self.url = url.rstrip('/')
        self.api_key = api_key
        self.index_name = index_name
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.session = requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {api_key}',
            'Content-Type': 'application/json'
        })

    def health(self) -> bool:
        """Return True when the instance reports itself available."""
        try:
            response = self.session.get(f"{self.url}/health", timeout=self.timeout)
            response.raise_for_status()
            return response.json().get('status') == 'available'
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Meilisearch health check failed: {e}")
            return False

    def search(
        self,
        query: str,
        filter_expression: Optional[str] = None,
        limit: int = 20
    ) -> List[SearchHit]:
        """
        Search events in the index.

        Args:
            query: Free-text query
            filter_expression: Meilisearch filter, e.g. 'department = "75"'
            limit: Maximum number of hits

        Returns:
            Ranked list of SearchHit objects

        Raises:
            SearchIndexError: If all attempts fail or the response is malformed
        """
        payload: Dict[str, Any] = {'q': query, 'limit': limit}
        if filter_expression:
            payload['filter'] = filter_expression

        data = self._post_search(payload)
        raw_hits = data.get('hits') if isinstance(data, dict) else None
        if not isinstance(raw_hits, list):
            raise SearchIndexError(
                f"Unexpected Meilisearch response: no hits list in {type(data).__name__}"
            )

        hits = []
        for raw_hit in raw_hits:
            if not isinstance(raw_hit, dict):
                raise SearchIndexError(
                    f"Unexpected Meilisearch hit: {type(raw_hit).__name__}"
                )
            hit = self._parse_hit(raw_hit)
            if hit:
                hits.append(hit)

        logger.debug(f"Meilisearch returned {len(hits)} hits for '{query}'")
        return hits

    def _post_search(self, payload: Dict[str, Any]) -> Any:
        endpoint = f"{self.url}/indexes/{self.index_name}/search"

        for attempt in range(self.max_retries):
            try:
                response = self.session.post(
                    endpoint,
                    json=payload,
                    timeout=self.timeout
                )
                response.raise_for_status()
                return response.json()

            except ValueError as e:
                raise SearchIndexError(f"Invalid Meilisearch response: {e}") from e

            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(
                        f"Search request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    raise SearchIndexError(
                        f"Meilisearch search failed after {self.max_retries} attempts: {e}"
                    ) from e

        raise SearchIndexError("Meilisearch search was not attempted")

    def _parse_hit(self, raw_hit: Dict[str, Any]) -> Optional[SearchHit]:
        """
        Convert an index document to a SearchHit.

        The index stores ids as strings under ``objectID`` and prefixes
        some attributes with ``event``; both spellings are accepted.
        """
        raw_id = raw_hit.get('objectID', raw_hit.get('id'))
        try:
            event_id = int(raw_id)
        except (TypeError, ValueError):
            logger.warning(f"Skipping search hit without numeric id: {raw_id!r}")
            return None

        return SearchHit(
            id=event_id,
            name=raw_hit.get('eventName') or raw_hit.get('name') or '',
            city=raw_hit.get('eventCity') or raw_hit.get('city') or '',
            subdivision_code=raw_hit.get('department'),
            latitude=raw_hit.get('latitude'),
            longitude=raw_hit.get('longitude'),
            status=raw_hit.get('status')
        )

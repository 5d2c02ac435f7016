"""Read access to the relational event catalog."""
import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    or_,
    select,
)
from sqlalchemy.engine import Engine

from detection.models import EditionSummary, EventSummary, RaceSummary

logger = logging.getLogger(__name__)

LIVE_STATUS = 'LIVE'

metadata = MetaData()

event_table = Table(
    'event', metadata,
    Column('id', Integer, primary_key=True),
    Column('name', String, nullable=False),
    Column('city', String, nullable=False, default=''),
    Column('country_subdivision_code', String),
    Column('latitude', Float),
    Column('longitude', Float),
    Column('status', String, nullable=False, default=LIVE_STATUS),
    Column('created_at', DateTime),
)

edition_table = Table(
    'edition', metadata,
    Column('id', Integer, primary_key=True),
    Column('event_id', Integer, ForeignKey('event.id'), nullable=False, index=True),
    Column('year', String, nullable=False),
    Column('start_date', Date),
)

race_table = Table(
    'race', metadata,
    Column('id', Integer, primary_key=True),
    Column('edition_id', Integer, ForeignKey('edition.id'), nullable=False, index=True),
    Column('category_level1', String),
)


class EventStore:
    """Queries returning EventSummary projections with editions and races."""

    def __init__(self, engine: Engine):
        """
        Initialize the store.

        Args:
            engine: SQLAlchemy engine bound to the catalog database
        """
        self.engine = engine

    def create_schema(self) -> None:
        """Create the catalog tables if they do not exist."""
        metadata.create_all(self.engine)

    def fetch_events_batch(
        self,
        after_id: int,
        limit: int,
        exclude_statuses: Sequence[str] = ()
    ) -> List[EventSummary]:
        """
        Fetch the next page of events to analyze.

        Only LIVE events are returned unless ``exclude_statuses`` is given,
        in which case every status except the excluded ones is eligible.

        Args:
            after_id: Return events with an id strictly greater than this
            limit: Maximum number of events
            exclude_statuses: Statuses to skip

        Returns:
            Events ordered by ascending id
        """
        query = select(event_table).where(event_table.c.id > after_id)
        if exclude_statuses:
            query = query.where(event_table.c.status.notin_(list(exclude_statuses)))
        else:
            query = query.where(event_table.c.status == LIVE_STATUS)
        query = query.order_by(event_table.c.id.asc()).limit(limit)

        return self._load(query)

    def get_events_by_ids(self, event_ids: Iterable[int]) -> List[EventSummary]:
        """Load full projections for the given ids (order not guaranteed)."""
        ids = list(event_ids)
        if not ids:
            return []
        query = select(event_table).where(event_table.c.id.in_(ids))
        return self._load(query)

    def search_by_keywords(
        self,
        keywords: Sequence[str],
        limit: int,
        subdivision_code: Optional[str] = None,
        exclude_ids: Iterable[int] = ()
    ) -> List[EventSummary]:
        """
        Find LIVE events whose name contains any of the keywords.

        Args:
            keywords: Case-insensitive substrings to look for
            limit: Maximum number of events
            subdivision_code: Restrict to one administrative subdivision
            exclude_ids: Event ids to leave out

        Returns:
            Matching events
        """
        if not keywords or limit <= 0:
            return []

        query = select(event_table).where(
            event_table.c.status == LIVE_STATUS,
            or_(*[event_table.c.name.ilike(f'%{keyword}%') for keyword in keywords])
        )
        excluded = list(exclude_ids)
        if excluded:
            query = query.where(event_table.c.id.notin_(excluded))
        if subdivision_code:
            query = query.where(event_table.c.country_subdivision_code == subdivision_code)
        query = query.order_by(event_table.c.id.asc()).limit(limit)

        return self._load(query)

    def _load(self, event_query) -> List[EventSummary]:
        with self.engine.connect() as connection:
            event_rows = connection.execute(event_query).mappings().all()
            if not event_rows:
                return []

            event_ids = [row['id'] for row in event_rows]
            edition_rows = connection.execute(
                select(edition_table)
                .where(edition_table.c.event_id.in_(event_ids))
                .order_by(edition_table.c.id.asc())
            ).mappings().all()

            edition_ids = [row['id'] for row in edition_rows]
            race_rows = []
            if edition_ids:
                race_rows = connection.execute(
                    select(race_table.c.edition_id, race_table.c.category_level1)
                    .where(race_table.c.edition_id.in_(edition_ids))
                    .order_by(race_table.c.id.asc())
                ).mappings().all()

        races_by_edition: Dict[int, List[RaceSummary]] = defaultdict(list)
        for row in race_rows:
            races_by_edition[row['edition_id']].append(
                RaceSummary(category_level1=row['category_level1'])
            )

        editions_by_event: Dict[int, List[EditionSummary]] = defaultdict(list)
        for row in edition_rows:
            editions_by_event[row['event_id']].append(
                EditionSummary(
                    id=row['id'],
                    year=str(row['year']),
                    start_date=row['start_date'],
                    races=races_by_edition.get(row['id'], [])
                )
            )

        events = [
            EventSummary(
                id=row['id'],
                name=row['name'],
                city=row['city'] or '',
                subdivision_code=row['country_subdivision_code'],
                latitude=row['latitude'],
                longitude=row['longitude'],
                status=row['status'],
                created_at=row['created_at'],
                editions=editions_by_event.get(row['id'], [])
            )
            for row in event_rows
        ]
        logger.debug(f"Loaded {len(events)} events with {len(edition_rows)} editions")
        return events

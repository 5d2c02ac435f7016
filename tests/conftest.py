"""Shared fixtures for duplicate detection tests."""
import os
from datetime import date

import boto3
import pytest
from moto import mock_aws
from sqlalchemy import create_engine, insert
from sqlalchemy.pool import StaticPool

from detection.models import EditionSummary, EventSummary, RaceSummary
from storage.event_store import EventStore, edition_table, event_table, race_table

CURRENT_YEAR = date.today().year
REGION = 'us-east-1'
STATE_TABLE = 'test-agent-state'
RECOMMENDATIONS_TABLE = 'test-merge-recommendations'


@pytest.fixture(autouse=True)
def aws_credentials():
    """Fake AWS credentials so boto3 never reaches a real account."""
    env_vars = {
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_SECURITY_TOKEN': 'testing',
        'AWS_SESSION_TOKEN': 'testing',
        'AWS_DEFAULT_REGION': REGION
    }
    old_values = {key: os.environ.get(key) for key in env_vars}
    os.environ.update(env_vars)
    yield
    for key, value in old_values.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


@pytest.fixture
def dynamodb_tables():
    """Create mock state and recommendation tables."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name=REGION)

        state_table = dynamodb.create_table(
            TableName=STATE_TABLE,
            KeySchema=[
                {'AttributeName': 'agent_id', 'KeyType': 'HASH'},
                {'AttributeName': 'state_key', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'agent_id', 'AttributeType': 'S'},
                {'AttributeName': 'state_key', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        recommendations_table = dynamodb.create_table(
            TableName=RECOMMENDATIONS_TABLE,
            KeySchema=[
                {'AttributeName': 'pair_key', 'KeyType': 'HASH'},
                {'AttributeName': 'created_at', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'pair_key', 'AttributeType': 'S'},
                {'AttributeName': 'created_at', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield state_table, recommendations_table


@pytest.fixture
def engine():
    """In-memory SQLite catalog shared across connections."""
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool
    )
    EventStore(engine).create_schema()
    return engine


@pytest.fixture
def event_store(engine):
    return EventStore(engine)


@pytest.fixture
def add_event(engine):
    """
    Insert an event with its editions into the catalog.

    Editions are given as (year, start_date, [categories]) tuples.
    """
    counters = {'edition': 0, 'race': 0}

    def _add_event(
        event_id,
        name,
        city,
        subdivision_code=None,
        status='LIVE',
        latitude=None,
        longitude=None,
        created_at=None,
        editions=()
    ):
        with engine.begin() as connection:
            connection.execute(insert(event_table).values(
                id=event_id,
                name=name,
                city=city,
                country_subdivision_code=subdivision_code,
                latitude=latitude,
                longitude=longitude,
                status=status,
                created_at=created_at
            ))
            for year, start_date, categories in editions:
                counters['edition'] += 1
                edition_id = counters['edition']
                connection.execute(insert(edition_table).values(
                    id=edition_id,
                    event_id=event_id,
                    year=str(year),
                    start_date=start_date
                ))
                for category in categories:
                    counters['race'] += 1
                    connection.execute(insert(race_table).values(
                        id=counters['race'],
                        edition_id=edition_id,
                        category_level1=category
                    ))

    return _add_event


def make_event(
    event_id=1,
    name='Marathon de Paris',
    city='Paris',
    subdivision_code='75',
    latitude=None,
    longitude=None,
    status='LIVE',
    created_at=None,
    editions=None
):
    """Build an EventSummary for pure scoring tests."""
    return EventSummary(
        id=event_id,
        name=name,
        city=city,
        subdivision_code=subdivision_code,
        latitude=latitude,
        longitude=longitude,
        status=status,
        created_at=created_at,
        editions=editions if editions is not None else []
    )


def make_edition(edition_id, year, start_date=None, categories=()):
    return EditionSummary(
        id=edition_id,
        year=str(year),
        start_date=start_date,
        races=[RaceSummary(category_level1=category) for category in categories]
    )

"""Unit tests for the merge recommendation store."""
import json
from decimal import Decimal

import pytest

from conftest import RECOMMENDATIONS_TABLE, REGION
from detection.models import MergeRecommendation
from storage.recommendations import RecommendationStore

AGENT_ID = 'duplicate-detection-agent'


@pytest.fixture
def store(dynamodb_tables):
    return RecommendationStore(RECOMMENDATIONS_TABLE, region_name=REGION)


@pytest.fixture
def recommendation():
    return MergeRecommendation(
        keep_event_id=12,
        keep_event_name='Trail des Cimes',
        keep_event_city='Chamonix',
        keep_event_editions_count=4,
        duplicate_event_id=7,
        duplicate_event_name='Trail des Cimes 2025',
        duplicate_event_city='Chamonix-Mont-Blanc',
        duplicate_event_editions_count=1,
        confidence=0.912,
        justification=[{'type': 'duplicate_detection', 'message': 'test'}]
    )


def test_create_stores_pending_item(store, recommendation, dynamodb_tables):
    """Test the stored item layout."""
    recommendation_id = store.create(recommendation, AGENT_ID)

    _, table = dynamodb_tables
    items = table.scan()['Items']
    assert len(items) == 1
    item = items[0]
    assert item['recommendation_id'] == recommendation_id
    assert item['pair_key'] == '7-12'
    assert item['proposal_type'] == 'EVENT_MERGE'
    assert item['status'] == 'PENDING'
    assert item['agent_id'] == AGENT_ID
    assert item['event_id'] == '12'
    assert item['confidence'] == Decimal('0.912')

    changes = json.loads(item['changes'])
    assert changes['merge']['keepEventId'] == 12
    assert changes['merge']['duplicateEventId'] == 7
    assert changes['merge']['newEventName'] is None
    assert changes['merge']['copyMissingEditions'] is True
    assert json.loads(item['source_metadata'])['type'] == 'INTERNAL_ANALYSIS'


def test_exists_for_pair_in_either_order(store, recommendation):
    """Test pair lookup does not depend on which event is kept."""
    assert store.exists_for_pair(12, 7) is False

    store.create(recommendation, AGENT_ID)

    assert store.exists_for_pair(12, 7) is True
    assert store.exists_for_pair(7, 12) is True
    assert store.exists_for_pair(7, 13) is False


@pytest.mark.parametrize("status,expected", [
    ('PENDING', True),
    ('APPROVED', True),
    ('REJECTED', False),
    ('APPLIED', False),
])
def test_exists_for_pair_only_counts_active(store, dynamodb_tables, status, expected):
    """Test only pending and approved recommendations block a new one."""
    _, table = dynamodb_tables
    table.put_item(Item={
        'pair_key': '7-12',
        'created_at': '2026-01-01T00:00:00+00:00',
        'proposal_type': 'EVENT_MERGE',
        'status': status
    })

    assert store.exists_for_pair(7, 12) is expected


def test_exists_for_pair_ignores_other_proposal_types(store, dynamodb_tables):
    _, table = dynamodb_tables
    table.put_item(Item={
        'pair_key': '7-12',
        'created_at': '2026-01-01T00:00:00+00:00',
        'proposal_type': 'EVENT_UPDATE',
        'status': 'PENDING'
    })

    assert store.exists_for_pair(7, 12) is False


def test_list_for_pair(store, recommendation):
    """Test listing returns decoded recommendations."""
    store.create(recommendation, AGENT_ID)

    listed = store.list_for_pair(12, 7)

    assert len(listed) == 1
    assert listed[0]['keep_event_id'] == 12
    assert listed[0]['duplicate_event_id'] == 7
    assert listed[0]['confidence'] == pytest.approx(0.912)
    assert listed[0]['status'] == 'PENDING'
    assert listed[0]['justification'][0]['type'] == 'duplicate_detection'
    assert store.list_for_pair(1, 2) == []

"""DynamoDB sink for merge recommendations awaiting human review."""
import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from detection.models import MergeRecommendation, get_pair_key

logger = logging.getLogger(__name__)

PROPOSAL_TYPE = 'EVENT_MERGE'
STATUS_PENDING = 'PENDING'
STATUS_APPROVED = 'APPROVED'
ACTIVE_STATUSES = (STATUS_PENDING, STATUS_APPROVED)


class RecommendationStore:
    """
    Merge recommendations keyed by unordered event pair.

    Items use ``pair_key`` as hash key and ``created_at`` as range key, so
    every recommendation ever made for a pair can be found with one query
    whichever event was chosen to be kept.
    """

    def __init__(self, table_name: str, region_name: Optional[str] = None):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the DynamoDB recommendations table
            region_name: AWS region (default: from environment)
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized RecommendationStore for table: {table_name}")

    def exists_for_pair(self, event_id1: int, event_id2: int) -> bool:
        """
        Check for a pending or approved merge recommendation for a pair.

        Args:
            event_id1: One event id of the pair
            event_id2: The other event id, in any order

        Returns:
            True if an active recommendation already exists
        """
        pair_key = get_pair_key(event_id1, event_id2)
        try:
            response = self.table.query(
                KeyConditionExpression=Key('pair_key').eq(pair_key),
                FilterExpression=(
                    Attr('proposal_type').eq(PROPOSAL_TYPE) &
                    (Attr('status').eq(STATUS_PENDING) | Attr('status').eq(STATUS_APPROVED))
                )
            )
        except ClientError as e:
            logger.error(f"Error querying recommendations for pair {pair_key}: {e}")
            raise

        return bool(response.get('Items'))

    def list_for_pair(self, event_id1: int, event_id2: int) -> List[Dict[str, Any]]:
        """Return every recommendation recorded for a pair, oldest first."""
        pair_key = get_pair_key(event_id1, event_id2)
        response = self.table.query(KeyConditionExpression=Key('pair_key').eq(pair_key))
        items = response.get('Items', [])

        while 'LastEvaluatedKey' in response:
            response = self.table.query(
                KeyConditionExpression=Key('pair_key').eq(pair_key),
                ExclusiveStartKey=response['LastEvaluatedKey']
            )
            items.extend(response.get('Items', []))

        return [self._item_to_dict(item) for item in items]

    def create(self, recommendation: MergeRecommendation, agent_id: str) -> str:
        """
        Store a new pending merge recommendation.

        Args:
            recommendation: Recommendation to store
            agent_id: Detection agent emitting it

        Returns:
            Generated recommendation id

        Raises:
            ClientError: If the item cannot be written
        """
        recommendation_id = str(uuid.uuid4())
        item = self._recommendation_to_item(recommendation, agent_id, recommendation_id)

        try:
            self.table.put_item(Item=item)
        except ClientError as e:
            logger.error(
                f"Error writing recommendation for pair {item['pair_key']}: {e}"
            )
            raise

        logger.info(
            f"Stored {PROPOSAL_TYPE} recommendation {recommendation_id}: keep "
            f"{recommendation.keep_event_id}, retire {recommendation.duplicate_event_id}"
        )
        return recommendation_id

    def _recommendation_to_item(
        self,
        recommendation: MergeRecommendation,
        agent_id: str,
        recommendation_id: str
    ) -> dict:
        """
        Convert a MergeRecommendation to a DynamoDB item.

        Nested payloads are stored as JSON strings; DynamoDB does not accept
        Python floats so the confidence is stored as a Decimal.
        """
        return {
            'pair_key': get_pair_key(
                recommendation.keep_event_id, recommendation.duplicate_event_id
            ),
            'created_at': datetime.now(timezone.utc).isoformat(),
            'recommendation_id': recommendation_id,
            'agent_id': agent_id,
            'proposal_type': PROPOSAL_TYPE,
            'status': STATUS_PENDING,
            'event_id': str(recommendation.keep_event_id),
            'event_name': recommendation.keep_event_name,
            'event_city': recommendation.keep_event_city,
            'keep_event_id': recommendation.keep_event_id,
            'duplicate_event_id': recommendation.duplicate_event_id,
            'confidence': Decimal(str(recommendation.confidence)),
            'changes': json.dumps(recommendation.changes()),
            'justification': json.dumps(recommendation.justification),
            'source_metadata': json.dumps({
                'type': 'INTERNAL_ANALYSIS',
                'extractedAt': datetime.now(timezone.utc).isoformat(),
                'extra': {'agentType': 'DUPLICATE_DETECTION'}
            })
        }

    def _item_to_dict(self, item: dict) -> Dict[str, Any]:
        return {
            'recommendation_id': item['recommendation_id'],
            'agent_id': item.get('agent_id'),
            'status': item['status'],
            'created_at': item['created_at'],
            'keep_event_id': int(item['keep_event_id']),
            'duplicate_event_id': int(item['duplicate_event_id']),
            'confidence': float(item['confidence']),
            'changes': json.loads(item['changes']),
            'justification': json.loads(item['justification'])
        }

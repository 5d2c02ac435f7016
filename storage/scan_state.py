"""DynamoDB persistence of the detection sweep progress."""
import json
import logging
import time
from dataclasses import replace
from decimal import Decimal
from typing import Dict, Optional

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from detection.models import PairRecord, ScanProgress

logger = logging.getLogger(__name__)

PAIR_PREFIX = 'pair#'


class ScanStateStore:
    """
    Key-value state of detection agents.

    Items are keyed by ``agent_id`` (hash) and ``state_key`` (range). The
    cursor and counters live in one item whose value is a JSON string; every
    analyzed pair is its own item under ``pair#<pair_key>`` so the verdict
    cache can grow past the DynamoDB item size limit.
    """

    def __init__(
        self,
        table_name: str,
        state_key: str = 'progress',
        region_name: Optional[str] = None
    ):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the DynamoDB state table
            state_key: Name of the state item for each agent
            region_name: AWS region (default: from environment)
        """
        self.table_name = table_name
        self.state_key = state_key
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        # Pair items as last read or written, per agent
        self._stored_pairs: Dict[str, Dict[str, PairRecord]] = {}
        logger.info(f"Initialized ScanStateStore for table: {table_name}")

    def load(self, agent_id: str) -> ScanProgress:
        """
        Load the progress of an agent.

        Args:
            agent_id: Detection agent identity

        Returns:
            Persisted ScanProgress, or an empty one on first run

        Raises:
            ClientError: If DynamoDB cannot be read
        """
        try:
            response = self.table.get_item(
                Key={'agent_id': agent_id, 'state_key': self.state_key}
            )
            stored_pairs = self._query_pairs(agent_id)
        except ClientError as e:
            logger.error(f"Error reading scan state for {agent_id}: {e}")
            raise

        self._stored_pairs[agent_id] = stored_pairs

        item = response.get('Item')
        if item:
            progress = ScanProgress.from_dict(json.loads(item['value']))
        else:
            logger.info(f"No scan state for {agent_id}, starting a new sweep")
            progress = ScanProgress()

        progress.analyzed_pairs.update(
            (key, replace(record)) for key, record in stored_pairs.items()
        )
        logger.info(
            f"Loaded scan state for {agent_id}: cursor at event "
            f"{progress.last_processed_event_id}, "
            f"{len(progress.analyzed_pairs)} analyzed pairs"
        )
        return progress

    def save(self, agent_id: str, progress: ScanProgress) -> None:
        """
        Persist the progress of an agent, replacing the previous value.

        Changed pair verdicts are written and purged ones deleted before the
        cursor item, so a failed save never advances the cursor.

        Raises:
            ClientError: If DynamoDB cannot be written
        """
        value = progress.to_dict()
        del value['analyzedPairs']
        item = {
            'agent_id': agent_id,
            'state_key': self.state_key,
            'value': json.dumps(value),
            'updated_at': int(time.time())
        }

        try:
            stored_pairs = self._stored_pairs.get(agent_id)
            if stored_pairs is None:
                stored_pairs = self._query_pairs(agent_id)

            changed = {
                key: record for key, record in progress.analyzed_pairs.items()
                if stored_pairs.get(key) != record
            }
            removed = [key for key in stored_pairs if key not in progress.analyzed_pairs]

            with self.table.batch_writer() as writer:
                for key, record in changed.items():
                    writer.put_item(Item=self._pair_to_item(agent_id, key, record))
                for key in removed:
                    writer.delete_item(
                        Key={'agent_id': agent_id, 'state_key': PAIR_PREFIX + key}
                    )

            self.table.put_item(Item=item)
        except ClientError as e:
            logger.error(f"Error saving scan state for {agent_id}: {e}")
            raise

        self._stored_pairs[agent_id] = {
            key: replace(record) for key, record in progress.analyzed_pairs.items()
        }
        logger.info(
            f"Saved scan state for {agent_id}: cursor at event "
            f"{progress.last_processed_event_id}, "
            f"{len(changed)} pairs written, {len(removed)} pairs deleted"
        )

    def delete(self, agent_id: str) -> None:
        """Forget the progress of an agent so the next run starts a new sweep."""
        try:
            pair_keys = list(self._query_pairs(agent_id))
            with self.table.batch_writer() as writer:
                for key in pair_keys:
                    writer.delete_item(
                        Key={'agent_id': agent_id, 'state_key': PAIR_PREFIX + key}
                    )
            self.table.delete_item(
                Key={'agent_id': agent_id, 'state_key': self.state_key}
            )
        except ClientError as e:
            logger.error(f"Error deleting scan state for {agent_id}: {e}")
            raise

        self._stored_pairs.pop(agent_id, None)
        logger.info(f"Deleted scan state for {agent_id} and {len(pair_keys)} analyzed pairs")

    def _query_pairs(self, agent_id: str) -> Dict[str, PairRecord]:
        """Read every pair verdict item of an agent, following pagination."""
        condition = (
            Key('agent_id').eq(agent_id) &
            Key('state_key').begins_with(PAIR_PREFIX)
        )
        response = self.table.query(KeyConditionExpression=condition)
        items = response.get('Items', [])

        while 'LastEvaluatedKey' in response:
            response = self.table.query(
                KeyConditionExpression=condition,
                ExclusiveStartKey=response['LastEvaluatedKey']
            )
            items.extend(response.get('Items', []))

        return {
            item['state_key'][len(PAIR_PREFIX):]: PairRecord(
                analyzed_at=item['analyzed_at'],
                score=float(item['score']),
                proposal_created=bool(item.get('proposal_created', False))
            )
            for item in items
        }

    def _pair_to_item(self, agent_id: str, pair_key: str, record: PairRecord) -> dict:
        # DynamoDB does not accept Python floats
        return {
            'agent_id': agent_id,
            'state_key': PAIR_PREFIX + pair_key,
            'analyzed_at': record.analyzed_at,
            'score': Decimal(str(record.score)),
            'proposal_created': record.proposal_created
        }

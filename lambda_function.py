"""AWS Lambda handler for scheduled duplicate event detection."""
import json
import logging
import os
import time
from dataclasses import replace
from typing import Dict, Any

from sqlalchemy import create_engine

from detection.candidates import CandidateRetriever
from detection.config import ConfigError, DetectionConfig
from detection.detector import DuplicateDetector
from search.meilisearch_client import MeilisearchClient
from storage.event_store import EventStore
from storage.recommendations import RecommendationStore
from storage.scan_state import ScanStateStore

# Attributes every LogRecord has; anything else came from ``extra``
_RESERVED_RECORD_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {
    'message', 'asctime'
}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including ``extra`` fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in _RESERVED_RECORD_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def build_detector(config: DetectionConfig) -> DuplicateDetector:
    """Wire the detector and its collaborators from configuration."""
    event_store = EventStore(create_engine(config.database_url))

    search_client = None
    if config.search_index_configured:
        search_client = MeilisearchClient(
            url=config.meilisearch_url,
            api_key=config.meilisearch_api_key,
            index_name=config.meilisearch_index,
            timeout=config.search_timeout_seconds
        )

    return DuplicateDetector(
        event_store=event_store,
        retriever=CandidateRetriever.build(event_store, search_client, config.candidates),
        recommendations=RecommendationStore(config.recommendations_table_name),
        state_store=ScanStateStore(config.state_table_name),
        config=config
    )


def _error_response(message: str, error: Exception, duration: float) -> Dict[str, Any]:
    return {
        'statusCode': 500,
        'body': json.dumps({
            'message': message,
            'error': str(error),
            'error_type': type(error).__name__,
            'duration_seconds': round(duration, 2)
        })
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Run one duplicate detection batch.

    Args:
        event: EventBridge event payload; ``{"dryRun": true}`` forces a dry run
        context: Lambda context object

    Returns:
        Response dict with statusCode and batch statistics
    """
    setup_logging(os.environ.get('LOG_LEVEL', 'INFO'))
    logger = logging.getLogger(__name__)
    start_time = time.time()

    try:
        config = DetectionConfig.from_env(os.environ)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}", extra={'error_type': type(e).__name__})
        return _error_response('Invalid configuration', e, time.time() - start_time)

    if (event or {}).get('dryRun'):
        config = replace(config, dry_run=True)

    logger.info(
        "Lambda execution started",
        extra={
            'agent_id': config.agent_id,
            'batch_size': config.batch_size,
            'search_index': config.search_index_configured,
            'dry_run': config.dry_run
        }
    )

    try:
        detector = build_detector(config)
        result = detector.run()
    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Duplicate detection failed: {e}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _error_response('Duplicate detection failed', e, duration)

    duration = time.time() - start_time
    logger.info(
        "Lambda execution completed",
        extra={
            'success': result.success,
            'duration_seconds': round(duration, 2),
            'events_processed': result.events_processed,
            'duplicates_found': result.duplicates_found,
            'recommendations_created': result.recommendations_created,
            'errors': result.errors
        }
    )

    return {
        'statusCode': 200,
        'body': json.dumps({
            'message': result.message,
            'success': result.success,
            'statistics': {
                'events_processed': result.events_processed,
                'duplicates_found': result.duplicates_found,
                'recommendations_created': result.recommendations_created,
                'last_processed_event_id': result.last_processed_event_id,
                'sweep_complete': result.sweep_complete,
                'dry_run': result.dry_run,
                'duration_seconds': round(duration, 2)
            },
            'errors': result.errors
        })
    }

"""Integration tests for Lambda handler."""
import json
import logging
import os
from unittest.mock import Mock, patch

import pytest

from detection.config import DetectionConfig
from detection.models import BatchResult
from lambda_function import JsonFormatter, build_detector, lambda_handler, setup_logging


@pytest.fixture
def mock_env():
    """Set up environment variables for testing."""
    env_vars = {
        'AGENT_ID': 'test-agent',
        'STATE_TABLE_NAME': 'test-agent-state',
        'RECOMMENDATIONS_TABLE_NAME': 'test-merge-recommendations',
        'LOG_LEVEL': 'INFO',
        'BATCH_SIZE': '50'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def mock_context():
    """Create a mock Lambda context."""
    context = Mock()
    context.function_name = 'test-function'
    context.memory_limit_in_mb = 512
    context.invoked_function_arn = 'arn:aws:lambda:us-east-1:123456789012:function:test-function'
    context.aws_request_id = 'test-request-id'
    return context


@pytest.fixture
def batch_result():
    return BatchResult(
        success=True,
        message='Processed 50 events',
        events_processed=50,
        duplicates_found=2,
        recommendations_created=1,
        last_processed_event_id=1234,
        duration_seconds=1.5
    )


class TestLambdaHandler:
    """Test cases for Lambda handler."""

    @patch('lambda_function.build_detector')
    def test_successful_run(self, mock_build_detector, mock_env, mock_context, batch_result):
        """Test successful detection batch."""
        mock_build_detector.return_value.run.return_value = batch_result

        response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['message'] == 'Processed 50 events'
        assert body['success'] is True
        assert body['statistics']['events_processed'] == 50
        assert body['statistics']['duplicates_found'] == 2
        assert body['statistics']['recommendations_created'] == 1
        assert body['statistics']['last_processed_event_id'] == 1234
        assert body['statistics']['sweep_complete'] is False
        assert body['statistics']['dry_run'] is False
        assert 'duration_seconds' in body['statistics']
        assert body['errors'] == []

        config = mock_build_detector.call_args[0][0]
        assert config.agent_id == 'test-agent'
        assert config.batch_size == 50

    @patch('lambda_function.build_detector')
    def test_partial_failure_still_succeeds(self, mock_build_detector, mock_env, mock_context):
        """Test per-event errors are reported in a 200 response."""
        mock_build_detector.return_value.run.return_value = BatchResult(
            success=False,
            message='Completed with 1 errors',
            events_processed=49,
            duplicates_found=0,
            recommendations_created=0,
            last_processed_event_id=1234,
            errors=['Event 17: malformed event']
        )

        response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['success'] is False
        assert body['errors'] == ['Event 17: malformed event']

    @patch('lambda_function.build_detector')
    def test_detection_failure(self, mock_build_detector, mock_env, mock_context):
        """Test error handling for fatal failures."""
        mock_build_detector.return_value.run.side_effect = Exception('Database unavailable')

        response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 500
        body = json.loads(response['body'])
        assert body['message'] == 'Duplicate detection failed'
        assert 'Database unavailable' in body['error']
        assert body['error_type'] == 'Exception'
        assert 'duration_seconds' in body

    @patch('lambda_function.build_detector')
    def test_invalid_configuration(self, mock_build_detector, mock_env, mock_context):
        """Test malformed settings are rejected before any work."""
        with patch.dict(os.environ, {'BATCH_SIZE': 'many'}):
            response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 500
        body = json.loads(response['body'])
        assert body['message'] == 'Invalid configuration'
        assert body['error_type'] == 'ConfigError'
        mock_build_detector.assert_not_called()

    @patch('lambda_function.build_detector')
    def test_dry_run_flag_from_event(self, mock_build_detector, mock_env, mock_context, batch_result):
        """Test the invocation payload can force a dry run."""
        mock_build_detector.return_value.run.return_value = batch_result

        lambda_handler({'dryRun': True}, mock_context)

        config = mock_build_detector.call_args[0][0]
        assert config.dry_run is True

    @patch('lambda_function.build_detector')
    @patch('lambda_function.setup_logging')
    def test_logging_output(
        self,
        mock_setup_logging,
        mock_build_detector,
        mock_env,
        mock_context,
        batch_result,
        caplog
    ):
        """Test that logging output is generated correctly."""
        mock_build_detector.return_value.run.return_value = batch_result

        with caplog.at_level(logging.INFO, logger='lambda_function'):
            response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 200
        log_messages = [record.message for record in caplog.records]
        assert any('Lambda execution started' in msg for msg in log_messages)
        assert any('Lambda execution completed' in msg for msg in log_messages)


class TestBuildDetector:
    """Test cases for dependency wiring."""

    @patch('lambda_function.ScanStateStore')
    @patch('lambda_function.RecommendationStore')
    def test_search_index_only_when_configured(self, mock_recommendations, mock_state, mock_env):
        without_index = build_detector(DetectionConfig())
        with_index = build_detector(DetectionConfig(
            meilisearch_url='http://search.local',
            meilisearch_api_key='key'
        ))

        assert [s.name for s in without_index.retriever.sources] == ['sql']
        assert [s.name for s in with_index.retriever.sources] == ['search-index', 'sql']
        mock_recommendations.assert_called_with('data-agents-proposals')
        mock_state.assert_called_with('data-agents-state')


class TestSetupLogging:
    """Test cases for logging setup."""

    def test_setup_logging_default_level(self):
        """Test logging setup with default INFO level."""
        setup_logging()
        assert logging.getLogger().level == logging.INFO

    def test_setup_logging_debug_level(self):
        """Test logging setup with DEBUG level."""
        setup_logging('DEBUG')
        assert logging.getLogger().level == logging.DEBUG

    def test_setup_logging_invalid_level(self):
        """Test unknown levels fall back to INFO."""
        setup_logging('CHATTY')
        assert logging.getLogger().level == logging.INFO


class TestJsonFormatter:
    """Test cases for structured log output."""

    def test_includes_extra_fields(self):
        record = logging.LogRecord(
            'detection.detector', logging.INFO, __file__, 10,
            'Duplicate detected', (), None
        )
        record.pair_key = '1-2'
        record.score = 0.91

        output = json.loads(JsonFormatter().format(record))

        assert output['message'] == 'Duplicate detected'
        assert output['level'] == 'INFO'
        assert output['logger'] == 'detection.detector'
        assert output['pair_key'] == '1-2'
        assert output['score'] == 0.91
        assert 'args' not in output
        assert 'exception' not in output

"""Integration tests for Lambda handler."""
import json
import logging
import os
from unittest.mock import Mock, patch

import pytest

from lambda_function import JsonFormatter, lambda_handler, load_config, setup_logging
from processor.exceptions import AuthExpiredError, SnapshotSaveError, TransportError
from processor.models import DEFAULT_FIELD_MAPPING, CycleResult


@pytest.fixture
def mock_env():
    """Set up environment variables for testing."""
    env_vars = {
        'LOG_LEVEL': 'INFO',
        'AIRCRAFT_UUIDS': 'uuid-a, uuid-b',
        'SESSION_COOKIE': 'secret',
        'DAYS_AHEAD': '7',
        'TIMEOUT_SECONDS': '30',
        'NTFY_TOPIC': 'TestTopic',
        'TABLE_NAME': 'test-crew-lineup-snapshots',
        'TRACKED_AIRCRAFT': 'N84UP,N717KV',
    }
    with patch.dict(os.environ, env_vars, clear=True):
        yield env_vars


@pytest.fixture
def mock_context():
    """Create a mock Lambda context."""
    context = Mock()
    context.function_name = 'test-function'
    context.aws_request_id = 'test-request-id'
    return context


@pytest.fixture
def cycle_result():
    return CycleResult(
        raw_records=12,
        flights_normalized=12,
        flights_relevant=5,
        flights_upcoming=4,
        new_trips=1,
        crew_changes=2,
        notifications_sent=3
    )


@pytest.fixture
def components():
    """Patch every collaborator the handler builds."""
    with patch('lambda_function.ScheduleClient') as client_class, \
            patch('lambda_function.NtfyNotifier') as notifier_class, \
            patch('lambda_function.DynamoDBSnapshotStore') as store_class, \
            patch('lambda_function.FileSnapshotStore') as file_store_class, \
            patch('lambda_function.ChangeMonitor') as monitor_class:
        yield {
            'client': client_class,
            'notifier': notifier_class,
            'store': store_class,
            'file_store': file_store_class,
            'monitor': monitor_class,
        }


class TestLambdaHandler:
    """Test cases for Lambda handler."""

    def test_successful_check(self, components, mock_env, mock_context, cycle_result):
        """Test successful end-to-end check."""
        components['monitor'].return_value.run_cycle.return_value = cycle_result

        response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['message'] == 'Check completed successfully'
        assert body['statistics']['raw_events_fetched'] == 12
        assert body['statistics']['new_trips'] == 1
        assert body['statistics']['crew_changes'] == 2
        assert body['statistics']['notifications_sent'] == 3
        assert body['errors'] == []
        assert 'duration_seconds' in body

        client_kwargs = components['client'].call_args.kwargs
        assert client_kwargs['aircraft_uuids'] == ['uuid-a', 'uuid-b']
        assert client_kwargs['session_cookie'] == 'secret'
        assert client_kwargs['days_ahead'] == 7
        components['notifier'].assert_called_once_with(topic='TestTopic', server='https://ntfy.sh')
        components['store'].assert_called_once_with(
            table_name='test-crew-lineup-snapshots',
            snapshot_name='flights'
        )
        config = components['monitor'].call_args[0][3]
        assert config.tracked_aircraft == frozenset({'N84UP', 'N717KV'})

    def test_baseline_run(self, components, mock_env, mock_context):
        """Test the first-run response message."""
        components['monitor'].return_value.run_cycle.return_value = CycleResult(baseline=True)

        response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 200
        assert json.loads(response['body'])['message'] == 'Baseline saved'

    def test_file_backend(self, components, mock_env, mock_context):
        """Test selecting the local file snapshot store."""
        components['monitor'].return_value.run_cycle.return_value = CycleResult()
        with patch.dict(os.environ, {'SNAPSHOT_BACKEND': 'file', 'SNAPSHOT_PATH': '/tmp/f.json'}):
            response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 200
        components['file_store'].assert_called_once_with('/tmp/f.json')
        components['store'].assert_not_called()

    def test_session_expired(self, components, mock_env, mock_context):
        """Test the response for an expired portal session."""
        components['monitor'].return_value.run_cycle.side_effect = AuthExpiredError('login page')

        response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 401
        body = json.loads(response['body'])
        assert body['message'] == 'Session expired'
        assert body['error_type'] == 'AuthExpiredError'

    def test_schedule_fetch_failure(self, components, mock_env, mock_context):
        """Test error handling for schedule fetch failures."""
        components['monitor'].return_value.run_cycle.side_effect = TransportError('Network error')

        response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 500
        body = json.loads(response['body'])
        assert body['message'] == 'Failed to fetch schedule'
        assert 'Network error' in body['error']
        assert body['error_type'] == 'TransportError'
        assert 'duration_seconds' in body

    def test_snapshot_save_failure(self, components, mock_env, mock_context):
        """Test error handling for snapshot save failures."""
        components['monitor'].return_value.run_cycle.side_effect = SnapshotSaveError('DynamoDB error')

        response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 500
        body = json.loads(response['body'])
        assert body['message'] == 'Failed to save snapshot'
        assert 'DynamoDB error' in body['error']
        assert 'note' in body

    def test_invalid_configuration(self, components, mock_env, mock_context):
        """Test that bad configuration fails the check."""
        with patch.dict(os.environ, {'DAYS_AHEAD': 'seven'}):
            response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 500
        body = json.loads(response['body'])
        assert body['message'] == 'Check failed'
        assert body['error_type'] == 'ValueError'
        components['monitor'].assert_not_called()

    @patch('lambda_function.setup_logging')
    def test_logging_output(self, mock_setup_logging, components, mock_env, mock_context,
                            cycle_result, caplog):
        """Test that logging output is generated correctly."""
        components['monitor'].return_value.run_cycle.return_value = cycle_result

        with caplog.at_level(logging.INFO, logger='lambda_function'):
            response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 200
        log_messages = [record.message for record in caplog.records]
        assert any('Lambda execution started' in msg for msg in log_messages)
        assert any('Running schedule check' in msg for msg in log_messages)
        assert any('Lambda execution completed successfully' in msg for msg in log_messages)


class TestLoadConfig:
    """Test cases for environment configuration."""

    def test_defaults(self):
        """Test configuration with no variables set."""
        config = load_config({})

        assert config.home_base is None
        assert config.tracked_aircraft is None
        assert config.event_predicate.allowed_groups is None
        assert config.event_predicate.excluded_type_keywords == ()
        assert config.event_predicate.require_actual_flight is False
        assert config.time_zone == 'America/New_York'
        assert config.suppress_known_trips is True
        assert config.field_mapping == DEFAULT_FIELD_MAPPING

    def test_all_options(self):
        """Test configuration with every option set."""
        config = load_config({
            'HOME_BASE': ' TEB ',
            'TRACKED_AIRCRAFT': 'N84UP, N717KV,',
            'EVENT_GROUPS': 'flight',
            'EXCLUDED_EVENT_TYPES': 'maintenance,away base',
            'REQUIRE_ACTUAL_FLIGHT': 'true',
            'SUPPRESS_KNOWN_TRIPS': 'false',
            'TIME_ZONE': 'America/Chicago',
            'FIELD_MAPPING': '{"trip_key": ["extendedProps.trip_id"], "aircraft": "tail"}',
        })

        assert config.home_base == 'TEB'
        assert config.tracked_aircraft == frozenset({'N84UP', 'N717KV'})
        assert config.event_predicate.allowed_groups == frozenset({'flight'})
        assert config.event_predicate.excluded_type_keywords == ('maintenance', 'away base')
        assert config.event_predicate.require_actual_flight is True
        assert config.suppress_known_trips is False
        assert config.time_zone == 'America/Chicago'
        assert config.field_mapping['trip_key'] == ('extendedProps.trip_id',)
        assert config.field_mapping['aircraft'] == ('tail',)
        assert config.field_mapping['origin'] == DEFAULT_FIELD_MAPPING['origin']

    def test_invalid_field_mapping(self):
        """Test that malformed field mappings are rejected."""
        with pytest.raises(ValueError):
            load_config({'FIELD_MAPPING': 'not json'})

        with pytest.raises(ValueError):
            load_config({'FIELD_MAPPING': '["a", "b"]'})

        with pytest.raises(ValueError):
            load_config({'FIELD_MAPPING': '{"trip_key": [1, 2]}'})


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

    def test_json_formatter(self):
        """Test that log records are rendered as JSON."""
        record = logging.LogRecord(
            'processor.change_monitor', logging.WARNING, __file__, 1,
            'Missing aircraft: %s', ('N717KV',), None
        )

        data = json.loads(JsonFormatter().format(record))

        assert data['level'] == 'WARNING'
        assert data['message'] == 'Missing aircraft: N717KV'
        assert data['logger'] == 'processor.change_monitor'
        assert 'timestamp' in data

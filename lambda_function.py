"""AWS Lambda handler for the Crew Lineup schedule monitor."""
import json
import logging
import os
import time
from typing import Any, Dict, List, Mapping, Optional

from notifier.ntfy_notifier import NtfyNotifier
from processor.change_monitor import ChangeMonitor
from processor.exceptions import (
    AuthExpiredError,
    ScheduleParseError,
    SnapshotSaveError,
    TransportError,
)
from processor.models import DEFAULT_FIELD_MAPPING, EventPredicate, MonitorConfig
from source.schedule_client import ScheduleClient
from storage.dynamodb_snapshot_store import DynamoDBSnapshotStore
from storage.file_snapshot_store import FileSnapshotStore


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False)


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


def _split(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(',') if part.strip()]


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _field_mapping(value: Optional[str]) -> Dict[str, tuple]:
    mapping = dict(DEFAULT_FIELD_MAPPING)
    if not value:
        return mapping

    overrides = json.loads(value)
    if not isinstance(overrides, dict):
        raise ValueError("FIELD_MAPPING must be a JSON object")

    for name, paths in overrides.items():
        if isinstance(paths, str):
            paths = [paths]
        if not isinstance(paths, list) or not all(isinstance(p, str) for p in paths):
            raise ValueError(f"FIELD_MAPPING entry '{name}' must be a list of paths")
        mapping[name] = tuple(paths)
    return mapping


def load_config(environ: Mapping[str, str]) -> MonitorConfig:
    """
    Build the monitor configuration from environment variables.

    Args:
        environ: Environment mapping (usually os.environ)

    Returns:
        MonitorConfig

    Raises:
        ValueError: If a variable holds an invalid value
    """
    tracked = _split(environ.get('TRACKED_AIRCRAFT'))
    groups = _split(environ.get('EVENT_GROUPS'))

    predicate = EventPredicate(
        allowed_groups=frozenset(groups) if groups else None,
        excluded_type_keywords=tuple(_split(environ.get('EXCLUDED_EVENT_TYPES'))),
        require_actual_flight=_flag(environ.get('REQUIRE_ACTUAL_FLIGHT'), False)
    )

    return MonitorConfig(
        home_base=environ.get('HOME_BASE', '').strip() or None,
        tracked_aircraft=frozenset(tracked) if tracked else None,
        event_predicate=predicate,
        time_zone=environ.get('TIME_ZONE', 'America/New_York'),
        suppress_known_trips=_flag(environ.get('SUPPRESS_KNOWN_TRIPS'), True),
        field_mapping=_field_mapping(environ.get('FIELD_MAPPING'))
    )


def _build_store(environ: Mapping[str, str]):
    backend = environ.get('SNAPSHOT_BACKEND', 'dynamodb').lower()
    if backend == 'file':
        return FileSnapshotStore(environ.get('SNAPSHOT_PATH', 'flights-data.json'))
    if backend == 'dynamodb':
        return DynamoDBSnapshotStore(
            table_name=environ.get('TABLE_NAME', 'crew-lineup-snapshots'),
            snapshot_name=environ.get('SNAPSHOT_NAME', 'flights')
        )
    raise ValueError(f"Unknown SNAPSHOT_BACKEND: {backend}")


def _response(status_code: int, body: Dict[str, Any], start_time: float) -> Dict[str, Any]:
    body['duration_seconds'] = round(time.time() - start_time, 2)
    return {
        'statusCode': status_code,
        'body': json.dumps(body, ensure_ascii=False)
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for the schedule monitor.

    Args:
        event: EventBridge event payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and summary statistics
    """
    environ = os.environ
    log_level = environ.get('LOG_LEVEL', 'INFO')

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()

    try:
        config = load_config(environ)
        days_ahead = int(environ.get('DAYS_AHEAD', '7'))

        logger.info(
            "Lambda execution started",
            extra={
                'days_ahead': days_ahead,
                'tracked_aircraft': sorted(config.tracked_aircraft or []),
                'snapshot_backend': environ.get('SNAPSHOT_BACKEND', 'dynamodb')
            }
        )

        source = ScheduleClient(
            aircraft_uuids=_split(environ.get('AIRCRAFT_UUIDS')),
            session_cookie=environ.get('SESSION_COOKIE', ''),
            base_url=environ.get('SCHEDULE_URL') or None,
            time_zone=config.time_zone,
            days_ahead=days_ahead,
            timeout=int(environ.get('TIMEOUT_SECONDS', '30')),
            max_retries=int(environ.get('MAX_RETRIES', '3')),
            retry_delay=float(environ.get('RETRY_DELAY_SECONDS', '5'))
        )
        notifier = NtfyNotifier(
            topic=environ.get('NTFY_TOPIC', 'CrewLineup'),
            server=environ.get('NTFY_SERVER', 'https://ntfy.sh')
        )
        store = _build_store(environ)
        monitor = ChangeMonitor(source, store, notifier, config)

        try:
            logger.info("Running schedule check")
            result = monitor.run_cycle()

        except AuthExpiredError as e:
            logger.error(f"Session expired: {str(e)}")
            return _response(401, {
                'message': 'Session expired',
                'error': str(e),
                'error_type': type(e).__name__
            }, start_time)

        except SnapshotSaveError as e:
            logger.error(
                f"Failed to save snapshot: {str(e)}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            return _response(500, {
                'message': 'Failed to save snapshot',
                'error': str(e),
                'error_type': type(e).__name__,
                'note': 'Notifications for this cycle may already have been sent'
            }, start_time)

        except (TransportError, ScheduleParseError) as e:
            logger.error(
                f"Failed to fetch schedule: {str(e)}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            return _response(500, {
                'message': 'Failed to fetch schedule',
                'error': str(e),
                'error_type': type(e).__name__
            }, start_time)

        logger.info(
            "Lambda execution completed successfully",
            extra={
                'new_trips': result.new_trips,
                'crew_changes': result.crew_changes,
                'notifications_sent': result.notifications_sent,
                'errors': result.errors
            }
        )

        return _response(200, {
            'message': 'Baseline saved' if result.baseline else 'Check completed successfully',
            'statistics': {
                'raw_events_fetched': result.raw_records,
                'flights_normalized': result.flights_normalized,
                'flights_relevant': result.flights_relevant,
                'flights_upcoming': result.flights_upcoming,
                'new_trips': result.new_trips,
                'crew_changes': result.crew_changes,
                'notifications_sent': result.notifications_sent,
                'notifications_failed': result.notifications_failed
            },
            'errors': result.errors
        }, start_time)

    except Exception as e:
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _response(500, {
            'message': 'Check failed',
            'error': str(e),
            'error_type': type(e).__name__
        }, start_time)

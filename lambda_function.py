"""AWS Lambda handler for market opening-hours enrichment."""
import json
import logging
import os
import time
from dataclasses import asdict
from datetime import datetime
from typing import Dict, Any

from processor.classifier import ClassifierConfig
from processor.market_processor import MarketProcessor
from processor.materializer import clamp_window_days, window_bounds
from processor.models import EnrichmentSummary, Verdict
from storage.dynamodb_manager import DynamoDBManager

MIN_LIMIT = 1
MAX_LIMIT = 500
FALSE_VALUES = ('0', 'false', 'no', 'off')
FALLBACK_SOURCE = 'google'

# Attributes every LogRecord carries; anything else came in through `extra`
RESERVED_RECORD_ATTRS = frozenset(
    logging.LogRecord('', logging.INFO, '', 0, '', (), None).__dict__
) | {'message', 'asctime'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any `extra` fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in RESERVED_RECORD_ATTRS and key not in log_data:
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


def clamp_limit(limit: int) -> int:
    return min(max(limit, MIN_LIMIT), MAX_LIMIT)


def _int_setting(event: Dict[str, Any], key: str, env_name: str, default: int) -> int:
    raw = event.get(key, os.environ.get(env_name, default))
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _bool_setting(
    event: Dict[str, Any], key: str, env_name: str, default: bool
) -> bool:
    raw = event.get(key, os.environ.get(env_name, default))
    if isinstance(raw, bool):
        return raw
    if raw is None:
        return default
    return str(raw).strip().lower() not in FALSE_VALUES


def load_config(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Read run configuration from the environment and the invocation payload.

    Payload keys (windowDays, limit, weekendOnly, openDayThreshold) take
    precedence over environment variables. Out-of-range values are clamped.

    Args:
        event: Invocation payload, may be empty

    Returns:
        Configuration dictionary
    """
    event = event or {}
    return {
        'places_table_name': os.environ.get('PLACES_TABLE_NAME', 'markets'),
        'events_table_name': os.environ.get('EVENTS_TABLE_NAME', 'market-events'),
        'sources_table_name': os.environ.get('SOURCES_TABLE_NAME', 'market-sources'),
        'log_level': os.environ.get('LOG_LEVEL', 'INFO'),
        'window_days': clamp_window_days(
            _int_setting(event, 'windowDays', 'WINDOW_DAYS', 30)
        ),
        'limit': clamp_limit(_int_setting(event, 'limit', 'LIMIT', 50)),
        'weekend_only': _bool_setting(event, 'weekendOnly', 'WEEKEND_ONLY', True),
        'open_day_threshold': _int_setting(
            event, 'openDayThreshold', 'OPEN_DAY_THRESHOLD', 5
        ),
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for market hours enrichment.

    Args:
        event: EventBridge event payload or manual invocation overrides
        context: Lambda context object

    Returns:
        Response dict with statusCode and summary statistics
    """
    config = load_config(event)

    setup_logging(config['log_level'])
    logger = logging.getLogger(__name__)

    start_time = time.time()
    logger.info(
        "Lambda execution started",
        extra={
            'window_days': config['window_days'],
            'limit': config['limit'],
            'weekend_only': config['weekend_only']
        }
    )

    try:
        processor = MarketProcessor(
            window_days=config['window_days'],
            weekend_only=config['weekend_only'],
            classifier_config=ClassifierConfig(
                open_day_threshold=config['open_day_threshold']
            )
        )
        dynamodb_manager = DynamoDBManager(
            places_table_name=config['places_table_name'],
            events_table_name=config['events_table_name'],
            sources_table_name=config['sources_table_name']
        )

        try:
            logger.info("Loading market places")
            places = dynamodb_manager.get_market_places(limit=config['limit'])
            if not places:
                logger.info(
                    f"No market places found, falling back to "
                    f"{FALLBACK_SOURCE} source payloads"
                )
                places = dynamodb_manager.get_source_places(
                    source=FALLBACK_SOURCE, limit=config['limit']
                )
            logger.info(f"Loaded {len(places)} places")
        except Exception as e:
            logger.error(
                f"Failed to load places: {str(e)}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            duration = time.time() - start_time
            return {
                'statusCode': 500,
                'body': json.dumps({
                    'message': 'Failed to load places',
                    'error': str(e),
                    'error_type': type(e).__name__,
                    'duration_seconds': round(duration, 2)
                })
            }

        now = datetime.now()
        window_start, window_end = window_bounds(now, config['window_days'])

        logger.info("Classifying places and materializing occurrences")
        results = processor.process_places(places, now)

        summary = EnrichmentSummary(processed=len(places))
        for result in results:
            summary.markets_with_hours += 1
            if result.verdict is Verdict.EXCLUDED:
                summary.excluded += 1
            if result.occurrences:
                summary.markets_with_occurrences += 1
                summary.occurrences_total += len(result.occurrences)

        logger.info("Applying results to DynamoDB")
        sync_result = dynamodb_manager.apply_results(
            results, window_start, window_end
        )

        duration = time.time() - start_time
        logger.info(
            "Lambda execution completed successfully",
            extra={
                'duration_seconds': round(duration, 2),
                'events_created': sync_result.created,
                'events_deleted': sync_result.deleted,
                'stores_flagged': sync_result.stores_flagged,
                'errors': sync_result.errors
            }
        )

        statistics = asdict(summary)
        statistics.update({
            'events_created': sync_result.created,
            'events_deleted': sync_result.deleted,
            'stores_flagged': sync_result.stores_flagged,
            'duration_seconds': round(duration, 2)
        })

        return {
            'statusCode': 200,
            'body': json.dumps({
                'message': 'Enrichment completed successfully',
                'statistics': statistics,
                'errors': sync_result.errors
            })
        }

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Enrichment failed',
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }

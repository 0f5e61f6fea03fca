"""Unit tests for DynamoDB manager."""
from datetime import datetime, timedelta

import boto3
import pytest
from moto import mock_aws

from processor.materializer import GENERATION_SOURCE, materialize_occurrences
from processor.models import (
    DayRule,
    EnrichmentResult,
    Occurrence,
    TimeOfDay,
    Verdict,
)
from storage.dynamodb_manager import DynamoDBManager

NOW = datetime(2026, 10, 19, 8, 0)
WINDOW_END = NOW + timedelta(days=30)

SATURDAY_RULE = DayRule(weekday=6, start=TimeOfDay(8, 0), end=TimeOfDay(13, 0))
SUNDAY_RULE = DayRule(weekday=0, start=TimeOfDay(9, 0), end=TimeOfDay(12, 0))


@pytest.fixture
def aws_environment(monkeypatch):
    """Point boto3 at a fake region and credentials."""
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')


@pytest.fixture
def dynamodb_tables(aws_environment):
    """Create mock places, events and sources tables for testing."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')

        places = dynamodb.create_table(
            TableName='test-markets',
            KeySchema=[{'AttributeName': 'place_id', 'KeyType': 'HASH'}],
            AttributeDefinitions=[
                {'AttributeName': 'place_id', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        events = dynamodb.create_table(
            TableName='test-market-events',
            KeySchema=[{'AttributeName': 'event_id', 'KeyType': 'HASH'}],
            AttributeDefinitions=[
                {'AttributeName': 'event_id', 'AttributeType': 'S'},
                {'AttributeName': 'place_id', 'AttributeType': 'S'},
                {'AttributeName': 'start_at', 'AttributeType': 'S'}
            ],
            GlobalSecondaryIndexes=[
                {
                    'IndexName': 'place-index',
                    'KeySchema': [
                        {'AttributeName': 'place_id', 'KeyType': 'HASH'},
                        {'AttributeName': 'start_at', 'KeyType': 'RANGE'}
                    ],
                    'Projection': {'ProjectionType': 'ALL'}
                }
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        sources = dynamodb.create_table(
            TableName='test-market-sources',
            KeySchema=[{'AttributeName': 'source_id', 'KeyType': 'HASH'}],
            AttributeDefinitions=[
                {'AttributeName': 'source_id', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield {'places': places, 'events': events, 'sources': sources}


@pytest.fixture
def dynamodb_manager(dynamodb_tables):
    """Create DynamoDBManager instance with mock tables."""
    return DynamoDBManager(
        places_table_name='test-markets',
        events_table_name='test-market-events',
        sources_table_name='test-market-sources'
    )


@pytest.fixture
def market_occurrences():
    return materialize_occurrences(
        'place-1', [SATURDAY_RULE, SUNDAY_RULE], NOW, 30
    )


def put_place(table, place_id, name, is_market=True, hours=None):
    item = {
        'place_id': place_id,
        'name': name,
        'categories': ['point_of_interest'],
        'is_market': is_market,
    }
    if hours is not None:
        item['opening_hours_text'] = hours
    table.put_item(Item=item)


def test_get_market_places(dynamodb_manager, dynamodb_tables):
    """Test only market places with hours text are returned."""
    places = dynamodb_tables['places']
    put_place(places, 'p1', 'Riverside Market', hours=['Saturday: 8am-1pm'])
    put_place(places, 'p2', 'Old Market', is_market=False, hours=['Sunday: 9am-1pm'])
    put_place(places, 'p3', 'Hoursless Market')

    result = dynamodb_manager.get_market_places(limit=50)

    assert [place.place_id for place in result] == ['p1']
    assert result[0].opening_hours_text == ['Saturday: 8am-1pm']
    assert result[0].categories == ['point_of_interest']
    assert result[0].is_market is True


def test_get_market_places_respects_limit(dynamodb_manager, dynamodb_tables):
    for i in range(5):
        put_place(
            dynamodb_tables['places'], f'p{i}', f'Market {i}',
            hours=['Saturday: 8am-1pm']
        )

    assert len(dynamodb_manager.get_market_places(limit=3)) == 3


def test_get_source_places(dynamodb_manager, dynamodb_tables):
    """Test places are built from provider payloads."""
    sources = dynamodb_tables['sources']
    sources.put_item(Item={
        'source_id': 'google-abc',
        'place_id': 'p1',
        'source': 'google',
        'payload': {
            'types': ['point_of_interest'],
            'details': {
                'name': 'Harbour Night Market',
                'opening_hours': {'weekday_text': ['Friday: 5pm-9pm']}
            }
        }
    })
    sources.put_item(Item={
        'source_id': 'osm-1',
        'place_id': 'p2',
        'source': 'osm',
        'payload': {'name': 'Marketplace'}
    })

    places = dynamodb_manager.get_source_places('google', limit=50)

    assert len(places) == 1
    assert places[0].place_id == 'p1'
    assert places[0].name == 'Harbour Night Market'
    assert places[0].categories == ['point_of_interest']
    assert places[0].opening_hours_text == ['Friday: 5pm-9pm']


def test_get_source_places_skips_malformed_items(
    dynamodb_manager, dynamodb_tables, caplog
):
    """Test a payload without a place id does not abort the whole scan."""
    sources = dynamodb_tables['sources']
    sources.put_item(Item={
        'source_id': 'google-orphan',
        'source': 'google',
        'payload': {'details': {'name': 'Orphan Market'}}
    })
    sources.put_item(Item={
        'source_id': 'google-garbled',
        'place_id': 'p3',
        'source': 'google',
        'payload': 'not a mapping'
    })
    sources.put_item(Item={
        'source_id': 'google-abc',
        'place_id': 'p1',
        'source': 'google',
        'payload': {'details': {'name': 'Harbour Night Market'}}
    })

    places = dynamodb_manager.get_source_places('google', limit=50)

    assert [place.place_id for place in places] == ['p1']
    assert 'Failed to convert source item google-orphan' in caplog.text
    assert 'Failed to convert source item google-garbled' in caplog.text


def test_get_source_places_without_table(dynamodb_tables):
    manager = DynamoDBManager('test-markets', 'test-market-events')
    assert manager.get_source_places('google', limit=50) == []


def test_set_market_flag(dynamodb_manager, dynamodb_tables):
    places = dynamodb_tables['places']
    put_place(places, 'p1', 'Eastside Market', hours=['Monday: 9am-6pm'])

    dynamodb_manager.set_market_flag('p1', False)

    item = places.get_item(Key={'place_id': 'p1'})['Item']
    assert item['is_market'] is False


def test_batch_write_and_get_occurrences(dynamodb_manager, market_occurrences):
    count = dynamodb_manager.batch_write_occurrences(market_occurrences)

    stored = dynamodb_manager.get_occurrences('place-1', NOW, WINDOW_END)

    assert count == len(market_occurrences)
    assert stored == market_occurrences


def test_batch_write_large_batch(dynamodb_manager):
    """Test writing more than 25 occurrences (batch limit)."""
    rules = [
        DayRule(weekday=day, start=TimeOfDay(hour, 0), end=None)
        for day in range(7)
        for hour in (8, 12)
    ]
    occurrences = materialize_occurrences('place-1', rules, NOW, 30)
    assert len(occurrences) > 25

    count = dynamodb_manager.batch_write_occurrences(occurrences)

    assert count == len(occurrences)
    assert len(dynamodb_manager.get_occurrences('place-1', NOW, WINDOW_END)) == count


def test_get_occurrences_filters_window_and_source(dynamodb_manager, market_occurrences):
    """Test other places, other sources and out-of-window starts are ignored."""
    manual = Occurrence(
        event_id='manual-1',
        place_id='place-1',
        start_at=datetime(2026, 10, 24, 10, 0),
        end_at=None,
        weekday_code='SA',
        recurrence_rule='FREQ=WEEKLY;BYDAY=SA',
        source='manual',
        last_verified_at=NOW
    )
    other_place = materialize_occurrences('place-2', [SATURDAY_RULE], NOW, 30)
    dynamodb_manager.batch_write_occurrences(
        market_occurrences + other_place + [manual]
    )

    in_short_window = dynamodb_manager.get_occurrences(
        'place-1', NOW, NOW + timedelta(days=7)
    )

    assert [o.start_at for o in in_short_window] == [
        datetime(2026, 10, 24, 8, 0),
        datetime(2026, 10, 25, 9, 0),
    ]
    assert all(o.source == GENERATION_SOURCE for o in in_short_window)


def test_replace_occurrences_is_idempotent(dynamodb_manager, market_occurrences):
    """Test re-running a replace leaves exactly one set of occurrences."""
    dynamodb_manager.replace_occurrences(
        'place-1', market_occurrences, NOW, WINDOW_END
    )
    deleted, written = dynamodb_manager.replace_occurrences(
        'place-1', market_occurrences, NOW, WINDOW_END
    )

    stored = dynamodb_manager.get_occurrences('place-1', NOW, WINDOW_END)

    assert deleted == len(market_occurrences)
    assert written == len(market_occurrences)
    assert stored == market_occurrences


def test_replace_occurrences_keeps_other_sources(dynamodb_manager, market_occurrences):
    manual = Occurrence(
        event_id='manual-1',
        place_id='place-1',
        start_at=datetime(2026, 10, 24, 10, 0),
        end_at=None,
        weekday_code='SA',
        recurrence_rule='FREQ=WEEKLY;BYDAY=SA',
        source='manual',
        last_verified_at=NOW
    )
    dynamodb_manager.batch_write_occurrences([manual])

    dynamodb_manager.replace_occurrences('place-1', [], NOW, WINDOW_END)

    remaining = dynamodb_manager.get_occurrences(
        'place-1', NOW, WINDOW_END, source='manual'
    )
    assert [o.event_id for o in remaining] == ['manual-1']


def test_apply_result_store_purges_and_flags(
    dynamodb_manager, dynamodb_tables, market_occurrences
):
    """Test a store verdict purges the window and clears the market flag."""
    put_place(dynamodb_tables['places'], 'place-1', 'Eastside Market', hours=[])
    dynamodb_manager.batch_write_occurrences(market_occurrences)

    deleted, written = dynamodb_manager.apply_result(
        EnrichmentResult(place_id='place-1', verdict=Verdict.STORE),
        NOW,
        WINDOW_END
    )

    assert deleted == len(market_occurrences)
    assert written == 0
    assert dynamodb_manager.get_occurrences('place-1', NOW, WINDOW_END) == []
    item = dynamodb_tables['places'].get_item(Key={'place_id': 'place-1'})['Item']
    assert item['is_market'] is False


def test_apply_result_excluded_is_untouched(
    dynamodb_manager, dynamodb_tables, market_occurrences
):
    put_place(dynamodb_tables['places'], 'place-1', 'Lakeside Cafe', hours=[])
    dynamodb_manager.batch_write_occurrences(market_occurrences)

    assert dynamodb_manager.apply_result(
        EnrichmentResult(place_id='place-1', verdict=Verdict.EXCLUDED),
        NOW,
        WINDOW_END
    ) == (0, 0)

    assert len(dynamodb_manager.get_occurrences('place-1', NOW, WINDOW_END)) == len(
        market_occurrences
    )
    item = dynamodb_tables['places'].get_item(Key={'place_id': 'place-1'})['Item']
    assert item['is_market'] is True


def test_apply_results(dynamodb_manager, dynamodb_tables, market_occurrences):
    """Test a mixed batch of verdicts."""
    put_place(dynamodb_tables['places'], 'place-2', 'Eastside Market', hours=[])
    old = materialize_occurrences('place-2', [SATURDAY_RULE], NOW, 30)
    dynamodb_manager.batch_write_occurrences(old)

    result = dynamodb_manager.apply_results(
        [
            EnrichmentResult(
                place_id='place-1',
                verdict=Verdict.MARKET,
                occurrences=market_occurrences
            ),
            EnrichmentResult(place_id='place-2', verdict=Verdict.STORE),
            EnrichmentResult(place_id='place-3', verdict=Verdict.EXCLUDED),
        ],
        NOW,
        WINDOW_END
    )

    assert result.created == len(market_occurrences)
    assert result.deleted == len(old)
    assert result.stores_flagged == 1
    assert result.errors == []


def test_apply_results_records_errors(dynamodb_manager, market_occurrences, monkeypatch):
    """Test a failure on one place is recorded and the batch continues."""
    original = dynamodb_manager.apply_result

    def failing(result, window_start, window_end):
        if result.place_id == 'broken':
            raise RuntimeError('write failed')
        return original(result, window_start, window_end)

    monkeypatch.setattr(dynamodb_manager, 'apply_result', failing)

    result = dynamodb_manager.apply_results(
        [
            EnrichmentResult(place_id='broken', verdict=Verdict.MARKET),
            EnrichmentResult(
                place_id='place-1',
                verdict=Verdict.MARKET,
                occurrences=market_occurrences
            ),
        ],
        NOW,
        WINDOW_END
    )

    assert result.created == len(market_occurrences)
    assert len(result.errors) == 1
    assert 'broken' in result.errors[0]

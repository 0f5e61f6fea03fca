"""DynamoDB manager for place and market occurrence storage."""
import logging
from datetime import datetime
from typing import List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from processor.materializer import GENERATION_SOURCE
from processor.models import EnrichmentResult, Occurrence, Place, SyncResult, Verdict

logger = logging.getLogger(__name__)


class DynamoDBManager:
    """Manager for DynamoDB operations."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit
    PLACE_INDEX = 'place-index'

    def __init__(
        self,
        places_table_name: str,
        events_table_name: str,
        sources_table_name: Optional[str] = None
    ):
        """
        Initialize DynamoDB client and table references.

        Args:
            places_table_name: Table holding place records
            events_table_name: Table holding generated occurrences
            sources_table_name: Table holding raw provider payloads
        """
        self.dynamodb = boto3.resource('dynamodb')
        self.places_table = self.dynamodb.Table(places_table_name)
        self.events_table = self.dynamodb.Table(events_table_name)
        self.sources_table = (
            self.dynamodb.Table(sources_table_name) if sources_table_name else None
        )
        logger.info(
            f"Initialized DynamoDBManager for tables: {places_table_name}, "
            f"{events_table_name}"
        )

    def _scan(self, table, filter_expression, limit: int) -> List[dict]:
        items = []
        kwargs = {'FilterExpression': filter_expression}

        while True:
            response = table.scan(**kwargs)
            items.extend(response.get('Items', []))
            if len(items) >= limit or 'LastEvaluatedKey' not in response:
                break
            kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']

        return items[:limit]

    def get_market_places(self, limit: int) -> List[Place]:
        """
        Retrieve places flagged as markets that carry opening hours text.

        Args:
            limit: Maximum number of places to return

        Returns:
            List of Place objects
        """
        logger.info(f"Scanning places table for up to {limit} markets")
        try:
            items = self._scan(
                self.places_table,
                Attr('is_market').eq(True) & Attr('opening_hours_text').exists(),
                limit
            )
        except ClientError as e:
            logger.error(f"Error scanning places table: {e}")
            raise

        places = [
            place for place in (self._item_to_place(item) for item in items)
            if place
        ]
        logger.info(f"Retrieved {len(places)} market places from DynamoDB")
        return places

    def get_source_places(self, source: str, limit: int) -> List[Place]:
        """
        Build places from raw provider payloads.

        Used when no place record carries hours text yet; the hours lines
        are read from ``payload.details.opening_hours.weekday_text``.

        Args:
            source: Provider name, e.g. "google"
            limit: Maximum number of places to return

        Returns:
            List of Place objects
        """
        if self.sources_table is None:
            return []

        logger.info(f"Scanning sources table for up to {limit} {source} payloads")
        try:
            items = self._scan(self.sources_table, Attr('source').eq(source), limit)
        except ClientError as e:
            logger.error(f"Error scanning sources table: {e}")
            raise

        places = []
        for item in items:
            place = self._source_item_to_place(item)
            if place:
                places.append(place)

        logger.info(f"Built {len(places)} places from {source} payloads")
        return places

    def set_market_flag(self, place_id: str, is_market: bool) -> None:
        self.places_table.update_item(
            Key={'place_id': place_id},
            UpdateExpression='SET is_market = :is_market',
            ExpressionAttributeValues={':is_market': is_market}
        )

    def get_occurrences(
        self,
        place_id: str,
        window_start: datetime,
        window_end: datetime,
        source: str = GENERATION_SOURCE
    ) -> List[Occurrence]:
        """
        Query a place's occurrences starting within the window.

        Args:
            place_id: Place to query
            window_start: Earliest start (inclusive)
            window_end: Latest start (inclusive)
            source: Generation source tag

        Returns:
            List of Occurrence objects ordered by start
        """
        kwargs = {
            'IndexName': self.PLACE_INDEX,
            'KeyConditionExpression': (
                Key('place_id').eq(place_id) &
                Key('start_at').between(
                    window_start.isoformat(), window_end.isoformat()
                )
            ),
            'FilterExpression': Attr('source').eq(source),
        }
        items = []

        try:
            while True:
                response = self.events_table.query(**kwargs)
                items.extend(response.get('Items', []))
                if 'LastEvaluatedKey' not in response:
                    break
                kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']
        except ClientError as e:
            logger.error(f"Error querying occurrences for place {place_id}: {e}")
            raise

        occurrences = [
            occurrence
            for occurrence in (self._item_to_occurrence(item) for item in items)
            if occurrence
        ]
        return sorted(occurrences, key=lambda occurrence: occurrence.start_at)

    def delete_occurrences(
        self,
        place_id: str,
        window_start: datetime,
        window_end: datetime,
        source: str = GENERATION_SOURCE
    ) -> int:
        """Delete a place's occurrences from one source within the window."""
        existing = self.get_occurrences(place_id, window_start, window_end, source)
        return self.batch_delete_occurrences(
            [occurrence.event_id for occurrence in existing]
        )

    def batch_write_occurrences(self, occurrences: List[Occurrence]) -> int:
        """
        Write occurrences to DynamoDB in batches of 25 items.

        Args:
            occurrences: List of Occurrence objects to write

        Returns:
            Count of successfully written occurrences
        """
        if not occurrences:
            return 0

        logger.info(f"Writing {len(occurrences)} occurrences to DynamoDB")
        success_count = 0

        for i in range(0, len(occurrences), self.BATCH_SIZE):
            batch = occurrences[i:i + self.BATCH_SIZE]

            try:
                with self.events_table.batch_writer() as writer:
                    for occurrence in batch:
                        writer.put_item(Item=self._occurrence_to_item(occurrence))
                        success_count += 1

            except ClientError as e:
                logger.error(
                    f"Error writing batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                continue

        logger.info(f"Successfully wrote {success_count} occurrences")
        return success_count

    def batch_delete_occurrences(self, event_ids: List[str]) -> int:
        """
        Delete occurrences from DynamoDB in batches of 25 items.

        Args:
            event_ids: List of occurrence IDs to delete

        Returns:
            Count of successfully deleted occurrences
        """
        if not event_ids:
            return 0

        logger.info(f"Deleting {len(event_ids)} occurrences from DynamoDB")
        success_count = 0

        for i in range(0, len(event_ids), self.BATCH_SIZE):
            batch = event_ids[i:i + self.BATCH_SIZE]

            try:
                with self.events_table.batch_writer() as writer:
                    for event_id in batch:
                        writer.delete_item(Key={'event_id': event_id})
                        success_count += 1

            except ClientError as e:
                logger.error(
                    f"Error deleting batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                continue

        logger.info(f"Successfully deleted {success_count} occurrences")
        return success_count

    def replace_occurrences(
        self,
        place_id: str,
        occurrences: List[Occurrence],
        window_start: datetime,
        window_end: datetime
    ) -> tuple[int, int]:
        """
        Replace a place's generated occurrences within the window.

        Existing occurrences are deleted before the new ones are written, so
        an interrupted run leaves a gap rather than duplicates.

        Returns:
            Tuple of (deleted count, written count)
        """
        deleted = self.delete_occurrences(place_id, window_start, window_end)
        written = self.batch_write_occurrences(occurrences)
        return deleted, written

    def apply_result(
        self,
        result: EnrichmentResult,
        window_start: datetime,
        window_end: datetime
    ) -> tuple[int, int]:
        """
        Apply one place's verdict to the store.

        Markets get their window replaced, stores get it purged and their
        market flag cleared, excluded places are left untouched.

        Returns:
            Tuple of (deleted count, written count)
        """
        if result.verdict is Verdict.MARKET:
            return self.replace_occurrences(
                result.place_id, result.occurrences, window_start, window_end
            )

        if result.verdict is Verdict.STORE:
            deleted = self.delete_occurrences(
                result.place_id, window_start, window_end
            )
            self.set_market_flag(result.place_id, False)
            logger.info(f"Place {result.place_id} flagged as store")
            return deleted, 0

        return 0, 0

    def apply_results(
        self,
        results: List[EnrichmentResult],
        window_start: datetime,
        window_end: datetime
    ) -> SyncResult:
        """
        Apply a batch of enrichment results.

        A failure on one place is recorded and the remaining places are
        still applied.

        Args:
            results: Results from the market processor
            window_start: Start of the active window
            window_end: End of the active window

        Returns:
            SyncResult with counts of created and deleted occurrences
        """
        logger.info(f"Applying {len(results)} enrichment results")
        created = 0
        deleted = 0
        stores_flagged = 0
        errors = []

        for result in results:
            try:
                deleted_count, written_count = self.apply_result(
                    result, window_start, window_end
                )
            except Exception as e:
                error_msg = f"Error applying result for place {result.place_id}: {e}"
                logger.error(error_msg)
                errors.append(error_msg)
                continue

            created += written_count
            deleted += deleted_count
            if result.verdict is Verdict.STORE:
                stores_flagged += 1

        logger.info(
            f"Apply complete: {created} created, {deleted} deleted, "
            f"{stores_flagged} stores flagged"
        )
        return SyncResult(
            created=created,
            deleted=deleted,
            stores_flagged=stores_flagged,
            errors=errors
        )

    def _item_to_place(self, item: dict) -> Optional[Place]:
        """
        Convert DynamoDB item to Place object.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Place object or None if conversion fails
        """
        try:
            return Place(
                place_id=item['place_id'],
                name=item['name'],
                categories=list(item.get('categories') or []),
                opening_hours_text=list(item.get('opening_hours_text') or []),
                is_market=bool(item.get('is_market', False))
            )
        except KeyError as e:
            logger.warning(f"Failed to convert item to Place: {e}")
            return None

    def _source_item_to_place(self, item: dict) -> Optional[Place]:
        """Convert a provider payload item to a Place, or None if malformed."""
        try:
            payload = item.get('payload') or {}
            details = payload.get('details') or {}
            opening_hours = details.get('opening_hours') or {}
            return Place(
                place_id=item['place_id'],
                name=details.get('name') or payload.get('name', ''),
                categories=list(payload.get('types') or []),
                opening_hours_text=list(opening_hours.get('weekday_text') or []),
                is_market=True
            )
        except (KeyError, AttributeError) as e:
            logger.warning(
                f"Failed to convert source item {item.get('source_id')} to Place: {e}"
            )
            return None

    def _item_to_occurrence(self, item: dict) -> Optional[Occurrence]:
        """
        Convert DynamoDB item to Occurrence object.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Occurrence object or None if conversion fails
        """
        try:
            end_at = item.get('end_at')
            return Occurrence(
                event_id=item['event_id'],
                place_id=item['place_id'],
                start_at=datetime.fromisoformat(item['start_at']),
                end_at=datetime.fromisoformat(end_at) if end_at else None,
                weekday_code=item['weekday_code'],
                recurrence_rule=item['recurrence_rule'],
                source=item['source'],
                last_verified_at=datetime.fromisoformat(item['last_verified_at'])
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to convert item to Occurrence: {e}")
            return None

    def _occurrence_to_item(self, occurrence: Occurrence) -> dict:
        """
        Convert Occurrence object to DynamoDB item.

        Args:
            occurrence: Occurrence object

        Returns:
            DynamoDB item dictionary
        """
        item = {
            'event_id': occurrence.event_id,
            'place_id': occurrence.place_id,
            'start_at': occurrence.start_at.isoformat(),
            'weekday_code': occurrence.weekday_code,
            'recurrence_rule': occurrence.recurrence_rule,
            'source': occurrence.source,
            'last_verified_at': occurrence.last_verified_at.isoformat()
        }

        # Add optional fields if present
        if occurrence.end_at:
            item['end_at'] = occurrence.end_at.isoformat()

        return item

"""DynamoDB storage for schedule snapshots."""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from processor.exceptions import SnapshotLoadError, SnapshotSaveError
from processor.models import Flight
from storage.serialization import flight_from_record, flight_to_record

logger = logging.getLogger(__name__)


class DynamoDBSnapshotStore:
    """
    Snapshot store backed by a DynamoDB table.

    Table layout: partition key ``snapshot_name`` (S), sort key ``position``
    (N). A header item at position -1 names the live generation: its slot,
    a generation id and the flight count. Flights of slot ``s`` live at
    positions ``2 * i + s`` and carry the generation id they were written
    under. A save fills the idle slot and only then switches the header,
    so the live snapshot is never overwritten in place.
    """

    BATCH_SIZE = 25  # DynamoDB batch operation limit
    HEADER_POSITION = -1
    SLOT_COUNT = 2

    def __init__(self, table_name: str, snapshot_name: str = 'flights'):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
            snapshot_name: Partition holding this deployment's snapshot
        """
        self.table_name = table_name
        self.snapshot_name = snapshot_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(
            f"Initialized DynamoDBSnapshotStore for table: {table_name} "
            f"(snapshot: {snapshot_name})"
        )

    @classmethod
    def item_position(cls, slot: int, index: int) -> int:
        """Sort key of the index-th flight written to a slot."""
        return index * cls.SLOT_COUNT + slot

    def load(self) -> Optional[List[Flight]]:
        """
        Load the previously saved snapshot.

        Returns:
            List of Flight objects in saved order, or None if no snapshot
            has been saved

        Raises:
            SnapshotLoadError: If the table cannot be read or the snapshot
                is incomplete or mixes generations
        """
        logger.info(f"Querying DynamoDB for snapshot '{self.snapshot_name}'")

        try:
            items = self._query_items()
        except ClientError as e:
            raise SnapshotLoadError(f"Error querying DynamoDB table: {e}") from e

        by_position = {int(item['position']): item for item in items}
        header = by_position.get(self.HEADER_POSITION)
        if header is None:
            logger.info("No snapshot header found")
            return None

        try:
            count = int(header['flight_count'])
            slot = int(header['slot'])
            generation = header['generation']
        except (KeyError, TypeError, ValueError) as e:
            raise SnapshotLoadError(f"Malformed snapshot header: {e}") from e

        positions = [self.item_position(slot, i) for i in range(count)]
        missing = [p for p in positions if p not in by_position]
        if missing:
            raise SnapshotLoadError(
                f"Snapshot '{self.snapshot_name}' is missing {len(missing)} of {count} flights"
            )

        stale = [p for p in positions if by_position[p].get('generation') != generation]
        if stale:
            raise SnapshotLoadError(
                f"Snapshot '{self.snapshot_name}' has {len(stale)} flights "
                f"from another generation than {generation}"
            )

        try:
            flights = [flight_from_record(by_position[p]) for p in positions]
        except (KeyError, TypeError) as e:
            raise SnapshotLoadError(f"Malformed flight item: {e}") from e

        logger.info(f"Retrieved {len(flights)} flights from DynamoDB")
        return flights

    def save(self, flights: List[Flight]) -> None:
        """
        Replace the stored snapshot.

        Flights are written to the slot the live header does not point at,
        then the header is switched to the new generation. Items of the
        previous generation are deleted last. An interrupted save leaves
        the previous snapshot loadable.

        Raises:
            SnapshotSaveError: If any write fails
        """
        logger.info(f"Writing {len(flights)} flights to DynamoDB")

        try:
            live_slot, existing = self._existing_layout()
            slot = 0 if live_slot is None else (live_slot + 1) % self.SLOT_COUNT
            generation = uuid.uuid4().hex

            items = [
                self._flight_to_item(self.item_position(slot, i), generation, flight)
                for i, flight in enumerate(flights)
            ]
            self._batch_put(items)
            self._batch_put([self._header_item(len(flights), slot, generation)])

            written = {item['position'] for item in items}
            stale = sorted(p for p in existing if p not in written)
            self._batch_delete(stale)

        except ClientError as e:
            raise SnapshotSaveError(f"Error writing snapshot to DynamoDB: {e}") from e

        logger.info(
            f"Successfully saved snapshot of {len(flights)} flights "
            f"(slot {slot}, generation {generation})"
        )

    def _query_items(self, **kwargs: Any) -> List[Dict[str, Any]]:
        query_args = {
            'KeyConditionExpression': Key('snapshot_name').eq(self.snapshot_name),
            **kwargs
        }
        response = self.table.query(**query_args)
        items = response.get('Items', [])

        # Handle pagination
        while 'LastEvaluatedKey' in response:
            response = self.table.query(
                ExclusiveStartKey=response['LastEvaluatedKey'],
                **query_args
            )
            items.extend(response.get('Items', []))

        return items

    def _existing_layout(self):
        """Return the live slot (None without a header) and all flight positions."""
        items = self._query_items(
            ProjectionExpression='#pos, #slot',
            ExpressionAttributeNames={'#pos': 'position', '#slot': 'slot'}
        )

        live_slot = None
        positions = []
        for item in items:
            position = int(item['position'])
            if position == self.HEADER_POSITION:
                if 'slot' in item:
                    live_slot = int(item['slot'])
            else:
                positions.append(position)
        return live_slot, positions

    def _batch_put(self, items: List[Dict[str, Any]]) -> None:
        # Process in batches of 25 (DynamoDB limit)
        for i in range(0, len(items), self.BATCH_SIZE):
            with self.table.batch_writer() as writer:
                for item in items[i:i + self.BATCH_SIZE]:
                    writer.put_item(Item=item)

    def _batch_delete(self, positions: List[int]) -> None:
        if not positions:
            return

        logger.info(f"Deleting {len(positions)} stale snapshot items")
        for i in range(0, len(positions), self.BATCH_SIZE):
            with self.table.batch_writer() as writer:
                for position in positions[i:i + self.BATCH_SIZE]:
                    writer.delete_item(
                        Key={'snapshot_name': self.snapshot_name, 'position': position}
                    )

    def _flight_to_item(self, position: int, generation: str, flight: Flight) -> Dict[str, Any]:
        item = flight_to_record(flight)
        item['snapshot_name'] = self.snapshot_name
        item['position'] = position
        item['generation'] = generation
        return item

    def _header_item(self, count: int, slot: int, generation: str) -> Dict[str, Any]:
        return {
            'snapshot_name': self.snapshot_name,
            'position': self.HEADER_POSITION,
            'flight_count': count,
            'slot': slot,
            'generation': generation,
            'saved_at': datetime.now(timezone.utc).isoformat(),
        }

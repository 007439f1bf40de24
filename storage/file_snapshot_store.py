"""Local JSON file storage for schedule snapshots."""
import json
import logging
import os
import tempfile
from typing import List, Optional

from processor.exceptions import SnapshotLoadError, SnapshotSaveError
from processor.models import Flight
from storage.serialization import flight_from_record, flight_to_record

logger = logging.getLogger(__name__)


class FileSnapshotStore:
    """Snapshot store backed by a JSON file."""

    def __init__(self, path: str = 'flights-data.json'):
        """
        Initialize the store.

        Args:
            path: Location of the snapshot file
        """
        self.path = path

    def load(self) -> Optional[List[Flight]]:
        """
        Load the previously saved snapshot.

        Returns:
            List of Flight objects, or None if no snapshot has been saved

        Raises:
            SnapshotLoadError: If the file exists but cannot be decoded
        """
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                records = json.load(f)
        except FileNotFoundError:
            logger.info(f"No snapshot found at {self.path}")
            return None
        except (OSError, ValueError) as e:
            raise SnapshotLoadError(f"Cannot read snapshot {self.path}: {e}") from e

        if not isinstance(records, list):
            raise SnapshotLoadError(
                f"Snapshot {self.path} must contain a list, got {type(records).__name__}"
            )

        try:
            flights = [flight_from_record(record) for record in records]
        except (KeyError, TypeError, AttributeError) as e:
            raise SnapshotLoadError(f"Malformed flight in snapshot {self.path}: {e}") from e

        logger.info(f"Loaded {len(flights)} flights from {self.path}")
        return flights

    def save(self, flights: List[Flight]) -> None:
        """
        Replace the stored snapshot.

        The file is written next to the target and renamed over it, so a
        concurrent reader sees either the old or the new snapshot.

        Raises:
            SnapshotSaveError: If the file cannot be written
        """
        directory = os.path.dirname(os.path.abspath(self.path))
        records = [flight_to_record(flight) for flight in flights]

        try:
            fd, tmp_path = tempfile.mkstemp(prefix='.snapshot-', dir=directory)
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(records, f, ensure_ascii=False)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise SnapshotSaveError(f"Cannot write snapshot {self.path}: {e}") from e

        logger.info(f"Saved {len(flights)} flights to {self.path}")

"""Change detection between two schedule snapshots."""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from processor.models import Flight, MonitorConfig, SnapshotDiff
from processor.trips import group_by_trip, is_past

logger = logging.getLogger(__name__)


class SnapshotDiffer:
    """Computes new trips and crew changes between two snapshots."""

    def __init__(self, config: Optional[MonitorConfig] = None):
        """
        Initialize the differ.

        Args:
            config: Monitor configuration; supplies the time zone used for
                timestamps without an offset and the new-trip policy
        """
        self.config = config or MonitorConfig()
        self.tz = ZoneInfo(self.config.time_zone)

    def upcoming(self, flights: Sequence[Flight], now: datetime) -> List[Flight]:
        """Drop flights whose start is strictly before now."""
        return [f for f in flights if not is_past(f, now, self.tz)]

    def diff(
        self,
        previous: Sequence[Flight],
        current: Sequence[Flight],
        now: datetime
    ) -> SnapshotDiff:
        """
        Compare the previous snapshot with the current one.

        Flights are compared structurally. When suppress_known_trips is set,
        structural changes inside a trip that already existed are reported as
        updates rather than new trips.

        Args:
            previous: Snapshot saved by the last cycle
            current: Snapshot built by this cycle
            now: Reference instant for past filtering (timezone-aware)

        Returns:
            SnapshotDiff with new trips, crew change keys and updated trips
        """
        previous_upcoming = self.upcoming(previous, now)
        current_upcoming = self.upcoming(current, now)

        previous_set = set(previous_upcoming)
        new_flights = [f for f in current_upcoming if f not in previous_set]
        new_by_trip = group_by_trip(new_flights, self.tz)

        previous_by_trip = group_by_trip(previous_upcoming, self.tz)
        current_by_trip = group_by_trip(current_upcoming, self.tz)

        new_trips: Dict[str, List[Flight]] = {}
        updated_trips: Dict[str, List[Flight]] = {}
        for trip_key, legs in new_by_trip.items():
            if self.config.suppress_known_trips and trip_key in previous_by_trip:
                updated_trips[trip_key] = legs
            else:
                new_trips[trip_key] = legs

        crew_changes = self.crew_changes(previous_by_trip, current_by_trip)

        logger.info(
            f"Diff: {len(new_trips)} new trip(s), "
            f"{len(updated_trips)} updated trip(s), "
            f"{len(crew_changes)} crew change(s)"
        )

        return SnapshotDiff(
            new_trips=new_trips,
            crew_changes=crew_changes,
            updated_trips=updated_trips,
            current_trips=current_by_trip,
        )

    @staticmethod
    def crew_changes(
        previous_by_trip: Dict[str, List[Flight]],
        current_by_trip: Dict[str, List[Flight]]
    ) -> List[str]:
        """
        Find trips whose crew roster changed.

        An empty current roster is treated as not yet published and never
        reported.

        Args:
            previous_by_trip: Previous snapshot grouped by trip key
            current_by_trip: Current snapshot grouped by trip key

        Returns:
            Trip keys in current grouping order
        """
        changed = []

        for trip_key, current_legs in current_by_trip.items():
            previous_legs = previous_by_trip.get(trip_key)
            if previous_legs is None:
                continue

            previous_crew = set().union(*(leg.crew_names for leg in previous_legs))
            current_crew = set().union(*(leg.crew_names for leg in current_legs))

            if current_crew and previous_crew != current_crew:
                changed.append(trip_key)

        return changed

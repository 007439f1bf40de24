"""Poll cycle: fetch, normalize, diff, notify, persist."""
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional
from zoneinfo import ZoneInfo

from processor.exceptions import AuthExpiredError, NotificationError, SnapshotLoadError
from processor.flight_normalizer import FlightFilter, FlightNormalizer
from processor.models import CycleResult, Flight, MonitorConfig, NotificationKind
from processor.notification_formatter import NotificationFormatter
from processor.snapshot_differ import SnapshotDiffer
from processor.trips import group_by_trip

logger = logging.getLogger(__name__)


class ChangeMonitor:
    """Runs one schedule poll cycle against its collaborators."""

    def __init__(
        self,
        source: Any,
        store: Any,
        notifier: Any,
        config: Optional[MonitorConfig] = None,
        normalizer: Optional[FlightNormalizer] = None,
        formatter: Optional[NotificationFormatter] = None,
        differ: Optional[SnapshotDiffer] = None
    ):
        """
        Initialize the monitor.

        Args:
            source: Object with fetch_records() returning raw records
            store: Object with load() and save(flights)
            notifier: Object with send(message)
            config: Monitor configuration
            normalizer: Record normalizer (default: built from config)
            formatter: Notification formatter (default: built from config)
            differ: Snapshot differ (default: built from config)
        """
        self.source = source
        self.store = store
        self.notifier = notifier
        self.config = config or MonitorConfig()
        self.normalizer = normalizer or FlightNormalizer(self.config.field_mapping)
        self.formatter = formatter or NotificationFormatter(self.config.time_zone)
        self.differ = differ or SnapshotDiffer(self.config)
        self.flight_filter = FlightFilter(self.config)
        self.tz = ZoneInfo(self.config.time_zone)

    def run_cycle(self, now: Optional[datetime] = None) -> CycleResult:
        """
        Run a full poll cycle.

        Args:
            now: Reference instant (default: current UTC time)

        Returns:
            CycleResult with counts for the cycle

        Raises:
            AuthExpiredError: After the session expiry notification is sent
            TransportError: If the schedule could not be fetched
            ScheduleParseError: If the schedule could not be decoded
            SnapshotSaveError: If the new snapshot could not be persisted
        """
        now = now or datetime.now(timezone.utc)
        result = CycleResult()

        try:
            raw_records = self.source.fetch_records()
        except AuthExpiredError:
            logger.error("Session expired")
            self._send(self.formatter.format_session_expired(), result)
            raise

        result.raw_records = len(raw_records)

        flights = self.normalizer.normalize_records(raw_records)
        result.flights_normalized = len(flights)

        relevant = self.flight_filter.apply(flights)
        result.flights_relevant = len(relevant)
        logger.info(f"Filtered to {len(relevant)} relevant events")

        missing = self.flight_filter.missing_aircraft(flights)
        if missing:
            logger.warning(f"Missing aircraft: {', '.join(missing)}")

        upcoming = self.differ.upcoming(relevant, now)
        result.flights_upcoming = len(upcoming)
        logger.info(f"Upcoming: {len(upcoming)}")

        for legs in group_by_trip(upcoming, self.tz).values():
            logger.info(f"Detected trip: {self.formatter.describe_trip(legs)}")

        previous = self._load_previous()
        if previous is None:
            logger.info("First run - saving baseline")
            self.store.save(upcoming)
            result.baseline = True
            return result

        diff = self.differ.diff(previous, upcoming, now)
        result.new_trips = len(diff.new_trips)
        result.crew_changes = len(diff.crew_changes)

        for trip_key, legs in diff.updated_trips.items():
            logger.info(f"Trip {trip_key} updated ({len(legs)} changed leg(s))")

        for legs in diff.new_trips.values():
            message = self.formatter.format(NotificationKind.NEW_TRIP, legs, now)
            self._send(message, result)

        for trip_key in diff.crew_changes:
            legs = diff.current_trips.get(trip_key)
            if not legs:
                continue
            message = self.formatter.format(NotificationKind.CREW_CHANGE, legs, now)
            self._send(message, result)

        self.store.save(upcoming)
        logger.info(
            f"Cycle complete: {result.new_trips} new trip(s), "
            f"{result.crew_changes} crew change(s), "
            f"{result.notifications_sent} notification(s) sent"
        )
        return result

    def _load_previous(self) -> Optional[List[Flight]]:
        try:
            return self.store.load()
        except SnapshotLoadError as e:
            logger.warning(f"Could not load previous snapshot, rebuilding baseline: {e}")
            return None

    def _send(self, message: str, result: CycleResult) -> None:
        try:
            self.notifier.send(message)
            result.notifications_sent += 1
        except NotificationError as e:
            logger.warning(f"Notification failed: {e}")
            result.notifications_failed += 1
            result.errors.append(str(e))

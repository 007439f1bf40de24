"""Normalizer for raw schedule records."""
import hashlib
import json
import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from processor.exceptions import MalformedRecordError
from processor.models import (
    DEFAULT_FIELD_MAPPING,
    CrewMember,
    Flight,
    MonitorConfig,
)

logger = logging.getLogger(__name__)

TAG_PATTERN = re.compile(r'<[^>]+>')

TRUE_VALUES = {'true', '1', 'yes', 'y'}
FALSE_VALUES = {'false', '0', 'no', 'n'}


def generate_flight_id(raw: Mapping[str, Any]) -> str:
    """
    Generate an identifier for a record that carries no UUID.

    The id is a SHA256 hash of the record's canonical JSON, so an unchanged
    record keeps its identity between polls while any edit produces a new one.

    Args:
        raw: Raw record from the schedule feed

    Returns:
        64 character hex digest
    """
    composite = json.dumps(raw, sort_keys=True, default=str, separators=(',', ':'))
    return hashlib.sha256(composite.encode('utf-8')).hexdigest()


def strip_markup(text: str) -> str:
    """Remove inline tags and surrounding whitespace from a name."""
    return TAG_PATTERN.sub('', text).strip()


class FlightNormalizer:
    """Maps heterogeneous schedule records onto Flight entities."""

    CREW_NAME_KEYS = ('name', 'full_name')
    CREW_ROLE_KEYS = ('role', 'position', 'seat')

    def __init__(self, field_mapping: Optional[Mapping[str, Iterable[str]]] = None):
        """
        Initialize the normalizer.

        Args:
            field_mapping: Canonical field name to ordered dotted paths,
                merged over DEFAULT_FIELD_MAPPING
        """
        self.field_mapping: Dict[str, Tuple[str, ...]] = dict(DEFAULT_FIELD_MAPPING)
        if field_mapping:
            for name, paths in field_mapping.items():
                self.field_mapping[name] = tuple(paths)

    def normalize_records(self, raw_records: Iterable[Any]) -> List[Flight]:
        """
        Normalize a batch of raw records.

        Malformed records are logged and dropped; the rest of the batch is
        still processed.

        Args:
            raw_records: Records decoded from the schedule feed

        Returns:
            List of Flight objects in feed order
        """
        flights = []
        total = 0

        for index, raw in enumerate(raw_records):
            total += 1
            try:
                flights.append(self.normalize(raw))
            except MalformedRecordError as e:
                logger.warning(f"Dropping malformed record at index {index}: {e}")
                continue

        logger.info(
            f"Normalized {len(flights)} valid flights out of {total} records"
        )
        return flights

    def normalize(self, raw: Any) -> Flight:
        """
        Normalize a single raw record.

        Args:
            raw: Mapping decoded from the schedule feed

        Returns:
            Flight object

        Raises:
            MalformedRecordError: If the record cannot be interpreted
        """
        if not isinstance(raw, Mapping):
            raise MalformedRecordError(
                f"expected a mapping, got {type(raw).__name__}"
            )

        start = self._resolve(raw, 'start')
        if start is not None and not isinstance(start, str):
            raise MalformedRecordError(
                f"start must be a string, got {type(start).__name__}"
            )

        return Flight(
            id=self._resolve_id(raw),
            start=start or None,
            origin=self._text(raw, 'origin'),
            destination=self._text(raw, 'destination'),
            aircraft=self._text(raw, 'aircraft'),
            trip_key=self._text(raw, 'trip_key'),
            event_type_name=self._text(raw, 'event_type_name'),
            event_group=self._text(raw, 'event_group'),
            is_actual_flight=self._flag(raw, 'is_actual_flight'),
            crew=self._crew(raw),
        )

    def _resolve(self, raw: Mapping[str, Any], name: str) -> Any:
        """Return the first non-null value among the paths mapped to name."""
        for path in self.field_mapping.get(name, ()):
            value = self._lookup(raw, path)
            if value is not None:
                return value
        return None

    @staticmethod
    def _lookup(raw: Mapping[str, Any], path: str) -> Any:
        current: Any = raw
        for part in path.split('.'):
            if not isinstance(current, Mapping) or part not in current:
                return None
            current = current[part]
        return current

    def _resolve_id(self, raw: Mapping[str, Any]) -> str:
        value = self._resolve(raw, 'id')

        if value is None or (isinstance(value, str) and not value.strip()):
            flight_id = generate_flight_id(raw)
            logger.debug(f"Record has no UUID, synthesized id {flight_id[:12]}")
            return flight_id

        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise MalformedRecordError(
                f"uuid must be a scalar, got {type(value).__name__}"
            )
        return str(value)

    def _text(self, raw: Mapping[str, Any], name: str) -> Optional[str]:
        value = self._resolve(raw, name)

        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str):
            return value if value.strip() else None
        return None

    def _flag(self, raw: Mapping[str, Any], name: str) -> Optional[bool]:
        value = self._resolve(raw, name)

        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return bool(value)
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in TRUE_VALUES:
                return True
            if lowered in FALSE_VALUES:
                return False
        return None

    def _crew(self, raw: Mapping[str, Any]) -> Optional[Tuple[CrewMember, ...]]:
        value = self._resolve(raw, 'crew')
        if not isinstance(value, list):
            return None

        members = []
        for entry in value:
            if not isinstance(entry, Mapping):
                continue

            name = self._first_string(entry, self.CREW_NAME_KEYS)
            role = self._first_string(entry, self.CREW_ROLE_KEYS)
            if name is None or role is None:
                continue

            members.append(CrewMember(name=strip_markup(name), role=role))

        return tuple(members)

    @staticmethod
    def _first_string(entry: Mapping[str, Any], keys: Tuple[str, ...]) -> Optional[str]:
        for key in keys:
            value = entry.get(key)
            if isinstance(value, str):
                return value
        return None


class FlightFilter:
    """Selects the flights a deployment cares about."""

    def __init__(self, config: MonitorConfig):
        self.config = config

    def apply(self, flights: Iterable[Flight]) -> List[Flight]:
        """
        Filter flights by tracked aircraft, event classification and home base.

        The home base rule keeps whole trips: every leg of a trip that departs
        from or arrives at the home base is kept.

        Args:
            flights: Normalized flights

        Returns:
            Relevant flights in their original order
        """
        tracked = self.config.tracked_aircraft
        predicate = self.config.event_predicate

        selected = [
            flight for flight in flights
            if (tracked is None or flight.aircraft in tracked)
            and predicate(flight)
        ]

        home_base = self.config.home_base
        if home_base:
            home_trips = {
                flight.group_key for flight in selected
                if home_base in (flight.origin, flight.destination)
            }
            selected = [f for f in selected if f.group_key in home_trips]

        return selected

    def missing_aircraft(self, flights: Iterable[Flight]) -> List[str]:
        """Tracked tail numbers with no entry in the given flights."""
        if not self.config.tracked_aircraft:
            return []

        found = {flight.aircraft for flight in flights if flight.aircraft}
        return sorted(self.config.tracked_aircraft - found)

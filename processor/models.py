"""Data models for schedule change detection."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Set, Tuple


@dataclass(frozen=True)
class CrewMember:
    """Crew member assigned to a flight leg."""
    name: str
    role: str


@dataclass(frozen=True)
class Flight:
    """Normalized schedule entry.

    Equality and hashing are structural over every field, so two polls of the
    same leg compare unequal as soon as any field changes.
    """
    id: str
    start: Optional[str] = None
    origin: Optional[str] = None
    destination: Optional[str] = None
    aircraft: Optional[str] = None
    trip_key: Optional[str] = None
    event_type_name: Optional[str] = None
    event_group: Optional[str] = None
    is_actual_flight: Optional[bool] = None
    crew: Optional[Tuple[CrewMember, ...]] = None

    @property
    def group_key(self) -> str:
        """Trip locator, falling back to the flight id."""
        return self.trip_key or self.id

    @property
    def crew_names(self) -> Set[str]:
        return {member.name for member in self.crew or ()}


class NotificationKind(Enum):
    """Kinds of notification the monitor emits."""
    NEW_TRIP = 'new_trip'
    CREW_CHANGE = 'crew_change'
    SESSION_EXPIRED = 'session_expired'


@dataclass
class SnapshotDiff:
    """Changes detected between two snapshots."""
    new_trips: Dict[str, List[Flight]]
    crew_changes: List[str]
    updated_trips: Dict[str, List[Flight]] = field(default_factory=dict)
    current_trips: Dict[str, List[Flight]] = field(default_factory=dict)


@dataclass
class CycleResult:
    """Result of one poll cycle."""
    raw_records: int = 0
    flights_normalized: int = 0
    flights_relevant: int = 0
    flights_upcoming: int = 0
    new_trips: int = 0
    crew_changes: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    baseline: bool = False
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class EventPredicate:
    """Decides whether a schedule entry is an operationally relevant event."""
    allowed_groups: Optional[FrozenSet[str]] = None
    excluded_type_keywords: Tuple[str, ...] = ()
    require_actual_flight: bool = False

    def __call__(self, flight: Flight) -> bool:
        if self.require_actual_flight and flight.is_actual_flight is False:
            return False

        if self.allowed_groups is not None:
            group = (flight.event_group or '').lower()
            if group not in {g.lower() for g in self.allowed_groups}:
                return False

        type_name = (flight.event_type_name or '').lower()
        return not any(
            keyword.lower() in type_name
            for keyword in self.excluded_type_keywords
        )


DEFAULT_FIELD_MAPPING: Dict[str, Tuple[str, ...]] = {
    'id': ('extendedProps.uuid', 'uuid'),
    'start': ('start', 'extendedProps.start'),
    'origin': (
        'extendedProps.origin_short', 'extendedProps.origin',
        'origin_short', 'origin',
    ),
    'destination': (
        'extendedProps.destination_short', 'extendedProps.destination',
        'destination_short', 'destination',
    ),
    'aircraft': (
        'extendedProps.aircraft', 'extendedProps.tail_number',
        'aircraft', 'tail_number',
    ),
    'trip_key': (
        'extendedProps.pnr', 'extendedProps.locator',
        'extendedProps.trip_number', 'pnr', 'locator', 'trip_number',
    ),
    'event_type_name': ('extendedProps.event_type_name', 'event_type_name'),
    'event_group': ('extendedProps.event_group', 'event_group'),
    'is_actual_flight': (
        'extendedProps.is_actual_flight', 'is_actual_flight',
    ),
    'crew': ('extendedProps.crew', 'crew'),
}


@dataclass
class MonitorConfig:
    """Deployment options passed to each component at construction."""
    home_base: Optional[str] = None
    tracked_aircraft: Optional[FrozenSet[str]] = None
    event_predicate: EventPredicate = field(default_factory=EventPredicate)
    time_zone: str = 'America/New_York'
    suppress_known_trips: bool = True
    field_mapping: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_FIELD_MAPPING)
    )

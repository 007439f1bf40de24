"""Stable record format for persisted snapshots."""
from typing import Any, Dict, Mapping, Optional

from processor.models import CrewMember, Flight

OPTIONAL_TEXT_FIELDS = (
    'start',
    'origin',
    'destination',
    'aircraft',
    'trip_key',
    'event_type_name',
    'event_group',
)


def flight_to_record(flight: Flight) -> Dict[str, Any]:
    """
    Convert a Flight to a plain record.

    Absent fields are omitted; an empty crew list is kept so that "no crew
    information" and "no crew assigned" stay distinct.

    Args:
        flight: Flight to serialize

    Returns:
        Dictionary with stable field names
    """
    record: Dict[str, Any] = {'id': flight.id}

    for name in OPTIONAL_TEXT_FIELDS:
        value = getattr(flight, name)
        if value is not None:
            record[name] = value

    if flight.is_actual_flight is not None:
        record['is_actual_flight'] = flight.is_actual_flight

    if flight.crew is not None:
        record['crew'] = [
            {'name': member.name, 'role': member.role}
            for member in flight.crew
        ]

    return record


def _text(record: Mapping[str, Any], name: str) -> Optional[str]:
    value = record.get(name)
    if value is not None and not isinstance(value, str):
        raise TypeError(f"{name} must be a string, got {type(value).__name__}")
    return value


def flight_from_record(record: Mapping[str, Any]) -> Flight:
    """
    Convert a stored record back to a Flight.

    Raises:
        KeyError: If a required key is missing
        TypeError: If a field has the wrong shape
    """
    flight_id = record['id']
    if not isinstance(flight_id, str):
        raise TypeError(f"id must be a string, got {type(flight_id).__name__}")

    crew = record.get('crew')
    if crew is not None:
        if not isinstance(crew, list):
            raise TypeError(f"crew must be a list, got {type(crew).__name__}")
        members = []
        for member in crew:
            if not isinstance(member, Mapping):
                raise TypeError(f"crew member must be a mapping, got {type(member).__name__}")
            name = _text(member, 'name')
            role = _text(member, 'role')
            if name is None or role is None:
                raise TypeError("crew member needs a name and a role")
            members.append(CrewMember(name=name, role=role))
        crew = tuple(members)

    is_actual_flight = record.get('is_actual_flight')
    if is_actual_flight is not None and not isinstance(is_actual_flight, bool):
        raise TypeError(
            f"is_actual_flight must be a boolean, got {type(is_actual_flight).__name__}"
        )

    return Flight(
        id=flight_id,
        is_actual_flight=is_actual_flight,
        crew=crew,
        **{name: _text(record, name) for name in OPTIONAL_TEXT_FIELDS}
    )

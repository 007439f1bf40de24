"""Trip grouping, leg ordering and route building."""
import logging
from collections import defaultdict
from datetime import datetime, timezone, tzinfo
from typing import Dict, Iterable, List, Optional, Tuple

from processor.models import Flight

logger = logging.getLogger(__name__)

ROUTE_SEPARATOR = ' - '


def parse_start(value: Optional[str], tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """
    Parse an ISO-8601 start timestamp.

    Args:
        value: Timestamp string as received from the feed
        tz: Zone applied to timestamps without an offset (default: UTC)

    Returns:
        Timezone-aware datetime or None if the value is missing or unparsable
    """
    if not value or not isinstance(value, str):
        return None

    text = value.strip()
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz or timezone.utc)
    return parsed


def is_past(flight: Flight, now: datetime, tz: Optional[tzinfo] = None) -> bool:
    """A flight is past only when its start parses and is strictly before now."""
    start = parse_start(flight.start, tz)
    if start is None:
        return False
    return start < now


def _leg_sort_key(flight: Flight, tz: Optional[tzinfo] = None) -> Tuple[int, float, str]:
    # Missing or unparsable starts sort first, as an empty string would
    start = parse_start(flight.start, tz)
    if start is None:
        return (0, 0.0, flight.id)
    return (1, start.timestamp(), flight.id)


def sort_legs(legs: Iterable[Flight], tz: Optional[tzinfo] = None) -> List[Flight]:
    """Order legs by start time, earliest first; ties broken by id."""
    return sorted(legs, key=lambda flight: _leg_sort_key(flight, tz))


def first_leg(legs: Iterable[Flight], tz: Optional[tzinfo] = None) -> Optional[Flight]:
    """Representative leg of a trip, or None for an empty trip."""
    ordered = sort_legs(legs, tz)
    return ordered[0] if ordered else None


def group_by_trip(
    flights: Iterable[Flight],
    tz: Optional[tzinfo] = None
) -> Dict[str, List[Flight]]:
    """
    Partition flights into trips keyed by locator (or flight id).

    Legs inside a trip are ordered by start; trips are ordered by their
    first leg, then by key, so the result does not depend on input order.

    Args:
        flights: Flights to group
        tz: Zone applied to starts without an offset (default: UTC)

    Returns:
        Dictionary mapping trip key to its ordered legs
    """
    groups = defaultdict(list)
    for flight in flights:
        groups[flight.group_key].append(flight)

    ordered = {key: sort_legs(legs, tz) for key, legs in groups.items()}
    keys = sorted(ordered, key=lambda k: (_leg_sort_key(ordered[k][0], tz), k))
    return {key: ordered[key] for key in keys}


def build_route(legs: Iterable[Flight], tz: Optional[tzinfo] = None) -> str:
    """
    Build a human-readable route such as "TEB - PBI - ASE".

    An origin equal to the previous station is not repeated. Returns an
    empty string when no leg carries a station.
    """
    route: List[str] = []

    for leg in sort_legs(legs, tz):
        if leg.origin and (not route or route[-1] != leg.origin):
            route.append(leg.origin)
        if leg.destination:
            route.append(leg.destination)

    return ROUTE_SEPARATOR.join(route)

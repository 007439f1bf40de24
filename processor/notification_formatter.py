"""Formatting of change notifications."""
from datetime import datetime, timezone
from typing import List, Optional, Sequence
from zoneinfo import ZoneInfo

from processor.models import CrewMember, Flight, NotificationKind
from processor.trips import build_route, first_leg, parse_start, sort_legs

ICON_MAINTENANCE = '\U0001F527'
ICON_FLIGHT = '\U0001F6EB'
ICON_EVENT = '\U0001F4C5'
ICON_CREW = '\U0001F468\u200D\u2708\uFE0F'
ICON_WARNING = '\u26A0\uFE0F'

SESSION_EXPIRED_MESSAGE = f"{ICON_WARNING} Session expired! Update SESSION_COOKIE"


def event_icon(event_type: Optional[str]) -> str:
    if not event_type:
        return ICON_EVENT

    lowered = event_type.lower()
    if 'maintenance' in lowered:
        return ICON_MAINTENANCE
    if 'flight' in lowered or 'customer' in lowered:
        return ICON_FLIGHT
    return ICON_EVENT


def simplify_event_type(event_type: Optional[str]) -> str:
    if not event_type:
        return 'Event'

    lowered = event_type.lower()
    if 'flight' in lowered or 'customer' in lowered:
        return 'Flight'
    return event_type


def first_name(full_name: str) -> str:
    parts = full_name.split()
    return parts[0] if parts else full_name


class NotificationFormatter:
    """Turns detected changes into notification text."""

    def __init__(self, time_zone: str = 'America/New_York'):
        """
        Initialize the formatter.

        Args:
            time_zone: IANA zone used for displayed times and "today"
        """
        self.tz = ZoneInfo(time_zone)

    def format(
        self,
        kind: NotificationKind,
        trip: Sequence[Flight],
        now: Optional[datetime] = None
    ) -> str:
        """
        Format a notification for a trip.

        Args:
            kind: Kind of change
            trip: Legs of the trip (ignored for session expiry)
            now: Reference instant for "today" (default: current time)

        Returns:
            Notification text

        Raises:
            ValueError: If a trip notification is requested for no legs
        """
        if kind is NotificationKind.SESSION_EXPIRED:
            return self.format_session_expired()

        leg = first_leg(trip, self.tz)
        if leg is None:
            raise ValueError(f"Cannot format {kind.value} notification for an empty trip")

        if kind is NotificationKind.NEW_TRIP:
            return self._format_new_trip(leg, trip, now)
        return self._format_crew_change(leg, trip, now)

    def format_session_expired(self) -> str:
        return SESSION_EXPIRED_MESSAGE

    def describe_trip(self, legs: Sequence[Flight]) -> str:
        """One-line trip summary, e.g. "N84UP: TEB - PBI [Customer Flight]"."""
        leg = first_leg(legs, self.tz)
        aircraft = (leg.aircraft if leg else None) or '?'
        event_type = (leg.event_type_name if leg else None) or 'Unknown'
        route = build_route(legs, self.tz)
        return f"{aircraft}: {route or event_type} [{event_type}]"

    def format_time(self, start: Optional[str], now: Optional[datetime] = None) -> str:
        """
        Render a start time in the configured zone.

        Returns "today at HH:MM" for starts on today's local date,
        "Mon D at HH:MM" otherwise and "Unknown time" when unparsable.
        """
        parsed = parse_start(start, self.tz)
        if parsed is None:
            return 'Unknown time'

        local = parsed.astimezone(self.tz)
        today = (now or datetime.now(timezone.utc)).astimezone(self.tz).date()
        clock = local.strftime('%H:%M')

        if local.date() == today:
            return f"today at {clock}"
        return f"{local.strftime('%b')} {local.day} at {clock}"

    def crew_text(self, legs: Sequence[Flight]) -> str:
        """
        Summarize the crew of a trip.

        Uses "PIC: <first>, SIC: <first>" when pilot roles are present,
        otherwise all first names.
        """
        crew = self._representative_crew(legs)

        pic = next((m for m in crew if 'pic' in m.role.lower()), None)
        sic = next((m for m in crew if 'sic' in m.role.lower()), None)

        parts = []
        for member in (pic, sic):
            if member is None:
                continue
            role = 'PIC' if 'PIC' in member.role.upper() else 'SIC'
            parts.append(f"{role}: {first_name(member.name)}")

        if parts:
            return ', '.join(parts)
        return ', '.join(first_name(m.name) for m in crew)

    def _format_new_trip(
        self,
        leg: Flight,
        trip: Sequence[Flight],
        now: Optional[datetime]
    ) -> str:
        icon = event_icon(leg.event_type_name)
        label = simplify_event_type(leg.event_type_name)
        when = self.format_time(leg.start, now)
        aircraft = leg.aircraft or 'Unknown'
        route = build_route(trip, self.tz)

        message = f"{icon} {label}: {when} on {aircraft}"
        if route:
            message = f"{message} {route}"
        return message

    def _format_crew_change(
        self,
        leg: Flight,
        trip: Sequence[Flight],
        now: Optional[datetime]
    ) -> str:
        when = self.format_time(leg.start, now)
        route = build_route(trip, self.tz)
        return f"{ICON_CREW} Crew: {self.crew_text(trip)} - {when} {route}".rstrip()

    def _representative_crew(self, legs: Sequence[Flight]) -> List[CrewMember]:
        # First leg's crew, or the first later leg that has one
        for leg in sort_legs(legs, self.tz):
            if leg.crew:
                return list(leg.crew)
        return []

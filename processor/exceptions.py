"""Exceptions raised across the crew lineup monitor."""


class CrewLineupError(Exception):
    """Base class for monitor errors."""


class TransportError(CrewLineupError):
    """Schedule feed could not be retrieved after all retry attempts."""


class AuthExpiredError(CrewLineupError):
    """Portal session cookie is no longer valid."""


class ScheduleParseError(CrewLineupError):
    """Schedule feed response was not a JSON list of records."""


class MalformedRecordError(CrewLineupError):
    """A single raw record could not be normalized."""


class SnapshotLoadError(CrewLineupError):
    """Stored snapshot is missing pieces or could not be decoded."""


class SnapshotSaveError(CrewLineupError):
    """Snapshot could not be persisted."""


class NotificationError(CrewLineupError):
    """Notification could not be delivered."""

"""Unit tests for ChangeMonitor poll cycles."""
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from processor.change_monitor import ChangeMonitor
from processor.exceptions import (
    AuthExpiredError,
    NotificationError,
    SnapshotLoadError,
    TransportError,
)
from processor.flight_normalizer import FlightNormalizer
from processor.models import MonitorConfig
from processor.notification_formatter import ICON_CREW, ICON_FLIGHT, SESSION_EXPIRED_MESSAGE

NOW = datetime(2030, 1, 10, 12, 0, tzinfo=timezone.utc)


def make_record(uuid, pnr, start='2030-01-15T10:00:00-05:00', aircraft='N84UP',
                origin='TEB', destination='PBI', crew=None):
    return {
        'start': start,
        'extendedProps': {
            'uuid': uuid,
            'pnr': pnr,
            'aircraft': aircraft,
            'origin_short': origin,
            'destination_short': destination,
            'event_type_name': 'Customer Flight',
            'crew': crew if crew is not None else [],
        },
    }


@pytest.fixture
def source():
    return Mock()


@pytest.fixture
def store():
    return Mock()


@pytest.fixture
def notifier():
    return Mock()


def build_monitor(source, store, notifier, **config):
    return ChangeMonitor(source, store, notifier, MonitorConfig(**config))


class TestChangeMonitor:
    """Test cases for ChangeMonitor class."""

    def test_first_run_saves_baseline(self, source, store, notifier):
        """Test that a missing snapshot saves a baseline without notifying."""
        source.fetch_records.return_value = [make_record('leg-1', 'PNR123')]
        store.load.return_value = None

        result = build_monitor(source, store, notifier).run_cycle(NOW)

        assert result.baseline is True
        assert result.notifications_sent == 0
        notifier.send.assert_not_called()
        store.save.assert_called_once()
        saved = store.save.call_args[0][0]
        assert [f.id for f in saved] == ['leg-1']

    def test_corrupt_snapshot_treated_as_first_run(self, source, store, notifier, caplog):
        """Test that an unreadable snapshot rebuilds the baseline."""
        source.fetch_records.return_value = [make_record('leg-1', 'PNR123')]
        store.load.side_effect = SnapshotLoadError('bad json')

        with caplog.at_level(logging.WARNING):
            result = build_monitor(source, store, notifier).run_cycle(NOW)

        assert result.baseline is True
        notifier.send.assert_not_called()
        store.save.assert_called_once()
        assert any('rebuilding baseline' in r.message for r in caplog.records)

    def test_new_trip_notification(self, source, store, notifier):
        """Test that a new trip sends one notification and saves once."""
        source.fetch_records.return_value = [
            make_record('leg-1', 'PNR123', origin='TEB', destination='PBI'),
            make_record('leg-2', 'PNR123', start='2030-01-15T15:00:00-05:00',
                        origin='PBI', destination='ASE'),
        ]
        store.load.return_value = []

        result = build_monitor(source, store, notifier).run_cycle(NOW)

        assert result.baseline is False
        assert result.new_trips == 1
        notifier.send.assert_called_once_with(
            f"{ICON_FLIGHT} Flight: Jan 15 at 10:00 on N84UP TEB - PBI - ASE"
        )
        store.save.assert_called_once()

    def test_unchanged_schedule_sends_nothing(self, source, store, notifier):
        """Test that re-running on identical data is idempotent."""
        records = [make_record('leg-1', 'PNR123', crew=[{'name': 'A Smith', 'role': 'PIC'}])]
        source.fetch_records.return_value = records
        store.load.return_value = FlightNormalizer().normalize_records(records)

        result = build_monitor(source, store, notifier).run_cycle(NOW)

        assert result.new_trips == 0
        assert result.crew_changes == 0
        notifier.send.assert_not_called()
        store.save.assert_called_once()

    def test_crew_change_notification(self, source, store, notifier):
        """Test that a roster change sends a crew notification only."""
        previous_record = make_record('leg-1', 'PNR5', crew=[{'name': 'A Smith', 'role': 'PIC'}])
        current_record = make_record('leg-1', 'PNR5', crew=[
            {'name': 'A Smith', 'role': 'PIC'},
            {'name': 'B Jones', 'role': 'SIC'},
        ])
        source.fetch_records.return_value = [current_record]
        store.load.return_value = [FlightNormalizer().normalize(previous_record)]

        result = build_monitor(source, store, notifier).run_cycle(NOW)

        assert result.new_trips == 0
        assert result.crew_changes == 1
        notifier.send.assert_called_once_with(
            f"{ICON_CREW} Crew: PIC: A, SIC: B - Jan 15 at 10:00 TEB - PBI"
        )

    def test_crew_change_with_structural_policy_sends_both(self, source, store, notifier):
        """Test that the structural policy also reports the trip as new."""
        previous_record = make_record('leg-1', 'PNR5', crew=[{'name': 'A Smith', 'role': 'PIC'}])
        current_record = make_record('leg-1', 'PNR5', crew=[{'name': 'B Jones', 'role': 'PIC'}])
        source.fetch_records.return_value = [current_record]
        store.load.return_value = [FlightNormalizer().normalize(previous_record)]

        monitor = build_monitor(source, store, notifier, suppress_known_trips=False)
        result = monitor.run_cycle(NOW)

        assert result.new_trips == 1
        assert result.crew_changes == 1
        assert notifier.send.call_count == 2

    def test_past_flights_excluded_and_not_saved(self, source, store, notifier):
        """Test that past flights are neither notified nor persisted."""
        past = (NOW - timedelta(hours=1)).isoformat()
        source.fetch_records.return_value = [
            make_record('old', 'PNR1', start=past),
            make_record('new', 'PNR2'),
        ]
        store.load.return_value = []

        result = build_monitor(source, store, notifier).run_cycle(NOW)

        assert result.flights_upcoming == 1
        assert result.new_trips == 1
        saved = store.save.call_args[0][0]
        assert [f.id for f in saved] == ['new']

    def test_tracked_aircraft_filter(self, source, store, notifier, caplog):
        """Test that untracked aircraft are ignored and missing ones logged."""
        source.fetch_records.return_value = [
            make_record('leg-1', 'PNR1', aircraft='N84UP'),
            make_record('leg-2', 'PNR2', aircraft='N999ZZ'),
        ]
        store.load.return_value = []
        monitor = build_monitor(
            source, store, notifier,
            tracked_aircraft=frozenset({'N84UP', 'N717KV'})
        )

        with caplog.at_level(logging.WARNING):
            result = monitor.run_cycle(NOW)

        assert result.flights_normalized == 2
        assert result.flights_relevant == 1
        assert notifier.send.call_count == 1
        assert any('Missing aircraft: N717KV' in r.message for r in caplog.records)

    def test_malformed_records_dropped(self, source, store, notifier):
        """Test that a malformed record does not abort the cycle."""
        source.fetch_records.return_value = ['junk', make_record('leg-1', 'PNR1')]
        store.load.return_value = None

        result = build_monitor(source, store, notifier).run_cycle(NOW)

        assert result.raw_records == 2
        assert result.flights_normalized == 1

    def test_notification_failure_does_not_block_others(self, source, store, notifier):
        """Test that one failed send is logged and the rest still go out."""
        source.fetch_records.return_value = [
            make_record('leg-1', 'PNR1'),
            make_record('leg-2', 'PNR2', start='2030-01-16T10:00:00-05:00'),
        ]
        store.load.return_value = []
        notifier.send.side_effect = [NotificationError('ntfy down'), None]

        result = build_monitor(source, store, notifier).run_cycle(NOW)

        assert notifier.send.call_count == 2
        assert result.notifications_sent == 1
        assert result.notifications_failed == 1
        assert result.errors == ['ntfy down']
        store.save.assert_called_once()

    def test_auth_expired_notifies_and_raises(self, source, store, notifier):
        """Test that an expired session is surfaced as a notification."""
        source.fetch_records.side_effect = AuthExpiredError('login page')

        with pytest.raises(AuthExpiredError):
            build_monitor(source, store, notifier).run_cycle(NOW)

        notifier.send.assert_called_once_with(SESSION_EXPIRED_MESSAGE)
        store.load.assert_not_called()
        store.save.assert_not_called()

    def test_auth_expired_raises_even_if_notification_fails(self, source, store, notifier):
        """Test that a failed expiry notification does not hide the error."""
        source.fetch_records.side_effect = AuthExpiredError('login page')
        notifier.send.side_effect = NotificationError('ntfy down')

        with pytest.raises(AuthExpiredError):
            build_monitor(source, store, notifier).run_cycle(NOW)

    def test_transport_error_propagates(self, source, store, notifier):
        """Test that fetch failures end the cycle without touching the store."""
        source.fetch_records.side_effect = TransportError('timeout')

        with pytest.raises(TransportError):
            build_monitor(source, store, notifier).run_cycle(NOW)

        notifier.send.assert_not_called()
        store.save.assert_not_called()

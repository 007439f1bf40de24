"""Client for the aircraft schedule JSON feed."""
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import requests

from processor.exceptions import AuthExpiredError, ScheduleParseError, TransportError

logger = logging.getLogger(__name__)


class ScheduleClient:
    """Fetches raw schedule records for a fleet of aircraft."""

    BASE_URL = "https://portal.jetinsight.com/schedule/aircraft.json"
    SESSION_COOKIE_NAME = "_app_session"

    def __init__(
        self,
        aircraft_uuids: Sequence[str],
        session_cookie: str,
        base_url: Optional[str] = None,
        time_zone: str = 'America/New_York',
        days_ahead: int = 7,
        timeout: int = 30,
        max_retries: int = 3,
        retry_delay: float = 5
    ):
        """
        Initialize the schedule client.

        Args:
            aircraft_uuids: Portal UUIDs of the aircraft to fetch
            session_cookie: Portal session cookie value
            base_url: Feed URL (default: BASE_URL)
            time_zone: Zone the portal renders times in
            days_ahead: Length of the fetch window in days (default: 7)
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts before giving up (default: 3)
            retry_delay: Fixed delay between attempts in seconds (default: 5)
        """
        self.aircraft_uuids = list(aircraft_uuids)
        self.session_cookie = session_cookie
        self.base_url = base_url or self.BASE_URL
        self.time_zone = time_zone
        self.days_ahead = days_ahead
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay

    def fetch_records(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Fetch raw schedule records with retry logic.

        Args:
            now: Start of the fetch window (default: current time)

        Returns:
            List of raw record dictionaries

        Raises:
            AuthExpiredError: If the portal session has expired (not retried)
            TransportError: If every attempt failed at the HTTP level
            ScheduleParseError: If every attempt returned an unusable body
        """
        params = self._build_params(now or datetime.now(timezone.utc))
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                logger.info(
                    f"Fetching schedule (attempt {attempt + 1}/{self.max_retries})"
                )
                records = self._fetch_once(params)
                logger.info(f"Found {len(records)} total events from schedule feed")
                return records

            except (requests.RequestException, ScheduleParseError) as e:
                last_error = e
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"Schedule fetch failed (attempt {attempt + 1}/{self.max_retries}): "
                        f"{e}. Retrying in {self.retry_delay} seconds..."
                    )
                    time.sleep(self.retry_delay)

        logger.error(
            f"All {self.max_retries} schedule fetch attempts failed. Last error: {last_error}"
        )
        if isinstance(last_error, ScheduleParseError):
            raise last_error
        raise TransportError(str(last_error)) from last_error

    def _fetch_once(self, params: List[tuple]) -> List[Dict[str, Any]]:
        response = requests.get(
            self.base_url,
            params=params,
            cookies={self.SESSION_COOKIE_NAME: self.session_cookie},
            timeout=self.timeout
        )

        if response.status_code in (401, 403):
            raise AuthExpiredError(
                f"Schedule feed returned HTTP {response.status_code}"
            )
        response.raise_for_status()

        if self._is_login_page(response.text):
            raise AuthExpiredError("Schedule feed returned an HTML page")

        try:
            payload = response.json()
        except ValueError as e:
            raise ScheduleParseError(f"Invalid JSON in schedule response: {e}") from e

        if not isinstance(payload, list):
            raise ScheduleParseError(
                f"Expected a JSON list, got {type(payload).__name__}"
            )
        return payload

    def _build_params(self, now: datetime) -> List[tuple]:
        """
        Build query parameters for the fetch window.

        Args:
            now: Start of the window

        Returns:
            List of (name, value) pairs; uuid[] repeats once per aircraft
        """
        start = now.astimezone(timezone.utc).replace(microsecond=0)
        end = start + timedelta(days=self.days_ahead)

        params = [
            ('start', start.isoformat().replace('+00:00', 'Z')),
            ('end', end.isoformat().replace('+00:00', 'Z')),
            ('time_zone', self.time_zone),
            ('view', 'rollingMonth'),
        ]
        params.extend(('uuid[]', uuid) for uuid in self.aircraft_uuids)
        params.append(('parallel_load', 'true'))
        return params

    @staticmethod
    def _is_login_page(body: str) -> bool:
        return '<!doctype html' in body[:512].lower()

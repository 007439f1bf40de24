"""Push notification delivery through ntfy."""
import logging

import requests

from processor.exceptions import NotificationError

logger = logging.getLogger(__name__)


class NtfyNotifier:
    """Publishes messages to an ntfy topic."""

    DEFAULT_SERVER = "https://ntfy.sh"

    def __init__(self, topic: str, server: str = DEFAULT_SERVER, timeout: int = 10):
        """
        Initialize the notifier.

        Args:
            topic: ntfy topic name
            server: ntfy server base URL (default: https://ntfy.sh)
            timeout: HTTP request timeout in seconds (default: 10)
        """
        self.topic = topic
        self.server = server.rstrip('/')
        self.timeout = timeout

    @property
    def url(self) -> str:
        return f"{self.server}/{self.topic}"

    def send(self, message: str) -> None:
        """
        Publish a single message.

        Args:
            message: Notification text

        Raises:
            NotificationError: If the message could not be delivered
        """
        logger.info(f"Sending notification: {message}")

        try:
            response = requests.post(
                self.url,
                data=message.encode('utf-8'),
                timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise NotificationError(f"Failed to publish to {self.url}: {e}") from e

        logger.info("Notification sent successfully")

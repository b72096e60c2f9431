"""
Postgres LISTEN/NOTIFY wake-up source for the dispatcher.

The SMS gateway sends a NOTIFY on the configured channel after appending
an inbound message.
"""

import logging
from typing import Callable, Optional

import asyncpg
from sqlalchemy.engine import make_url
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

logger = logging.getLogger(__name__)


def to_asyncpg_dsn(database_url: str) -> Optional[str]:
    """
    Convert an SQLAlchemy URL to a plain asyncpg DSN.

    Returns:
        The DSN, or None for databases without LISTEN support
    """
    url = make_url(database_url)
    if url.get_backend_name() != "postgresql":
        return None
    return url.set(drivername="postgresql").render_as_string(hide_password=False)


class NotificationListener:
    """Calls ``on_notify`` for every notification on a Postgres channel."""

    def __init__(self, dsn: str, channel: str, on_notify: Callable[[], None]):
        self.dsn = dsn
        self.channel = channel
        self.on_notify = on_notify
        self._connection: Optional[asyncpg.Connection] = None

    @retry(
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        retry=retry_if_exception_type((OSError, asyncpg.PostgresError)),
        reraise=True
    )
    async def _connect(self) -> asyncpg.Connection:
        """Open the listening connection with retry logic."""
        return await asyncpg.connect(self.dsn)

    async def start(self) -> None:
        """Connect and subscribe to the channel."""
        self._connection = await self._connect()
        self._connection.add_termination_listener(self._on_termination)
        await self._connection.add_listener(self.channel, self._on_notification)
        logger.info(f"Listening for notifications on '{self.channel}'")

    async def stop(self) -> None:
        """Unsubscribe and close the connection."""
        if self._connection is None:
            return
        connection, self._connection = self._connection, None
        if not connection.is_closed():
            await connection.remove_listener(self.channel, self._on_notification)
            await connection.close()
        logger.info(f"Stopped listening on '{self.channel}'")

    def _on_notification(self, connection, pid, channel, payload) -> None:
        logger.info(f"Received notification on '{channel}': {payload}")
        self.on_notify()

    def _on_termination(self, connection) -> None:
        # The periodic re-check keeps the inbox drained until restart.
        logger.warning(f"Notification connection for '{self.channel}' was closed")

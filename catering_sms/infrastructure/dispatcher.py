"""
Intake loop claiming inbound messages and running them through the pipeline.

Each message is processed in its own transaction: the pipeline states,
ledger rows, reply and processed flag either all commit or none do, in
which case the message stays in the inbox and is retried later.
"""

import asyncio
import logging
from typing import Collection, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catering_sms.config.settings import Settings
from catering_sms.infrastructure.inbox import claim_next_message, mark_processed
from catering_sms.usecases.pipeline import MessagePipeline
from catering_sms.usecases.roster import fetch_roster

logger = logging.getLogger(__name__)


class MessageDispatcher:
    """Drains the inbox and sleeps until woken by a notification or re-check."""

    def __init__(self, session_factory: async_sessionmaker, settings: Settings):
        self.session_factory = session_factory
        self.settings = settings
        self._wakeup = asyncio.Event()
        self._stopped = False
        self.claimed_id: Optional[str] = None

    def wake(self) -> None:
        """Request a drain of the inbox."""
        self._wakeup.set()

    async def recheck(self) -> None:
        """Periodic wake-up for notifications that were missed."""
        self.wake()

    def stop(self) -> None:
        """Make run_forever return after the current drain."""
        self._stopped = True
        self._wakeup.set()

    def _pipeline(self, session: AsyncSession) -> MessagePipeline:
        return MessagePipeline(
            session,
            locale=self.settings.reply_locale,
            max_distance=self.settings.fuzzy_max_distance,
            require_explicit_student=self.settings.require_explicit_student,
        )

    async def process_next(self, exclude: Collection[str] = ()) -> bool:
        """
        Claim and process one inbound message in a single transaction.

        The id of the claimed message is kept in ``claimed_id`` so a caller
        can tell which message a raised error belongs to.

        Args:
            exclude: Ids of messages not to claim

        Returns:
            True if a message was claimed, False if the inbox is empty

        Raises:
            SQLAlchemyError: If storage fails; the transaction is rolled back
        """
        async with self.session_factory() as session:
            async with session.begin():
                self.claimed_id = None
                message = await claim_next_message(session, exclude)
                if message is None:
                    return False

                message_id = self.claimed_id = message.id
                logger.info(f"Received message {message_id}: {message.content!r} from {message.phone}")

                guardian_id, students = await fetch_roster(
                    session, message.phone, self.settings.phone_country_prefix
                )
                if guardian_id is None:
                    logger.info(f"Skipped message {message.id}, no guardian matches phone: {message.phone}")
                else:
                    await self._pipeline(session).run(message, students)

                await mark_processed(session, message)

        logger.info(f"Message {message_id} processed")
        return True

    async def drain(self) -> int:
        """
        Process inbound messages until none is left.

        A failed message's transaction is rolled back, so it stays unprocessed
        and is retried on the next wake-up. A storage error ends the drain.
        Any other failure only skips that message for the rest of the drain,
        so later messages are not held up behind it.

        Returns:
            Number of messages processed
        """
        processed = 0
        failed = set()
        while not self._stopped:
            try:
                if not await self.process_next(failed):
                    break
            except SQLAlchemyError as e:
                logger.exception(f"Storage error while processing message, rolled back: {e}")
                break
            except Exception as e:
                logger.exception(f"Failed to process message {self.claimed_id}, rolled back: {e}")
                if self.claimed_id is None:
                    break
                failed.add(self.claimed_id)
                continue
            processed += 1
        return processed

    async def run_forever(self, timeout: Optional[float] = None) -> None:
        """
        Drain the inbox, then wait for wake-ups until stopped.

        Args:
            timeout: Longest wait between drains without a wake-up
        """
        count = await self.drain()
        logger.info(f"Caught up after {count} stale message(s), waiting for notifications")

        while not self._stopped:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()
            if self._stopped:
                break
            count = await self.drain()
            if count:
                logger.info(f"Processed {count} message(s), waiting for next notification")

        logger.info("Dispatcher stopped")

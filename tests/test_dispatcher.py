"""
Tests for the inbox dispatcher and its wake-up sources.
"""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from catering_sms.domain.attendance import AttendanceEntry
from catering_sms.domain.message import (
    InboundMessage,
    OutboundMessage,
    ProcessingRecord,
    ProcessingTrigger,
)
from catering_sms.infrastructure.dispatcher import MessageDispatcher
from catering_sms.infrastructure.inbox import requeue_message
from catering_sms.infrastructure.notifications import NotificationListener, to_asyncpg_dsn
from catering_sms.infrastructure.scheduler import (
    RECHECK_JOB_ID,
    get_scheduler,
    schedule_recheck,
    stop_scheduler,
)
from catering_sms.usecases.roster import fetch_roster


async def count(session_factory, model):
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def is_processed(session_factory, message_id):
    async with session_factory() as session:
        return (await session.execute(
            select(InboundMessage.processed).where(InboundMessage.id == message_id)
        )).scalar_one()


class TestMessageDispatcher:
    """Tests for claiming and processing inbound messages."""

    @pytest_asyncio.fixture
    async def dispatcher(self, roster, session_factory, test_settings):
        return MessageDispatcher(session_factory, test_settings)

    @pytest_asyncio.fixture
    async def enqueue(self, session_factory):
        async def add(content, phone="+48600100200", arrived_at=datetime(2025, 1, 10, 8, 0)):
            async with session_factory() as session:
                message = InboundMessage(phone=phone, content=content, arrived_at=arrived_at)
                session.add(message)
                await session.commit()
                return message.id
        return add

    @pytest.mark.asyncio
    async def test_empty_inbox(self, dispatcher):
        """Nothing to claim means nothing processed."""
        assert await dispatcher.process_next() is False

    @pytest.mark.asyncio
    async def test_process_next(self, dispatcher, session_factory, enqueue):
        """A claimed message is processed and answered in one transaction."""
        message_id = await enqueue("Kamil 13-01-2025 14-01-2025")

        assert await dispatcher.process_next() is True

        assert await is_processed(session_factory, message_id)
        async with session_factory() as session:
            reply = (await session.execute(select(OutboundMessage))).scalar_one()
        assert reply.phone == "+48600100200"
        assert reply.content == "Cancelled:\nKamil: Breakfast 2, Lunch 2"
        assert not reply.sent
        assert await count(session_factory, AttendanceEntry) == 4

    @pytest.mark.asyncio
    async def test_unknown_sender(self, dispatcher, session_factory, enqueue):
        """Messages from unknown numbers are marked processed without a reply."""
        message_id = await enqueue("Kamil 13-01-2025", phone="+48111222333")

        assert await dispatcher.process_next() is True

        assert await is_processed(session_factory, message_id)
        assert await count(session_factory, OutboundMessage) == 0
        assert await count(session_factory, ProcessingTrigger) == 0

    @pytest.mark.asyncio
    async def test_oldest_first(self, dispatcher, session_factory, enqueue):
        """Messages are handled in arrival order."""
        await enqueue("Kamil 14-01-2025", arrived_at=datetime(2025, 1, 10, 9, 0))
        await enqueue("xyz", arrived_at=datetime(2025, 1, 10, 8, 0))

        assert await dispatcher.drain() == 2

        async with session_factory() as session:
            replies = (await session.execute(
                select(OutboundMessage.content).order_by(OutboundMessage.id)
            )).scalars().all()
        assert replies == [
            "The term 'xyz' is not a valid meal or student name",
            "Cancelled:\nKamil: Breakfast 1, Lunch 1",
        ]

    @pytest.mark.asyncio
    async def test_failure_rolls_back_everything(self, dispatcher, session_factory, enqueue):
        """A failing run leaves no trace and the message is retried."""
        message_id = await enqueue("Kamil 13-01-2025 14-01-2025")

        with patch(
            "catering_sms.usecases.pipeline.count_effective_cancellations",
            new_callable=AsyncMock,
            side_effect=OperationalError("SELECT", {}, Exception("database is gone")),
        ):
            assert await dispatcher.drain() == 0

        assert not await is_processed(session_factory, message_id)
        assert await count(session_factory, AttendanceEntry) == 0
        assert await count(session_factory, ProcessingRecord) == 0
        assert await count(session_factory, OutboundMessage) == 0

        assert await dispatcher.drain() == 1

        assert await is_processed(session_factory, message_id)
        assert await count(session_factory, AttendanceEntry) == 4
        assert await count(session_factory, OutboundMessage) == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_keeps_message(self, dispatcher, session_factory, enqueue):
        """Non-storage errors are rolled back too."""
        message_id = await enqueue("Kamil 13-01-2025")

        with patch(
            "catering_sms.infrastructure.dispatcher.fetch_roster",
            new_callable=AsyncMock,
            side_effect=RuntimeError("boom"),
        ):
            assert await dispatcher.drain() == 0

        assert not await is_processed(session_factory, message_id)

    @pytest.mark.asyncio
    async def test_failing_message_does_not_block_later_ones(self, dispatcher, session_factory, enqueue):
        """A message failing on every run is skipped so newer ones still get through."""
        failing_id = await enqueue("Kamil 13-01-2025", phone="+48999888777", arrived_at=datetime(2025, 1, 10, 8, 0))
        good_id = await enqueue("Kamil 14-01-2025", arrived_at=datetime(2025, 1, 10, 9, 0))

        async def roster_for(session, phone, country_prefix):
            if phone == "+48999888777":
                raise RuntimeError("boom")
            return await fetch_roster(session, phone, country_prefix)

        with patch("catering_sms.infrastructure.dispatcher.fetch_roster", side_effect=roster_for):
            assert await dispatcher.drain() == 1
            assert await dispatcher.drain() == 0

        assert not await is_processed(session_factory, failing_id)
        assert await is_processed(session_factory, good_id)
        assert await count(session_factory, OutboundMessage) == 1

        assert await dispatcher.drain() == 1
        assert await is_processed(session_factory, failing_id)

    @pytest.mark.asyncio
    async def test_storage_error_ends_drain(self, dispatcher, session_factory, enqueue):
        """Storage errors stop the drain instead of moving on to the next message."""
        first_id = await enqueue("Kamil 13-01-2025", arrived_at=datetime(2025, 1, 10, 8, 0))
        second_id = await enqueue("Kamil 14-01-2025", arrived_at=datetime(2025, 1, 10, 9, 0))

        with patch(
            "catering_sms.infrastructure.dispatcher.fetch_roster",
            new_callable=AsyncMock,
            side_effect=OperationalError("SELECT", {}, Exception("database is gone")),
        ) as mock_roster:
            assert await dispatcher.drain() == 0

        assert mock_roster.await_count == 1
        assert not await is_processed(session_factory, first_id)
        assert not await is_processed(session_factory, second_id)

    @pytest.mark.asyncio
    async def test_requeue_runs_again(self, dispatcher, session_factory, enqueue):
        """A requeued message gets a second, separately audited run."""
        message_id = await enqueue("Kamil 13-01-2025")
        await dispatcher.drain()

        async with session_factory() as session:
            assert await requeue_message(session, message_id)
        assert await dispatcher.drain() == 1

        assert await count(session_factory, ProcessingTrigger) == 2
        async with session_factory() as session:
            replies = (await session.execute(
                select(OutboundMessage.content).order_by(OutboundMessage.id)
            )).scalars().all()
        assert replies[-1] == "No attendance was cancelled"

    @pytest.mark.asyncio
    async def test_requeue_missing_message(self, session_factory):
        """Requeueing an unknown message reports it."""
        async with session_factory() as session:
            assert not await requeue_message(session, "missing")


class TestRunForever:
    """Tests for the wait-and-drain loop."""

    @pytest.fixture
    def dispatcher(self, test_settings):
        return MessageDispatcher(MagicMock(), test_settings)

    @pytest.mark.asyncio
    async def test_wake_triggers_drain(self, dispatcher):
        """A wake-up runs another drain."""
        calls = []

        async def drain():
            calls.append(1)
            if len(calls) == 2:
                dispatcher.stop()
            return 0

        dispatcher.drain = drain
        dispatcher.wake()

        await asyncio.wait_for(dispatcher.run_forever(), timeout=1)

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_timeout_triggers_drain(self, dispatcher):
        """Without wake-ups the inbox is still drained on timeout."""
        calls = []

        async def drain():
            calls.append(1)
            if len(calls) == 3:
                dispatcher.stop()
            return 0

        dispatcher.drain = drain

        await asyncio.wait_for(dispatcher.run_forever(timeout=0.01), timeout=1)

        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_recheck_wakes(self, dispatcher):
        """The periodic re-check is a wake-up."""
        await dispatcher.recheck()

        assert dispatcher._wakeup.is_set()


class TestRecheckScheduling:
    """Tests for the APScheduler re-check job."""

    @pytest.mark.asyncio
    async def test_schedule_recheck(self):
        """The re-check job is registered under a fixed id."""
        wake = AsyncMock()

        schedule_recheck(wake, 30)

        jobs = get_scheduler().get_jobs()
        assert [job.id for job in jobs] == [RECHECK_JOB_ID]
        assert jobs[0].trigger.interval.total_seconds() == 30

        await stop_scheduler()


class TestNotifications:
    """Tests for the LISTEN/NOTIFY wake-up source."""

    def test_asyncpg_dsn(self):
        """SQLAlchemy URLs are converted to plain asyncpg DSNs."""
        dsn = to_asyncpg_dsn("postgresql+asyncpg://wrangler:secret@db:5432/wrangler")

        assert dsn == "postgresql://wrangler:secret@db:5432/wrangler"

    def test_no_listen_support(self):
        """Other databases have no DSN."""
        assert to_asyncpg_dsn("sqlite+aiosqlite:///:memory:") is None

    @pytest.mark.asyncio
    async def test_listen_and_notify(self):
        """Notifications on the channel call the callback."""
        on_notify = MagicMock()
        connection = MagicMock()
        connection.add_listener = AsyncMock()
        connection.remove_listener = AsyncMock()
        connection.close = AsyncMock()
        connection.is_closed.return_value = False

        with patch("asyncpg.connect", new_callable=AsyncMock, return_value=connection):
            listener = NotificationListener("postgresql://localhost/wrangler", "received", on_notify)
            await listener.start()

        connection.add_listener.assert_awaited_once_with("received", listener._on_notification)
        listener._on_notification(connection, 1, "received", "")
        on_notify.assert_called_once()

        await listener.stop()
        connection.close.assert_awaited_once()

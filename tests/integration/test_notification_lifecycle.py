"""Integration tests for the full notification lifecycle.

Exercises the path a business event takes through the system, against a real
SQLite database:

- Fan-out of broadcast and transactional events into queue rows
- Processor runs delivering each row through its channel
- Retry with backoff, then success, for a flaky email transport
- In-app feed, delivery log and queue statistics after the runs
- Two processors sharing a queue never deliver the same row twice
"""

import threading

import pytest

from notifier.config.models import QueueConfig
from notifier.domain import Channel, EventType, QueueStatus, Recipient
from notifier.fanout import FanoutService, PreferenceService, StaticRecipientDirectory
from notifier.notifications import DeliveryResult
from notifier.persistence import (
    InAppNotificationRepository,
    NotificationLogRepository,
    QueueRepository,
    get_session,
)
from notifier.processing import QueueProcessor
from tests.helpers import (
    ManualClock,
    RecordingEmailTransport,
    make_dispatcher,
    referral_request_payload,
    referral_verified_payload,
    support_reply_payload,
)


@pytest.fixture
def lifecycle_clock():
    return ManualClock()


@pytest.fixture
def lifecycle_directory():
    return StaticRecipientDirectory(
        {
            42: [
                Recipient(user_id="seeker-1", email="seeker@example.com", name="Priya"),
                Recipient(user_id="ref-1", email="ref1@example.com", name="Arjun"),
                Recipient(user_id="ref-2", email="ref2@example.com", name="Kavya"),
            ]
        }
    )


def _feed(user_id):
    with get_session() as session:
        return InAppNotificationRepository(session).list_for_user(user_id)


class TestNotificationLifecycle:
    def test_broadcast_reaches_referrer_feeds(self, database, lifecycle_directory, lifecycle_clock):
        transport = RecordingEmailTransport()
        PreferenceService().set_preference("ref-2", EventType.NEW_REFERRAL_REQUEST, Channel.EMAIL, True)

        fanout = FanoutService(directory=lifecycle_directory, clock=lifecycle_clock)
        processor = QueueProcessor(make_dispatcher(transport), clock=lifecycle_clock)

        fanned = fanout.notify("new_referral_request", referral_request_payload())
        result = processor.run_once()

        assert fanned.enqueued == 3
        assert result.sent == 3
        assert transport.recipients == ["ref2@example.com"]
        assert transport.sent[0]["subject"] == "Priya is looking for a referral at Acme"
        assert "Hi Kavya" in transport.sent[0]["text_body"]

        assert [n.body for n in _feed("ref-1")] == ["Priya is looking for a referral at Acme"]
        assert len(_feed("ref-2")) == 1
        assert _feed("seeker-1") == []

    def test_flaky_email_retried_until_sent(self, database, lifecycle_clock):
        transport = RecordingEmailTransport(
            [DeliveryResult.failed("421 try again later"), DeliveryResult.failed("421 try again later")]
        )
        fanout = FanoutService(clock=lifecycle_clock)
        processor = QueueProcessor(make_dispatcher(transport), clock=lifecycle_clock)

        fanned = fanout.notify("referral_verified", referral_verified_payload())
        first = processor.run_once()

        # in-app and push go out on the first run; email is requeued
        assert fanned.enqueued == 3
        assert (first.sent, first.requeued) == (2, 1)
        assert _feed("referrer-1")[0].title == "You earned ₹500!"

        lifecycle_clock.advance(61)
        assert processor.run_once().requeued == 1

        lifecycle_clock.advance(121)
        assert processor.run_once().sent == 1

        email_id = next(
            item_id for item_id in fanned.enqueued_item_ids if _channel_of(item_id) is Channel.EMAIL
        )
        with get_session() as session:
            row = QueueRepository(session).get(email_id)
            attempts = NotificationLogRepository(session).get_for_queue_item(email_id)

        assert row.status is QueueStatus.SENT
        assert row.retry_count == 2
        assert [entry.status for entry in attempts] == ["failed", "failed", "sent"]
        assert len({call["subject"] for call in transport.sent}) == 1
        assert len(_feed("referrer-1")) == 1

        stats = processor.get_stats()
        assert stats.count(QueueStatus.SENT) == 3
        assert stats.count(QueueStatus.PENDING) == 0

    def test_overlapping_processors_share_queue(self, database, lifecycle_clock):
        transport = RecordingEmailTransport()
        fanout = FanoutService(clock=lifecycle_clock)
        for i in range(30):
            fanout.notify(
                "support_reply",
                support_reply_payload(ticket_id=f"T-{i}"),
                channels=[Channel.EMAIL],
            )

        config = QueueConfig(batch_size=10, max_concurrency=3)
        processors = [
            QueueProcessor(make_dispatcher(transport), queue_config=config, clock=lifecycle_clock)
            for _ in range(2)
        ]
        barrier = threading.Barrier(len(processors))
        results = []

        def drain(processor):
            barrier.wait()
            while True:
                result = processor.run_once()
                results.append(result)
                if result.processed == 0:
                    return

        threads = [threading.Thread(target=drain, args=(p,)) for p in processors]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        subjects = [call["subject"] for call in transport.sent]
        assert len(subjects) == 30
        assert len(set(subjects)) == 30
        assert sum(r.sent for r in results) == 30


def _channel_of(item_id):
    with get_session() as session:
        return QueueRepository(session).get(item_id).channel

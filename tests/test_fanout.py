"""Tests for event fan-out into queue rows."""

from datetime import timedelta

import pytest

from notifier.config.models import ChannelDefaults, PreferenceDefaultsConfig
from notifier.domain import Channel, EventType, PayloadValidationError, QueueStatus, Recipient
from notifier.fanout import (
    FanoutService,
    PreferenceService,
    RecipientDirectory,
    StaticRecipientDirectory,
    build_defaults,
)
from notifier.persistence import PersistenceError, PreferenceRepository, QueueRepository, get_session
from tests.helpers import (
    ManualClock,
    referral_claimed_payload,
    referral_request_payload,
    support_reply_payload,
)


@pytest.fixture
def directory():
    return StaticRecipientDirectory(
        {
            42: [
                Recipient(user_id="seeker-1", email="seeker@example.com", name="Priya"),
                Recipient(user_id="ref-1", email="ref1@example.com", name="Arjun"),
                Recipient(user_id="ref-2", email="ref2@example.com", name="Kavya"),
                Recipient(user_id="ref-3", name="Rahul"),
            ],
            7: [Recipient(user_id="other-org")],
        }
    )


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def fanout(directory, clock):
    return FanoutService(directory=directory, clock=clock)


def _pending_rows():
    with get_session() as session:
        return QueueRepository(session).list_by_status(QueueStatus.PENDING, limit=1000)


class TestStaticRecipientDirectory:
    def test_excludes_requester(self, directory):
        ids = [r.user_id for r in directory.find_eligible_referrers(42, exclude_user_id="seeker-1")]
        assert ids == ["ref-1", "ref-2", "ref-3"]

    def test_organization_ids_match_as_strings(self, directory):
        assert [r.user_id for r in directory.find_eligible_referrers("7")] == ["other-org"]

    def test_unknown_organization(self, directory):
        assert directory.find_eligible_referrers(999) == []


class TestBroadcast:
    def test_referrers_get_in_app_by_default(self, database, fanout):
        result = fanout.notify(EventType.NEW_REFERRAL_REQUEST, referral_request_payload())

        rows = _pending_rows()
        assert result.recipient_count == 3
        assert result.enqueued == 3
        assert {row.recipient_user_id for row in rows} == {"ref-1", "ref-2", "ref-3"}
        assert {row.channel for row in rows} == {Channel.IN_APP}
        assert ("ref-1", Channel.EMAIL) in result.skipped
        assert ("ref-1", Channel.PUSH) in result.skipped

    def test_requester_never_notified(self, database, fanout):
        fanout.notify("new_referral_request", referral_request_payload())
        assert "seeker-1" not in {row.recipient_user_id for row in _pending_rows()}

    def test_email_opt_in_adds_email_row(self, database, fanout):
        PreferenceService().set_preference("ref-1", EventType.NEW_REFERRAL_REQUEST, Channel.EMAIL, True)

        result = fanout.notify("new_referral_request", referral_request_payload())

        rows = [row for row in _pending_rows() if row.recipient_user_id == "ref-1"]
        assert result.enqueued == 4
        assert {row.channel for row in rows} == {Channel.EMAIL, Channel.IN_APP}

        email_row = next(row for row in rows if row.channel is Channel.EMAIL)
        assert email_row.payload["recipient_email"] == "ref1@example.com"
        assert email_row.payload["recipient_name"] == "Arjun"
        assert email_row.payload["company_name"] == "Acme"

    def test_opt_in_without_address_skips_email(self, database, fanout):
        PreferenceService().set_preference("ref-3", EventType.NEW_REFERRAL_REQUEST, Channel.EMAIL, True)

        result = fanout.notify("new_referral_request", referral_request_payload())

        assert ("ref-3", Channel.EMAIL) in result.skipped
        rows = [row for row in _pending_rows() if row.recipient_user_id == "ref-3"]
        assert [row.channel for row in rows] == [Channel.IN_APP]

    def test_configured_defaults(self, database, directory, clock):
        defaults = build_defaults(
            PreferenceDefaultsConfig(broadcast=ChannelDefaults(email=True, push=False, in_app=True))
        )
        fanout = FanoutService(directory=directory, preference_defaults=defaults, clock=clock)

        result = fanout.notify("new_referral_request", referral_request_payload())

        # ref-3 has no address
        assert result.enqueued == 5

    def test_payload_recipient_fields_not_copied_to_referrers(self, database, fanout):
        for user_id in ("ref-1", "ref-3"):
            PreferenceService().set_preference(user_id, EventType.NEW_REFERRAL_REQUEST, Channel.EMAIL, True)

        result = fanout.notify(
            "new_referral_request",
            referral_request_payload(recipient_email="seeker@example.com", recipient_name="Priya"),
        )

        email_rows = [row for row in _pending_rows() if row.channel is Channel.EMAIL]
        assert [
            (row.recipient_user_id, row.payload["recipient_email"], row.payload["recipient_name"])
            for row in email_rows
        ] == [("ref-1", "ref1@example.com", "Arjun")]
        assert ("ref-3", Channel.EMAIL) in result.skipped

    def test_explicit_recipients_use_their_own_addresses(self, database, fanout):
        result = fanout.notify(
            "referral_claimed",
            referral_claimed_payload(),
            recipients=[
                Recipient(user_id="u1", email="u1@example.com", name="Uma"),
                Recipient(user_id="u2", name="Vikram"),
            ],
            channels=[Channel.EMAIL],
        )

        rows = _pending_rows()
        assert [(row.recipient_user_id, row.payload["recipient_email"]) for row in rows] == [
            ("u1", "u1@example.com")
        ]
        assert rows[0].payload["recipient_name"] == "Uma"
        assert ("u2", Channel.EMAIL) in result.skipped

    def test_missing_directory_reported(self, database):
        result = FanoutService().notify("new_referral_request", referral_request_payload())

        assert result.enqueued == 0
        assert "recipient directory" in result.errors[0]
        assert _pending_rows() == []

    def test_directory_failure_reported(self, database, clock):
        class UnreachableDirectory(RecipientDirectory):
            def find_eligible_referrers(self, organization_id, exclude_user_id=None):
                raise ConnectionError("directory down")

        fanout = FanoutService(directory=UnreachableDirectory(), clock=clock)

        result = fanout.notify("new_referral_request", referral_request_payload())

        assert result.recipient_count == 0
        assert result.enqueued == 0
        assert result.errors == ["Recipient lookup failed: directory down"]

    def test_no_eligible_recipients(self, database, fanout):
        result = fanout.notify("new_referral_request", referral_request_payload(organization_id=999))

        assert result.recipient_count == 0
        assert result.enqueued == 0
        assert _pending_rows() == []


class TestTransactional:
    def test_single_recipient_from_payload(self, database, fanout, clock):
        result = fanout.notify(EventType.REFERRAL_CLAIMED, referral_claimed_payload())

        rows = _pending_rows()
        assert result.recipient_count == 1
        assert {row.channel for row in rows} == {Channel.EMAIL, Channel.IN_APP}
        assert all(row.recipient_user_id == "seeker-1" for row in rows)
        assert all(row.scheduled_at == clock() for row in rows)
        assert all(row.max_retries == 3 for row in rows)

    def test_channel_master_switch(self, database, fanout):
        PreferenceService().set_channel_enabled("seeker-1", Channel.EMAIL, False)

        result = fanout.notify("referral_claimed", referral_claimed_payload())

        assert [row.channel for row in _pending_rows()] == [Channel.IN_APP]
        assert result.skipped == [("seeker-1", Channel.EMAIL)]

    def test_explicit_channels_and_schedule(self, database, fanout, clock):
        later = clock() + timedelta(hours=2)

        fanout.notify(
            "support_reply",
            support_reply_payload(),
            channels=[Channel.IN_APP],
            scheduled_at=later,
        )

        rows = _pending_rows()
        assert len(rows) == 1
        assert rows[0].scheduled_at == later

    def test_missing_recipient_user(self, database, fanout):
        result = fanout.notify("support_reply", support_reply_payload(recipient_user_id=None))

        assert result.recipient_count == 0
        assert _pending_rows() == []

    def test_invalid_payload_rejected(self, database, fanout):
        payload = support_reply_payload()
        del payload["ticket_id"]

        with pytest.raises(PayloadValidationError, match="ticket_id"):
            fanout.notify("support_reply", payload)

        assert _pending_rows() == []

    def test_unknown_event_rejected(self, database, fanout):
        with pytest.raises(PayloadValidationError):
            fanout.notify("birthday", {})


class TestRecipientIsolation:
    def test_failing_recipient_does_not_block_others(self, database, fanout, monkeypatch):
        original = QueueRepository.enqueue

        def flaky_enqueue(self, *args, **kwargs):
            if kwargs.get("recipient_user_id") == "ref-2":
                raise PersistenceError("disk full")
            return original(self, *args, **kwargs)

        monkeypatch.setattr(QueueRepository, "enqueue", flaky_enqueue)

        result = fanout.notify(
            "new_referral_request",
            referral_request_payload(),
            channels=[Channel.IN_APP],
        )

        assert result.failed_recipients == ["ref-2"]
        assert "disk full" in result.errors[0]
        assert result.enqueued == 2
        assert {row.recipient_user_id for row in _pending_rows()} == {"ref-1", "ref-3"}

    def test_partial_rows_rolled_back(self, database, fanout, monkeypatch):
        original = QueueRepository.enqueue

        def fail_on_in_app(self, *args, **kwargs):
            if kwargs.get("channel") is Channel.IN_APP:
                raise PersistenceError("constraint")
            return original(self, *args, **kwargs)

        monkeypatch.setattr(QueueRepository, "enqueue", fail_on_in_app)

        result = fanout.notify("referral_claimed", referral_claimed_payload())

        # The email row for the same recipient is not left behind
        assert result.failed_recipients == ["seeker-1"]
        assert _pending_rows() == []

    def test_preference_lookup_failure(self, database, fanout, monkeypatch):
        def broken(self, *args, **kwargs):
            raise PersistenceError("preferences unavailable")

        monkeypatch.setattr(PreferenceRepository, "get_for_users", broken)

        result = fanout.notify("new_referral_request", referral_request_payload())

        assert result.failed_recipients == ["ref-1", "ref-2", "ref-3"]
        assert result.enqueued == 0
        assert "preferences unavailable" in result.errors[0]


class TestDirectEnqueue:
    def test_enqueue_validates_and_stores(self, database, fanout):
        item_id = fanout.enqueue(
            "support_reply", Channel.EMAIL, support_reply_payload(), recipient_user_id="user-1"
        )

        with get_session() as session:
            row = QueueRepository(session).get(item_id)
        assert row.status is QueueStatus.PENDING
        assert row.payload["ticket_id"] == "T-100"

    def test_enqueue_rejects_bad_payload(self, database, fanout):
        with pytest.raises(PayloadValidationError):
            fanout.enqueue("referral_verified", Channel.EMAIL, {"amount": 5})


class TestPreferenceService:
    def test_defaults_without_stored_rows(self, database):
        prefs = PreferenceService().get_preferences("user-1")

        assert not prefs.has_stored_preferences
        assert prefs.is_enabled(EventType.SUPPORT_REPLY, Channel.EMAIL)

    def test_set_and_update_preference(self, database):
        service = PreferenceService()

        service.set_preference("user-1", EventType.SUPPORT_REPLY, Channel.EMAIL, False)
        assert not service.is_enabled("user-1", EventType.SUPPORT_REPLY, Channel.EMAIL)

        service.set_preference("user-1", EventType.SUPPORT_REPLY, Channel.EMAIL, True)
        assert service.is_enabled("user-1", EventType.SUPPORT_REPLY, Channel.EMAIL)
        assert service.get_preferences("user-1").has_stored_preferences

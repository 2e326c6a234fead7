"""Tests for digest delivery and watermark commits."""

from datetime import date, datetime, timedelta, timezone

import pytest

from joel.correlator import build_notification_task
from joel.database import DatabaseManager
from joel.delivery import (
    DeliveryOutcome,
    DeliveryService,
    NotificationReport,
    needs_reengagement,
)
from joel.models import (
    MessageApp,
    NameMatch,
    NotificationType,
    User,
    UserMatches,
    UserStatus,
)
from joel.notifiers.base import NotificationError, RecipientBlockedError

from conftest import days_before

JAN_1 = datetime(2024, 1, 1, tzinfo=timezone.utc)
FEB_1 = datetime(2024, 2, 1, tzinfo=timezone.utc)


def people_task(db: DatabaseManager, user_id: int, person_id: int, records):
    matches = UserMatches(user=db.get_user(user_id), people={person_id: records})
    return build_notification_task(matches)


def name_task(db: DatabaseManager, user_id: int, records, already_followed=False):
    person = db.find_or_create_person("Dupont", "Jean")
    match = NameMatch("jean dupont", person, records, already_followed=already_followed)
    return build_notification_task(UserMatches(user=db.get_user(user_id), names=[match]))


@pytest.fixture
def telegram_follower(db: DatabaseManager):
    user_id = db.create_user(MessageApp.TELEGRAM, "1")
    person = db.find_or_create_person("Dupont", "Jean")
    db.follow_person(user_id, person.id, JAN_1)
    return user_id, person.id


def whatsapp_follower(db: DatabaseManager, **user_fields):
    user_id = db.create_user(MessageApp.WHATSAPP, "33600000000", **user_fields)
    person = db.find_or_create_person("Dupont", "Jean")
    db.follow_person(user_id, person.id, JAN_1)
    return user_id, person.id


def service(repository, capabilities, now, **kwargs) -> DeliveryService:
    return DeliveryService(repository, capabilities, now=lambda: now, **kwargs)


class TestNeedsReengagement:
    """Tests for the messaging window check."""

    def test_never_engaged(self, now):
        user = User(id=1, message_app=MessageApp.WHATSAPP, chat_id="1")
        assert needs_reengagement(user, now, timedelta(hours=24)) is True

    def test_window_boundaries(self, now):
        timeout = timedelta(hours=24)
        user = User(id=1, message_app=MessageApp.WHATSAPP, chat_id="1")

        user.last_engagement_at = days_before(now, 0.5)
        assert needs_reengagement(user, now, timeout) is False

        user.last_engagement_at = now - timeout
        assert needs_reengagement(user, now, timeout) is True


class TestDelivery:
    """Tests for DeliveryService.deliver."""

    @pytest.mark.asyncio
    async def test_success_advances_watermark(
        self,
        db,
        repository,
        capabilities,
        telegram_sender,
        telegram_follower,
        make_record,
        now,
    ):
        user_id, person_id = telegram_follower
        records = [
            make_record(source_date=date(2024, 1, 20), source_id="A"),
            make_record(source_date=date(2024, 2, 1), source_id="B"),
        ]
        delivery = service(repository, capabilities, now)

        outcome = await delivery.deliver(people_task(db, user_id, person_id, records))

        assert outcome == DeliveryOutcome.DELIVERED
        assert len(telegram_sender.sent) == 1
        chat_id, text = telegram_sender.sent[0]
        assert chat_id == "1"
        assert "Jean Dupont" in text
        user = db.get_user(user_id)
        assert user.followed_people[0].last_update == FEB_1
        assert user.last_message_received_at == now
        assert delivery.report.count(DeliveryOutcome.DELIVERED) == 1

    @pytest.mark.asyncio
    async def test_unconfirmed_send_keeps_watermark(
        self,
        db,
        repository,
        capabilities,
        telegram_sender,
        telegram_follower,
        make_record,
        now,
    ):
        user_id, person_id = telegram_follower
        telegram_sender.result = False

        outcome = await service(repository, capabilities, now).deliver(
            people_task(db, user_id, person_id, [make_record()])
        )

        assert outcome == DeliveryOutcome.FAILED
        assert db.get_user(user_id).followed_people[0].last_update == JAN_1

    @pytest.mark.asyncio
    async def test_send_error_keeps_watermark(
        self,
        db,
        repository,
        capabilities,
        telegram_sender,
        telegram_follower,
        make_record,
        now,
    ):
        user_id, person_id = telegram_follower
        telegram_sender.error = NotificationError("Telegram notification failed: 500")

        outcome = await service(repository, capabilities, now).deliver(
            people_task(db, user_id, person_id, [make_record()])
        )

        assert outcome == DeliveryOutcome.FAILED
        assert db.get_user(user_id).followed_people[0].last_update == JAN_1

    @pytest.mark.asyncio
    async def test_blocked_recipient_is_marked(
        self,
        db,
        repository,
        capabilities,
        telegram_sender,
        telegram_follower,
        make_record,
        now,
    ):
        user_id, person_id = telegram_follower
        telegram_sender.error = RecipientBlockedError("blocked")

        outcome = await service(repository, capabilities, now).deliver(
            people_task(db, user_id, person_id, [make_record()])
        )

        assert outcome == DeliveryOutcome.BLOCKED
        user = db.get_user(user_id)
        assert user.status == UserStatus.BLOCKED
        assert user.followed_people[0].last_update == JAN_1

    @pytest.mark.asyncio
    async def test_dry_run_sends_nothing(
        self,
        db,
        repository,
        capabilities,
        telegram_sender,
        telegram_follower,
        make_record,
        now,
    ):
        user_id, person_id = telegram_follower
        previews = []

        outcome = await service(
            repository,
            capabilities,
            now,
            dry_run=True,
            preview=lambda task, text: previews.append((task.user_id, text)),
        ).deliver(people_task(db, user_id, person_id, [make_record()]))

        assert outcome == DeliveryOutcome.DRY_RUN
        assert telegram_sender.sent == []
        assert previews[0][0] == user_id
        assert db.get_user(user_id).followed_people[0].last_update == JAN_1


class TestReengagement:
    """Tests for platforms with a messaging window."""

    @pytest.mark.asyncio
    async def test_stale_user_gets_template_and_pending_entry(
        self, db, repository, capabilities, whatsapp_sender, make_record, now
    ):
        user_id, person_id = whatsapp_follower(
            db, last_engagement_at=now - timedelta(hours=25)
        )
        records = [
            make_record(source_id="A"),
            make_record(source_id="A", order_type="promotion"),
        ]

        outcome = await service(repository, capabilities, now).deliver(
            people_task(db, user_id, person_id, records)
        )

        assert outcome == DeliveryOutcome.DEFERRED
        assert whatsapp_sender.sent == []
        assert whatsapp_sender.templates == [("33600000000", "people")]
        user = db.get_user(user_id)
        assert user.waiting_reengagement is True
        assert user.followed_people[0].last_update == JAN_1
        pending = db.get_pending_notifications(user_id)
        assert [(p.notification_type, p.source_ids, p.item_count) for p in pending] == [
            (NotificationType.PEOPLE, {"A": 2}, 2)
        ]

    @pytest.mark.asyncio
    async def test_waiting_user_gets_no_second_template(
        self, db, repository, capabilities, whatsapp_sender, make_record, now
    ):
        user_id, person_id = whatsapp_follower(db, waiting_reengagement=True)

        outcome = await service(repository, capabilities, now).deliver(
            people_task(db, user_id, person_id, [make_record()])
        )

        assert outcome == DeliveryOutcome.DEFERRED
        assert whatsapp_sender.templates == []
        assert len(db.get_pending_notifications(user_id)) == 1

    @pytest.mark.asyncio
    async def test_failed_template_leaves_user_not_waiting(
        self, db, repository, capabilities, whatsapp_sender, make_record, now
    ):
        user_id, person_id = whatsapp_follower(db)
        whatsapp_sender.template_result = False

        await service(repository, capabilities, now).deliver(
            people_task(db, user_id, person_id, [make_record()])
        )

        assert db.get_user(user_id).waiting_reengagement is False
        assert len(db.get_pending_notifications(user_id)) == 1

    @pytest.mark.asyncio
    async def test_recent_engagement_sends_directly(
        self, db, repository, capabilities, whatsapp_sender, make_record, now
    ):
        user_id, person_id = whatsapp_follower(
            db, last_engagement_at=now - timedelta(hours=2)
        )

        outcome = await service(repository, capabilities, now).deliver(
            people_task(db, user_id, person_id, [make_record()])
        )

        assert outcome == DeliveryOutcome.DELIVERED
        assert whatsapp_sender.templates == []
        # Markdown links are not rendered on WhatsApp
        assert "https://www.legifrance.gouv.fr/jorf/id/JORFTEXT000000000001" in (
            whatsapp_sender.sent[0][1]
        )
        assert "[cliquez ici]" not in whatsapp_sender.sent[0][1]

    @pytest.mark.asyncio
    async def test_force_reengagement_bypasses_window(
        self, db, repository, capabilities, whatsapp_sender, make_record, now
    ):
        user_id, person_id = whatsapp_follower(db)
        db.insert_pending_notifications(
            user_id, MessageApp.WHATSAPP, NotificationType.PEOPLE, {"OLD": 1}
        )

        outcome = await service(
            repository, capabilities, now, force_reengagement=True
        ).deliver(people_task(db, user_id, person_id, [make_record()]))

        assert outcome == DeliveryOutcome.DELIVERED
        assert len(whatsapp_sender.sent) == 1
        assert db.get_pending_notifications(user_id) == []
        assert db.get_user(user_id).followed_people[0].last_update == FEB_1


class TestNotificationReport:
    """Tests for the cycle summary."""

    def test_summary(self):
        report = NotificationReport()
        assert report.summary() == "no notification sent"

        report.record(MessageApp.TELEGRAM, DeliveryOutcome.DELIVERED)
        report.record(MessageApp.TELEGRAM, DeliveryOutcome.DELIVERED)
        report.record(MessageApp.TELEGRAM, DeliveryOutcome.BLOCKED)
        report.record(MessageApp.WHATSAPP, DeliveryOutcome.DEFERRED)

        assert report.summary() == (
            "Telegram: 1 blocked, 2 delivered; WhatsApp: 1 deferred"
        )
        assert report.count(DeliveryOutcome.DELIVERED, MessageApp.WHATSAPP) == 0


class TestNamePromotion:
    """Tests for followed names turned into person follows."""

    @pytest.mark.asyncio
    async def test_delivery_promotes_name(
        self, db, repository, capabilities, telegram_sender, make_record, now
    ):
        user_id = db.create_user(MessageApp.TELEGRAM, "1")
        db.follow_name(user_id, "jean dupont")
        task = name_task(db, user_id, [make_record()])

        outcome = await service(repository, capabilities, now).deliver(task)

        assert outcome == DeliveryOutcome.DELIVERED
        assert "Vous suivez maintenant *Jean Dupont*" in telegram_sender.sent[0][1]
        user = db.get_user(user_id)
        assert user.followed_names == []
        assert [(f.person_id, f.last_update) for f in user.followed_people] == [
            (task.matches.names[0].person.id, now)
        ]

    @pytest.mark.asyncio
    async def test_failed_delivery_keeps_name(
        self, db, repository, capabilities, telegram_sender, make_record, now
    ):
        user_id = db.create_user(MessageApp.TELEGRAM, "1")
        db.follow_name(user_id, "jean dupont")
        telegram_sender.error = NotificationError("Telegram notification failed: 500")

        outcome = await service(repository, capabilities, now).deliver(
            name_task(db, user_id, [make_record()])
        )

        assert outcome == DeliveryOutcome.FAILED
        user = db.get_user(user_id)
        assert user.followed_names == ["jean dupont"]
        assert user.followed_people == []

    @pytest.mark.asyncio
    async def test_dry_run_keeps_name(
        self, db, repository, capabilities, telegram_sender, make_record, now
    ):
        user_id = db.create_user(MessageApp.TELEGRAM, "1")
        db.follow_name(user_id, "jean dupont")

        outcome = await service(repository, capabilities, now, dry_run=True).deliver(
            name_task(db, user_id, [make_record()])
        )

        assert outcome == DeliveryOutcome.DRY_RUN
        assert db.get_user(user_id).followed_names == ["jean dupont"]

    @pytest.mark.asyncio
    async def test_deferred_name_is_kept_and_pending_uses_clock(
        self, db, repository, capabilities, whatsapp_sender, make_record, now
    ):
        user_id = db.create_user(MessageApp.WHATSAPP, "33600000000")
        db.follow_name(user_id, "jean dupont")

        outcome = await service(repository, capabilities, now).deliver(
            name_task(db, user_id, [make_record()])
        )

        assert outcome == DeliveryOutcome.DEFERRED
        assert whatsapp_sender.templates == [("33600000000", "name")]
        assert db.get_user(user_id).followed_names == ["jean dupont"]
        pending = db.get_pending_notifications(user_id)
        assert [(p.notification_type, p.inserted_at) for p in pending] == [
            (NotificationType.NAME, now)
        ]

    @pytest.mark.asyncio
    async def test_name_of_followed_person_is_retired_silently(
        self, db, repository, capabilities, telegram_sender, telegram_follower, make_record, now
    ):
        user_id, person_id = telegram_follower
        db.follow_name(user_id, "jean dupont")

        outcome = await service(repository, capabilities, now).deliver(
            name_task(db, user_id, [make_record()], already_followed=True)
        )

        assert outcome == DeliveryOutcome.EMPTY
        assert telegram_sender.sent == []
        user = db.get_user(user_id)
        assert user.followed_names == []
        assert [(f.person_id, f.last_update) for f in user.followed_people] == [
            (person_id, JAN_1)
        ]

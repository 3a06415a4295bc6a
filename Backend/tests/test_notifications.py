"""
Tests for reminder messages, the dispatcher's claim/release behaviour and
the Twilio SMS sender.

Run with: pytest tests/test_notifications.py -v
"""

from unittest.mock import MagicMock, patch

import pytest
from twilio.base.exceptions import TwilioRestException

from app import sms
from app.booking.errors import NotificationDeliveryFailure
from app.booking.reminders import ReminderCandidate, ReminderRecipient
from app.booking.store import ProviderContact
from app.notifications import (
    InMemoryReminderLedger,
    ReminderDispatcher,
    build_reminder_message,
    format_local_time,
)
from tests.factories import CLIENT_PHONE, PROVIDER_PHONE, at, make_booking

CLIENT = ReminderRecipient("client", CLIENT_PHONE, "Jordan")
PROVIDER = ReminderRecipient("provider", PROVIDER_PHONE, "Marcus")


def candidate(customer_name="Jordan", recipients=(CLIENT, PROVIDER)):
    return ReminderCandidate(
        booking=make_booking(at(10), customer_name=customer_name),
        provider=ProviderContact(name="Marcus", phone=PROVIDER_PHONE),
        service_name="Haircut",
        recipients=recipients,
    )


class TestMessages:
    def test_local_time_drops_leading_zero(self):
        assert format_local_time(at(9, 5), "UTC") == "9:05 AM"
        assert format_local_time(at(17), "America/Phoenix") == "10:00 AM"

    def test_client_message(self):
        body = build_reminder_message(candidate(), CLIENT, "UTC")
        assert body.startswith("⏰ Appointment Reminder!")
        assert "Service: Haircut" in body
        assert "Time: 10:00 AM" in body
        assert "Barber: Marcus" in body
        assert body.endswith("See you soon!")

    def test_provider_message(self):
        body = build_reminder_message(candidate(), PROVIDER, "UTC")
        assert "Client: Jordan" in body
        assert "Service: Haircut" in body
        assert "Time: 10:00 AM" in body

    def test_provider_message_without_client_name(self):
        body = build_reminder_message(candidate(customer_name=None), PROVIDER, "UTC")
        assert "Client: Guest" in body


class TestReminderDispatcher:
    @pytest.mark.asyncio
    async def test_sends_to_every_recipient(self, dispatcher, sent_sms):
        assert await dispatcher.dispatch(candidate()) is True
        assert [phone for phone, _ in sent_sms] == [CLIENT_PHONE, PROVIDER_PHONE]

    @pytest.mark.asyncio
    async def test_already_claimed_booking_is_skipped(self, dispatcher, ledger, sent_sms):
        item = candidate()
        await ledger.claim(item.booking.id, item.booking.start_at_utc)

        assert await dispatcher.dispatch(item) is False
        assert sent_sms == []

    @pytest.mark.asyncio
    async def test_total_failure_releases_claim(self):
        ledger = InMemoryReminderLedger()

        async def failing_send(phone, body):
            return False

        item = candidate()
        with pytest.raises(NotificationDeliveryFailure) as exc_info:
            await ReminderDispatcher(ledger, send=failing_send, tz_name="UTC").dispatch(item)

        assert exc_info.value.recipient == "client,provider"
        assert (item.booking.id, at(10)) not in ledger.claimed

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_claim(self):
        ledger = InMemoryReminderLedger()

        async def provider_unreachable(phone, body):
            return phone != PROVIDER_PHONE

        item = candidate()
        with pytest.raises(NotificationDeliveryFailure) as exc_info:
            await ReminderDispatcher(ledger, send=provider_unreachable, tz_name="UTC").dispatch(item)

        assert exc_info.value.recipient == "provider"
        assert (item.booking.id, at(10)) in ledger.claimed

    @pytest.mark.asyncio
    async def test_sender_exception_counts_as_failure_and_releases_claim(self):
        ledger = InMemoryReminderLedger()

        async def broken_send(phone, body):
            raise ConnectionError("twilio unreachable")

        item = candidate()
        with pytest.raises(NotificationDeliveryFailure) as exc_info:
            await ReminderDispatcher(ledger, send=broken_send, tz_name="UTC").dispatch(item)

        assert exc_info.value.recipient == "client,provider"
        assert ledger.claimed == set()

    @pytest.mark.asyncio
    async def test_new_start_is_a_new_claim(self, dispatcher, ledger, sent_sms):
        item = candidate()
        await ledger.claim(item.booking.id, at(10, day=1))

        assert await dispatcher.dispatch(item) is True
        assert len(sent_sms) == 2


class TestSendSms:
    def test_normalize_e164(self):
        assert sms.normalize_e164("(602) 555-0101") == "+16025550101"
        assert sms.normalize_e164("16025550101") == "+16025550101"
        assert sms.normalize_e164("+44 20 7946 0958") == "+442079460958"
        assert sms.normalize_e164("") == ""

    @pytest.mark.asyncio
    async def test_unconfigured_sender_returns_false(self):
        with patch.object(sms.settings, "twilio_account_sid", ""):
            assert await sms.send_sms(CLIENT_PHONE, "hi") is False

    @pytest.mark.asyncio
    async def test_successful_send(self):
        with patch.object(sms.settings, "twilio_account_sid", "AC123"), \
             patch.object(sms.settings, "twilio_auth_token", "token"), \
             patch.object(sms.settings, "twilio_from_number", "6025550000"), \
             patch("app.sms.Client") as client_cls:
            client_cls.return_value.messages.create.return_value = MagicMock(sid="SM1")

            assert await sms.send_sms("602-555-0199", "hi") is True

        client_cls.return_value.messages.create.assert_called_once_with(
            body="hi", from_="+16025550000", to="+16025550199"
        )

    @pytest.mark.asyncio
    async def test_twilio_error_returns_false(self):
        error = TwilioRestException(400, "/Messages", msg="bad number", code=21211)
        with patch.object(sms.settings, "twilio_account_sid", "AC123"), \
             patch.object(sms.settings, "twilio_auth_token", "token"), \
             patch.object(sms.settings, "twilio_from_number", "+16025550000"), \
             patch("app.sms.Client") as client_cls:
            client_cls.return_value.messages.create.side_effect = error

            assert await sms.send_sms(CLIENT_PHONE, "hi") is False

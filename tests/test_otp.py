"""Unit tests for pickup codes and the OTP gate."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from ride2school.domain.errors import OTPExpired
from ride2school.domain.otp import generate_otp, otp_expired, otp_matches
from ride2school.services.otp_gate import OtpGate

NOW = datetime(2026, 3, 2, 7, 15, tzinfo=timezone.utc)


class TestCodes:
    def test_six_digits(self):
        for _ in range(200):
            otp = generate_otp()
            assert len(otp) == 6
            assert otp.isdigit()

    def test_zero_padded(self, monkeypatch):
        monkeypatch.setattr("ride2school.domain.otp.secrets.randbelow", lambda n: 42)
        assert generate_otp() == "000042"

    def test_matches(self):
        assert otp_matches("483920", "483920")
        assert otp_matches("483920", " 483920 ")
        assert not otp_matches("483920", "111111")
        assert not otp_matches(None, "483920")
        assert not otp_matches("483920", "")


class TestExpiry:
    def test_disabled_by_default(self):
        assert not otp_expired(NOW - timedelta(days=30), None, NOW)

    def test_within_ttl(self):
        assert not otp_expired(NOW - timedelta(minutes=9), 10, NOW)

    def test_past_ttl(self):
        assert otp_expired(NOW - timedelta(minutes=11), 10, NOW)

    def test_naive_timestamps_are_utc(self):
        generated = (NOW - timedelta(minutes=11)).replace(tzinfo=None)
        assert otp_expired(generated, 10, NOW)


class TestOtpGate:
    def _ride(self, otp="483920", generated_at=NOW):
        return SimpleNamespace(
            id="ride-1",
            parent_id="parent-1",
            driver_id="driver-1",
            otp=otp,
            otp_generated_at=generated_at,
        )

    def test_verify_without_expiry(self):
        gate = OtpGate(AsyncMock())
        ride = self._ride(generated_at=NOW - timedelta(days=2))
        assert gate.verify(ride, "483920", NOW)
        assert not gate.verify(ride, "111111", NOW)

    def test_verify_expired_raises(self):
        gate = OtpGate(AsyncMock(), ttl_minutes=10)
        ride = self._ride(generated_at=NOW - timedelta(minutes=30))
        with pytest.raises(OTPExpired):
            gate.verify(ride, "483920", NOW)

    @pytest.mark.asyncio
    async def test_announce_notifies_and_messages_parent(self):
        events = AsyncMock()
        await OtpGate(events).announce(self._ride())

        notify_args = events.notify.await_args.args
        assert notify_args[0] == "parent-1"
        assert "483920" in notify_args[2]
        message_args = events.message.await_args.args
        assert message_args[:2] == ("driver-1", "parent-1")
        assert "483920" in message_args[2]

    @pytest.mark.asyncio
    async def test_regenerate_replaces_code(self, monkeypatch):
        monkeypatch.setattr(
            "ride2school.services.otp_gate.generate_otp", lambda: "654321"
        )
        events = AsyncMock()
        ride = self._ride(generated_at=NOW - timedelta(hours=1))

        otp = await OtpGate(events).regenerate(ride, NOW)

        assert otp == "654321"
        assert ride.otp == "654321"
        assert ride.otp_generated_at == NOW
        recipients = [call.args[0] for call in events.notify.await_args_list]
        assert recipients == ["parent-1", "driver-1"]

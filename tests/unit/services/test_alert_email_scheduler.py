"""
Tests for the hourly alert email job.

Tests cover:
- template rendering and contract ID truncation
- the ingestion-lagged alert window and cron scheduling
- per-user grouping, nicknames and failure isolation in run_once()
- starting and stopping the background task
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest
from freezegun import freeze_time

from blip.services.alert_email_scheduler import (
    ALERT_EMAIL_SUBJECT,
    AlertEmailScheduler,
    render_alert_email,
    truncate_contract_id,
)
from blip.services.email_service import EmailDeliveryError
from blip.services.identity_service import IdentityProviderError, UserProfile

CONTRACT_A = "CCW67TSZV3SSS2HXMBQ5JFGCKJNXKZM7UQUWUZPUTHXSTZLEO7SJMI75"
CONTRACT_B = "CAS3J7GYLGXMF6TDJBBYYSE3HQ6BBSMLNUQ34T6TZMYMW2EVH34XOWMA"

NOW = datetime(2026, 1, 20, 14, 51, tzinfo=timezone.utc)


def _profile(user_id, email, first_name="Ada"):
    return UserProfile(
        id=user_id,
        first_name=first_name,
        last_name=None,
        username=None,
        email=email,
        profile_image_url=None,
    )


def _alert(contract_id, error_rate=12.5):
    return {
        "id": f"{contract_id}-2026-01-20T13:00:00",
        "contractId": contract_id,
        "contractNickname": None,
        "alertTime": "2026-01-20T13:00:00",
        "alertType": "ERROR_RATE_HIGH",
        "totalTransactions": 16,
        "failedTransactions": 2,
        "errorRate": error_rate,
        "message": f"Error rate of {error_rate:.2f}% detected for contract {contract_id}",
    }


@pytest.fixture
def saved_contracts_mock():
    mock = Mock()
    mock.list_all_with_users = AsyncMock(return_value=[
        {"contractId": CONTRACT_A, "users": [
            {"userId": "user_1", "nickname": "Pool"},
            {"userId": "user_2", "nickname": "Their pool"},
        ]},
        {"contractId": CONTRACT_B, "users": [{"userId": "user_1", "nickname": "Router"}]},
        {"contractId": "bogus", "users": [{"userId": "user_3", "nickname": None}]},
    ])
    return mock


@pytest.fixture
def history_mock():
    mock = Mock()
    mock.hourly_alerts = AsyncMock(return_value=[_alert(CONTRACT_A), _alert(CONTRACT_B, 6.0)])
    return mock


@pytest.fixture
def identity_mock():
    profiles = {
        "user_1": _profile("user_1", "one@example.com"),
        "user_2": _profile("user_2", "two@example.com", first_name=None),
    }
    mock = Mock()
    mock.get_user = AsyncMock(side_effect=lambda user_id: profiles[user_id])
    return mock


@pytest.fixture
def email_mock():
    mock = Mock()
    mock.send_email = AsyncMock(return_value="msg-1")
    return mock


@pytest.fixture
def scheduler(saved_contracts_mock, history_mock, identity_mock, email_mock, settings):
    return AlertEmailScheduler(
        saved_contracts_mock, history_mock, identity_mock, email_mock, settings, clock=lambda: NOW
    )


class TestRendering:
    """Test the email templates"""

    @pytest.mark.parametrize("contract_id,expected", [
        (CONTRACT_A, "CCW67T...MI75"),
        ("CSHORT", "CSHORT"),
        ("C123456789", "C123456789"),
    ])
    def test_truncate_contract_id(self, contract_id, expected):
        assert truncate_contract_id(contract_id) == expected

    def test_render_both_parts(self):
        alerts = [{**_alert(CONTRACT_A), "contractNickname": "Pool"}]

        bodies = render_alert_email("Ada", alerts, NOW)

        assert "Soroban Contract Alerts - Tuesday, January 20, 2026 at 14:51:00 UTC" in bodies["html"]
        assert "Hello Ada," in bodies["html"]
        assert "Alert for Contract Pool (CCW67T...MI75)" in bodies["html"]
        assert "Error Rate: 12.5%" in bodies["html"]
        assert f"Alert for Contract Pool ({CONTRACT_A})" in bodies["text"]
        assert "- Failed Transactions: 2" in bodies["text"]

    def test_html_escapes_nicknames(self):
        alerts = [{**_alert(CONTRACT_A), "contractNickname": "<script>x</script>"}]

        bodies = render_alert_email("Ada", alerts, NOW)

        assert "<script>" not in bodies["html"]
        assert "&lt;script&gt;" in bodies["html"]


class TestSchedule:
    def test_alert_window_is_lagged(self, scheduler):
        window = scheduler.alert_window(NOW)

        assert window["end_time"] == datetime(2026, 1, 20, 14, 21, tzinfo=timezone.utc)
        assert window["start_time"] == datetime(2026, 1, 20, 13, 21, tzinfo=timezone.utc)

    def test_next_run(self, scheduler):
        assert scheduler.next_run(datetime(2026, 1, 20, 14, 0, tzinfo=timezone.utc)) == datetime(
            2026, 1, 20, 14, 51, tzinfo=timezone.utc
        )
        assert scheduler.next_run(NOW) == datetime(2026, 1, 20, 15, 51, tzinfo=timezone.utc)


class TestRunOnce:
    """Test AlertEmailScheduler.run_once()"""

    @pytest.mark.asyncio
    async def test_emails_each_affected_user_once(self, scheduler, history_mock, email_mock):
        summary = await scheduler.run_once()

        assert summary == {"alerts": 2, "usersNotified": 2, "failures": 0}
        contract_ids, start_time, end_time = history_mock.hourly_alerts.call_args.args
        assert contract_ids == [CONTRACT_A, CONTRACT_B]
        assert end_time == datetime(2026, 1, 20, 14, 21, tzinfo=timezone.utc)
        assert start_time == datetime(2026, 1, 20, 13, 21, tzinfo=timezone.utc)
        assert email_mock.send_email.await_count == 2

    @pytest.mark.asyncio
    async def test_digest_uses_each_users_nicknames(self, scheduler, email_mock):
        await scheduler.run_once()

        by_recipient = {call.args[0]: call for call in email_mock.send_email.await_args_list}
        first = by_recipient["one@example.com"]
        assert first.args[1] == ALERT_EMAIL_SUBJECT
        assert "Alert for Contract Pool" in first.kwargs["text_body"]
        assert "Alert for Contract Router" in first.kwargs["text_body"]

        second = by_recipient["two@example.com"]
        assert "Hello User," in second.kwargs["text_body"]
        assert "Their pool" in second.kwargs["text_body"]
        assert "Router" not in second.kwargs["text_body"]

    @pytest.mark.asyncio
    async def test_user_without_email_is_skipped(self, scheduler, identity_mock, email_mock):
        identity_mock.get_user = AsyncMock(side_effect=lambda user_id: _profile(user_id, None))

        summary = await scheduler.run_once()

        assert summary["usersNotified"] == 0
        assert summary["failures"] == 0
        email_mock.send_email.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_for_one_user_does_not_stop_others(self, scheduler, email_mock):
        email_mock.send_email.side_effect = [EmailDeliveryError("rejected"), "msg-2"]

        summary = await scheduler.run_once()

        assert summary == {"alerts": 2, "usersNotified": 1, "failures": 1}

    @pytest.mark.asyncio
    async def test_identity_failure_counts_as_failure(self, scheduler, identity_mock):
        identity_mock.get_user = AsyncMock(side_effect=IdentityProviderError("down", status=503))

        summary = await scheduler.run_once()

        assert summary["failures"] == 2

    @pytest.mark.asyncio
    async def test_unexpected_error_for_one_user_does_not_stop_others(
        self, scheduler, identity_mock, email_mock
    ):
        second = _profile("user_2", "two@example.com")
        identity_mock.get_user = AsyncMock(side_effect=[asyncio.TimeoutError(), second])

        summary = await scheduler.run_once()

        assert summary == {"alerts": 2, "usersNotified": 1, "failures": 1}
        email_mock.send_email.assert_awaited_once()
        assert email_mock.send_email.await_args.args[0] == "two@example.com"

    @pytest.mark.asyncio
    async def test_cancellation_is_not_counted_as_failure(self, scheduler, identity_mock):
        identity_mock.get_user = AsyncMock(side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await scheduler.run_once()

    @pytest.mark.asyncio
    async def test_no_saved_contracts(self, scheduler, saved_contracts_mock, history_mock):
        saved_contracts_mock.list_all_with_users.return_value = []

        summary = await scheduler.run_once()

        assert summary == {"alerts": 0, "usersNotified": 0, "failures": 0}
        history_mock.hourly_alerts.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_alerts_sends_nothing(self, scheduler, history_mock, email_mock):
        history_mock.hourly_alerts.return_value = []

        summary = await scheduler.run_once()

        assert summary["alerts"] == 0
        email_mock.send_email.assert_not_called()

    @pytest.mark.asyncio
    async def test_default_clock_is_utc_now(
        self, saved_contracts_mock, history_mock, identity_mock, email_mock, settings
    ):
        scheduler = AlertEmailScheduler(
            saved_contracts_mock, history_mock, identity_mock, email_mock, settings
        )

        with freeze_time("2026-01-20 14:51:00"):
            await scheduler.run_once()

        _, start_time, end_time = history_mock.hourly_alerts.call_args.args
        assert end_time == datetime(2026, 1, 20, 14, 21, tzinfo=timezone.utc)
        assert start_time == datetime(2026, 1, 20, 13, 21, tzinfo=timezone.utc)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_disabled_does_not_start(self, scheduler):
        scheduler.start()
        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_start_and_stop(self, scheduler, settings):
        settings.alert_emails_enabled = True

        scheduler.start()
        assert scheduler.running is True

        await scheduler.stop()
        assert scheduler.running is False

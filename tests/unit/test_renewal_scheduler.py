"""
Unit tests for renewdesk/jobs/renewal_reminders.py

The scheduler runs against an in-memory repository (same due rules as the
SQL query, via RenewalContract.is_due_for_reminder), a mocked notifier and
a mocked session; no database or network.
"""

import asyncio
from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from renewdesk.config import settings
from renewdesk.jobs.renewal_reminders import (
    ReminderRunSummary,
    RenewalReminderScheduler,
    RunLease,
)
from renewdesk.models.renewal_contract import ContractStatus

TODAY = date(2025, 3, 10)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeContractRepository:
    def __init__(self, contracts):
        self.contracts = contracts
        self.flag_writes = []
        self.fail_on_days = set()

    async def find_due_for_reminder(self, days, today):
        if days in self.fail_on_days:
            raise RuntimeError(f"query failed for {days}")
        return [c for c in self.contracts if c.is_due_for_reminder(days, today)]

    async def mark_reminder_sent(self, contract, days):
        contract.mark_reminder_sent(days)
        self.flag_writes.append((contract.id, days))

    async def list_with_end_date(self):
        return [c for c in self.contracts if c.end_date is not None]

    async def flush(self):
        pass


class FakeSessionFactory:
    def __init__(self, session):
        self.session = session
        self.opened = 0

    def __call__(self):
        self.opened += 1
        return self

    async def __aenter__(self):
        return self.session

    async def __aexit__(self, exc_type, exc, tb):
        return False


def _notifier(admins):
    notifier = MagicMock()
    notifier.list_admins = AsyncMock(return_value=admins)
    notifier.notify_in_app = AsyncMock()
    notifier.send_email = AsyncMock(return_value=True)
    return notifier


def _lease(acquired=True):
    lease = MagicMock()
    lease.acquire = AsyncMock(return_value=acquired)
    lease.release = AsyncMock()
    lease.extend = AsyncMock(return_value=True)
    return lease


def _scheduler(repo, notifier, session, lease=None, dispatch_timeout=None):
    return RenewalReminderScheduler(
        session_factory=FakeSessionFactory(session),
        repository_cls=lambda s: repo,
        notifier_cls=lambda s: notifier,
        today_fn=lambda: TODAY,
        lease=lease or _lease(),
        dispatch_timeout=dispatch_timeout,
    )


# ---------------------------------------------------------------------------
# Reminder thresholds
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_seven_day_contract_is_reminded_once(mock_session, contract_factory, admin_factory):
    contract = contract_factory(
        end_date=TODAY + timedelta(days=7), status=ContractStatus.EXPIRING_SOON.value
    )
    admins = [admin_factory("a@helpdesk.test"), admin_factory("b@helpdesk.test")]
    repo = FakeContractRepository([contract])
    notifier = _notifier(admins)
    scheduler = _scheduler(repo, notifier, mock_session)

    summary = await scheduler.run_once()

    assert summary.notified == {60: 0, 30: 0, 7: 1, 1: 0}
    assert contract.reminder_d7_sent is True
    assert notifier.notify_in_app.await_count == 2
    assert notifier.send_email.await_count == 2
    payload = notifier.notify_in_app.await_args.args[1]
    assert payload.title == "WARNING: Contract Expiring in 7 Day(s)"
    assert payload.notification_type == "RENEWAL_D7_WARNING"
    mock_session.commit.assert_awaited()

    # Second run the same day: nothing to send
    notifier.notify_in_app.reset_mock()
    notifier.send_email.reset_mock()
    summary = await scheduler.run_once()

    assert summary.notified[7] == 0
    notifier.notify_in_app.assert_not_awaited()
    notifier.send_email.assert_not_awaited()
    assert repo.flag_writes == [(contract.id, 7)]


@pytest.mark.asyncio
async def test_acknowledged_contract_is_skipped_but_status_refreshed(
    mock_session, contract_factory, admin_factory
):
    # Stored status is stale: 7 days out is EXPIRING_SOON
    contract = contract_factory(
        end_date=TODAY + timedelta(days=7),
        status=ContractStatus.ACTIVE.value,
        is_acknowledged=True,
    )
    repo = FakeContractRepository([contract])
    notifier = _notifier([admin_factory()])

    summary = await _scheduler(repo, notifier, mock_session).run_once()

    notifier.notify_in_app.assert_not_awaited()
    notifier.send_email.assert_not_awaited()
    assert contract.reminder_d7_sent is False
    assert contract.status == ContractStatus.EXPIRING_SOON.value
    assert summary.statuses_updated == 1


@pytest.mark.asyncio
async def test_sent_flags_are_never_cleared(mock_session, contract_factory, admin_factory):
    contract = contract_factory(
        end_date=TODAY + timedelta(days=30),
        status=ContractStatus.EXPIRING_SOON.value,
        reminder_d60_sent=True,
    )
    repo = FakeContractRepository([contract])

    await _scheduler(repo, _notifier([admin_factory()]), mock_session).run_once()

    assert contract.reminder_d60_sent is True
    assert contract.reminder_d30_sent is True


@pytest.mark.asyncio
async def test_each_threshold_matches_only_its_own_day(mock_session, contract_factory, admin_factory):
    contracts = {
        days: contract_factory(
            end_date=TODAY + timedelta(days=days),
            status=ContractStatus.ACTIVE.value if days > 30 else ContractStatus.EXPIRING_SOON.value,
        )
        for days in (60, 30, 7, 1)
    }
    off_window = contract_factory(
        end_date=TODAY + timedelta(days=8), status=ContractStatus.EXPIRING_SOON.value
    )
    repo = FakeContractRepository(list(contracts.values()) + [off_window])

    summary = await _scheduler(repo, _notifier([admin_factory()]), mock_session).run_once()

    assert summary.notified == {60: 1, 30: 1, 7: 1, 1: 1}
    for days, contract in contracts.items():
        assert contract.is_reminder_sent(days) is True
    assert not any(off_window.is_reminder_sent(d) for d in (60, 30, 7, 1))


@pytest.mark.asyncio
async def test_draft_contracts_are_never_reminded(mock_session, contract_factory, admin_factory):
    draft = contract_factory(end_date=None)
    notifier = _notifier([admin_factory()])

    summary = await _scheduler(FakeContractRepository([draft]), notifier, mock_session).run_once()

    notifier.list_admins.assert_not_awaited()
    assert summary.statuses_updated == 0
    assert draft.status == ContractStatus.DRAFT.value


# ---------------------------------------------------------------------------
# Failure isolation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_one_admin_failing_does_not_stop_others(mock_session, contract_factory, admin_factory):
    contract = contract_factory(
        end_date=TODAY + timedelta(days=1), status=ContractStatus.EXPIRING_SOON.value
    )
    admins = [admin_factory("a@helpdesk.test"), admin_factory("b@helpdesk.test")]
    notifier = _notifier(admins)
    notifier.notify_in_app.side_effect = [RuntimeError("insert failed"), None]
    notifier.send_email.side_effect = [RuntimeError("brevo down"), False]

    summary = await _scheduler(FakeContractRepository([contract]), notifier, mock_session).run_once()

    assert notifier.notify_in_app.await_count == 2
    assert notifier.send_email.await_count == 2
    assert contract.reminder_d1_sent is True
    assert summary.notified[1] == 1
    assert summary.failed_phases == []


@pytest.mark.asyncio
async def test_stalled_dispatch_times_out(mock_session, contract_factory, admin_factory):
    contract = contract_factory(
        end_date=TODAY + timedelta(days=60), status=ContractStatus.ACTIVE.value
    )

    async def _stall(*args, **kwargs):
        await asyncio.sleep(5)

    notifier = _notifier([admin_factory()])
    notifier.notify_in_app.side_effect = _stall

    summary = await _scheduler(
        FakeContractRepository([contract]), notifier, mock_session, dispatch_timeout=0.01
    ).run_once()

    assert contract.reminder_d60_sent is True
    notifier.send_email.assert_awaited_once()
    assert summary.failed_phases == []


@pytest.mark.asyncio
async def test_admins_without_email_only_get_in_app(mock_session, contract_factory, admin_factory):
    contract = contract_factory(
        end_date=TODAY + timedelta(days=7), status=ContractStatus.EXPIRING_SOON.value
    )
    notifier = _notifier([admin_factory(email=None)])

    await _scheduler(FakeContractRepository([contract]), notifier, mock_session).run_once()

    notifier.notify_in_app.assert_awaited_once()
    notifier.send_email.assert_not_awaited()


@pytest.mark.asyncio
async def test_failing_phase_does_not_stop_later_phases(
    mock_session, contract_factory, admin_factory
):
    due_30 = contract_factory(
        end_date=TODAY + timedelta(days=30), status=ContractStatus.EXPIRING_SOON.value
    )
    due_7 = contract_factory(
        end_date=TODAY + timedelta(days=7), status=ContractStatus.ACTIVE.value
    )
    repo = FakeContractRepository([due_30, due_7])
    repo.fail_on_days = {30}

    summary = await _scheduler(repo, _notifier([admin_factory()]), mock_session).run_once()

    assert summary.failed_phases == ["threshold_30"]
    assert due_30.reminder_d30_sent is False
    assert due_7.reminder_d7_sent is True
    assert due_7.status == ContractStatus.EXPIRING_SOON.value
    mock_session.rollback.assert_awaited()


@pytest.mark.asyncio
async def test_status_phase_failure_is_recorded(mock_session, contract_factory, admin_factory):
    repo = FakeContractRepository([])
    repo.list_with_end_date = AsyncMock(side_effect=RuntimeError("connection reset"))

    summary = await _scheduler(repo, _notifier([admin_factory()]), mock_session).run_once()

    assert summary.failed_phases == ["status_recompute"]
    assert summary.statuses_updated == 0


@pytest.mark.asyncio
async def test_status_pass_is_idempotent(mock_session, contract_factory, admin_factory):
    contracts = [
        contract_factory(end_date=TODAY - timedelta(days=1), status=ContractStatus.ACTIVE.value),
        contract_factory(end_date=TODAY + timedelta(days=45), status=ContractStatus.ACTIVE.value),
        contract_factory(end_date=TODAY + timedelta(days=3), status=ContractStatus.ACTIVE.value),
    ]
    scheduler = _scheduler(FakeContractRepository(contracts), _notifier([]), mock_session)

    first = await scheduler.run_once()
    second = await scheduler.run_once()

    assert first.statuses_updated == 2
    assert second.statuses_updated == 0
    assert [c.status for c in contracts] == ["EXPIRED", "ACTIVE", "EXPIRING_SOON"]


# ---------------------------------------------------------------------------
# Run lease
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_run_skipped_when_lease_is_held(mock_session, contract_factory, admin_factory):
    contract = contract_factory(
        end_date=TODAY + timedelta(days=7), status=ContractStatus.EXPIRING_SOON.value
    )
    notifier = _notifier([admin_factory()])
    lease = _lease(acquired=False)
    scheduler = _scheduler(FakeContractRepository([contract]), notifier, mock_session, lease=lease)

    summary = await scheduler.run_once()

    assert summary.skipped is True
    assert scheduler.session_factory.opened == 0
    notifier.notify_in_app.assert_not_awaited()
    assert contract.reminder_d7_sent is False
    lease.release.assert_not_awaited()


@pytest.mark.asyncio
async def test_lease_released_after_run(mock_session):
    lease = _lease()
    await _scheduler(FakeContractRepository([]), _notifier([]), mock_session, lease=lease).run_once()
    lease.release.assert_awaited_once()


@pytest.mark.asyncio
async def test_lease_renewed_before_every_phase(mock_session):
    lease = _lease()
    await _scheduler(FakeContractRepository([]), _notifier([]), mock_session, lease=lease).run_once()
    # four thresholds plus the status pass
    assert lease.extend.await_count == 5


@pytest.mark.asyncio
async def test_run_lease_without_redis_proceeds():
    client = MagicMock()
    client.setnx = AsyncMock()
    with patch.object(settings, "UPSTASH_REDIS_REST_URL", ""):
        lease = RunLease(client=client)
        assert await lease.acquire() is True
    client.setnx.assert_not_awaited()


@pytest.mark.asyncio
async def test_run_lease_contention_and_release():
    client = MagicMock()
    client.setnx = AsyncMock(side_effect=[True, False])
    client.eval = AsyncMock(return_value=1)
    with patch.object(settings, "UPSTASH_REDIS_REST_URL", "https://redis.test"), \
            patch.object(settings, "UPSTASH_REDIS_REST_TOKEN", "token"):
        first = RunLease(client=client, ttl=60)
        second = RunLease(client=client, ttl=60)
        assert await first.acquire() is True
        assert await second.acquire() is False

        await second.release()
        client.eval.assert_not_awaited()
        await first.release()

    client.setnx.assert_any_await("renewal:reminders:lease", first.token, ex=60)
    # compare-and-delete runs as one server-side script
    script, keys, args = client.eval.await_args.args
    assert "del" in script
    assert keys == ["renewal:reminders:lease"]
    assert args == [first.token]


@pytest.mark.asyncio
async def test_run_lease_extend():
    client = MagicMock()
    client.setnx = AsyncMock(return_value=True)
    client.eval = AsyncMock(side_effect=[1, 0])
    with patch.object(settings, "UPSTASH_REDIS_REST_URL", "https://redis.test"), \
            patch.object(settings, "UPSTASH_REDIS_REST_TOKEN", "token"):
        lease = RunLease(client=client, ttl=60)
        assert await lease.extend() is False
        client.eval.assert_not_awaited()

        await lease.acquire()
        assert await lease.extend() is True
        script, keys, args = client.eval.await_args.args
        assert "expire" in script
        assert args == [lease.token, 60]

        # key expired and was retaken by another run
        assert await lease.extend() is False


@pytest.mark.asyncio
async def test_run_lease_redis_error_proceeds():
    client = MagicMock()
    client.setnx = AsyncMock(side_effect=ConnectionError("upstash unreachable"))
    with patch.object(settings, "UPSTASH_REDIS_REST_URL", "https://redis.test"), \
            patch.object(settings, "UPSTASH_REDIS_REST_TOKEN", "token"):
        assert await RunLease(client=client).acquire() is True


def test_summary_to_dict():
    summary = ReminderRunSummary(run_date=TODAY)
    summary.notified[7] = 2
    assert summary.to_dict() == {
        "run_date": "2025-03-10",
        "skipped": False,
        "notified": {"60": 0, "30": 0, "7": 2, "1": 0},
        "statuses_updated": 0,
        "failed_phases": [],
    }

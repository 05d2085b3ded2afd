# renewdesk/jobs/renewal_reminders.py
"""
Daily renewal reminder run.

Triggered once a day by an external scheduler (cron "0 9 * * *" in the
business timezone) through POST /internal/jobs/renewal-reminders, or by an
admin through POST /api/v1/renewal-contracts/reminders/run. Both call
RenewalReminderScheduler.run_once().

Sequence:
  1. take the run lease (skip the run if another one holds it)
  2. for each threshold 60, 30, 7, 1: notify admins about contracts expiring
     exactly that many days from today, then latch the threshold's flag
  3. recompute the status of every dated contract

Every threshold and the status pass are separate phases: a failure is
logged, rolled back and recorded in the summary, and the next phase runs.
The flag for a contract is committed as soon as its notifications have been
attempted, so a crash mid-run never re-sends what was already latched.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
import structlog

from renewdesk.config import settings
from renewdesk.database import AsyncSessionLocal
from renewdesk.models.renewal_contract import REMINDER_THRESHOLDS
from renewdesk.models.user import User
from renewdesk.services.cache import cache
from renewdesk.services.contract_repository import ContractRepository
from renewdesk.services.contract_status import business_today
from renewdesk.services.notification_service import (
    ReminderNotifier,
    ReminderPayload,
    build_reminder_payload,
)
from renewdesk.services.renewal_service import recompute_all_statuses

logger = structlog.get_logger()
router = APIRouter()

LEASE_KEY = "renewal:reminders:lease"
STATUS_PHASE = "status_recompute"

# Compare-and-act on the lease key: only the holder's token may drop or renew it.
_RELEASE_SCRIPT = (
    "if redis.call('get', KEYS[1]) == ARGV[1] then "
    "return redis.call('del', KEYS[1]) else return 0 end"
)
_EXTEND_SCRIPT = (
    "if redis.call('get', KEYS[1]) == ARGV[1] then "
    "return redis.call('expire', KEYS[1], ARGV[2]) else return 0 end"
)


def threshold_phase(days: int) -> str:
    return f"threshold_{days}"


@dataclass
class ReminderRunSummary:
    run_date: date
    skipped: bool = False
    notified: dict[int, int] = field(
        default_factory=lambda: {days: 0 for days in REMINDER_THRESHOLDS}
    )
    statuses_updated: int = 0
    failed_phases: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "run_date": self.run_date.isoformat(),
            "skipped": self.skipped,
            "notified": {str(days): count for days, count in self.notified.items()},
            "statuses_updated": self.statuses_updated,
            "failed_phases": list(self.failed_phases),
        }


class RunLease:
    """
    Run-level mutex on Upstash Redis (SET NX EX).

    The key expires on its own after RENEWAL_LEASE_TTL_SECONDS, so a crashed
    run cannot block later days. A live run renews the TTL at the start of
    every phase, so the guarantee holds as long as a single phase finishes
    within the TTL. Without Redis the run goes ahead unguarded.
    """

    def __init__(self, client=cache, key: str = LEASE_KEY, ttl: Optional[int] = None):
        self.client = client
        self.key = key
        self.ttl = ttl or settings.RENEWAL_LEASE_TTL_SECONDS
        self.token = str(uuid.uuid4())
        self._held = False

    async def acquire(self) -> bool:
        if not settings.redis_configured:
            logger.warning("renewal_lease_unavailable", reason="redis_not_configured")
            return True
        try:
            acquired = await self.client.setnx(self.key, self.token, ex=self.ttl)
        except Exception as e:
            logger.warning("renewal_lease_unavailable", reason="redis_error", error=str(e))
            return True
        self._held = acquired
        return acquired

    async def extend(self) -> bool:
        """Reset the TTL if the key is still ours. False means the lease was lost."""
        if not self._held:
            return False
        try:
            renewed = await self.client.eval(_EXTEND_SCRIPT, [self.key], [self.token, self.ttl])
        except Exception as e:
            logger.warning("renewal_lease_extend_failed", error=str(e))
            return False
        if not renewed:
            logger.warning("renewal_lease_lost", key=self.key)
            return False
        return True

    async def release(self) -> None:
        if not self._held:
            return
        try:
            # It may have expired and been retaken by another run
            await self.client.eval(_RELEASE_SCRIPT, [self.key], [self.token])
        except Exception as e:
            logger.warning("renewal_lease_release_failed", error=str(e))
        finally:
            self._held = False


class RenewalReminderScheduler:
    def __init__(
        self,
        session_factory=AsyncSessionLocal,
        repository_cls=ContractRepository,
        notifier_cls=ReminderNotifier,
        today_fn: Callable[[], date] = business_today,
        lease: Optional[RunLease] = None,
        dispatch_timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.repository_cls = repository_cls
        self.notifier_cls = notifier_cls
        self.today_fn = today_fn
        self.lease = lease
        self.dispatch_timeout = dispatch_timeout or settings.NOTIFICATION_DISPATCH_TIMEOUT_SECONDS

    async def run_once(self) -> ReminderRunSummary:
        today = self.today_fn()
        summary = ReminderRunSummary(run_date=today)
        lease = self.lease or RunLease()

        if not await lease.acquire():
            logger.info("renewal_run_skipped", reason="lease_held", run_date=today.isoformat())
            summary.skipped = True
            return summary

        logger.info("renewal_run_started", run_date=today.isoformat())
        try:
            async with self.session_factory() as session:
                repo = self.repository_cls(session)
                notifier = self.notifier_cls(session)

                for days in REMINDER_THRESHOLDS:
                    await lease.extend()
                    try:
                        await self.process_threshold(session, repo, notifier, days, today, summary)
                    except Exception as e:
                        await self._fail_phase(session, summary, threshold_phase(days), e)

                await lease.extend()
                try:
                    summary.statuses_updated = await recompute_all_statuses(repo, today)
                    await session.commit()
                except Exception as e:
                    summary.statuses_updated = 0
                    await self._fail_phase(session, summary, STATUS_PHASE, e)
        finally:
            await lease.release()

        logger.info(
            "renewal_run_complete",
            run_date=today.isoformat(),
            notified=summary.notified,
            statuses_updated=summary.statuses_updated,
            failed_phases=summary.failed_phases,
        )
        return summary

    async def process_threshold(
        self,
        session,
        repo: ContractRepository,
        notifier: ReminderNotifier,
        days: int,
        today: date,
        summary: ReminderRunSummary,
    ) -> None:
        contracts = await repo.find_due_for_reminder(days, today)
        logger.info("renewal_threshold_checked", days=days, due=len(contracts))
        if not contracts:
            return

        admins = await notifier.list_admins()
        if not admins:
            logger.warning("renewal_no_admins", days=days, due=len(contracts))

        for contract in contracts:
            payload = build_reminder_payload(contract, days)
            await self.dispatch(notifier, admins, payload)

            await repo.mark_reminder_sent(contract, days)
            await session.commit()
            summary.notified[days] += 1
            logger.info(
                "renewal_reminder_sent",
                contract_id=str(contract.id),
                days=days,
                admins=len(admins),
            )

    async def dispatch(
        self, notifier: ReminderNotifier, admins: list[User], payload: ReminderPayload
    ) -> None:
        """Attempt every admin on both channels; failures are logged, never raised."""
        for admin in admins:
            try:
                await asyncio.wait_for(
                    notifier.notify_in_app(admin, payload), timeout=self.dispatch_timeout
                )
            except Exception as e:
                logger.error(
                    "renewal_inapp_failed",
                    contract_id=payload.contract_id,
                    admin_id=str(admin.id),
                    error=str(e) or type(e).__name__,
                )

        for admin in admins:
            if not admin.email:
                continue
            try:
                sent = await asyncio.wait_for(
                    notifier.send_email(admin, payload), timeout=self.dispatch_timeout
                )
            except Exception as e:
                logger.error(
                    "renewal_email_failed",
                    contract_id=payload.contract_id,
                    to=admin.email,
                    error=str(e) or type(e).__name__,
                )
                continue
            if not sent:
                logger.warning(
                    "renewal_email_failed",
                    contract_id=payload.contract_id,
                    to=admin.email,
                    error="not_delivered",
                )

    async def _fail_phase(self, session, summary: ReminderRunSummary, phase: str, exc: Exception):
        logger.error("renewal_phase_failed", phase=phase, error=str(exc) or type(exc).__name__)
        summary.failed_phases.append(phase)
        try:
            await session.rollback()
        except Exception as e:
            logger.error("renewal_phase_rollback_failed", phase=phase, error=str(e))


def get_reminder_scheduler() -> RenewalReminderScheduler:
    return RenewalReminderScheduler()


# ---------------------------------------------------------------------------
# Internal trigger
# ---------------------------------------------------------------------------


async def _require_internal_auth(request: Request):
    """Validate X-Internal-Secret against INTERNAL_JOB_SECRET."""
    secret = settings.INTERNAL_JOB_SECRET
    if not secret:
        # Unauthenticated internal calls are only tolerated in DEBUG
        if settings.DEBUG:
            return
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": {
                    "code": "INTERNAL_SECRET_MISSING",
                    "message": "INTERNAL_JOB_SECRET is not configured",
                }
            },
        )
    provided = request.headers.get("X-Internal-Secret")
    if not provided or provided != secret:
        logger.warning("internal_auth_failed", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": {"code": "FORBIDDEN", "message": "Forbidden"}},
        )


@router.post("/renewal-reminders")
async def run_renewal_reminders(
    _auth: None = Depends(_require_internal_auth),
    scheduler: RenewalReminderScheduler = Depends(get_reminder_scheduler),
):
    """Daily: notify admins at 60/30/7/1 days before expiry, then refresh statuses."""
    summary = await scheduler.run_once()
    return summary.to_dict()

"""
Contract lifecycle status, derived purely from the end date.

    days_remaining < 0          → EXPIRED
    0 <= days_remaining <= 30   → EXPIRING_SOON
    otherwise                   → ACTIVE

Comparison is date-only. "Today" is the calendar date in the business
timezone (settings.RENEWAL_TIMEZONE) so the result does not depend on the
host's local zone.
"""

from datetime import date, datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from renewdesk.config import settings
from renewdesk.models.renewal_contract import ContractStatus

EXPIRING_SOON_DAYS = 30

DateLike = Union[date, datetime]


def business_today(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> date:
    """Current calendar date in the business timezone."""
    tz = ZoneInfo(tz_name or settings.RENEWAL_TIMEZONE)
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(tz).date()


def _as_date(value: DateLike) -> date:
    # datetime is a subclass of date, so check it first
    if isinstance(value, datetime):
        return value.date()
    return value


def days_until(end_date: DateLike, reference_date: Optional[DateLike] = None) -> int:
    reference = _as_date(reference_date) if reference_date is not None else business_today()
    return (_as_date(end_date) - reference).days


def calculate_status(
    end_date: DateLike, reference_date: Optional[DateLike] = None
) -> ContractStatus:
    days_remaining = days_until(end_date, reference_date)
    if days_remaining < 0:
        return ContractStatus.EXPIRED
    if days_remaining <= EXPIRING_SOON_DAYS:
        return ContractStatus.EXPIRING_SOON
    return ContractStatus.ACTIVE


def status_for(
    end_date: Optional[DateLike], reference_date: Optional[DateLike] = None
) -> ContractStatus:
    """Like calculate_status, but a contract without an end date is a DRAFT."""
    if end_date is None:
        return ContractStatus.DRAFT
    return calculate_status(end_date, reference_date)

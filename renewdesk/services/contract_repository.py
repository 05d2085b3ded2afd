"""
Persistence for renewal contracts.

Uses the caller's session and only flushes; the caller owns the transaction
(get_db() commits per request, the reminder job commits per contract).
"""

import uuid
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from renewdesk.models.renewal_contract import (
    REMINDER_FLAG_COLUMNS,
    ContractStatus,
    RenewalContract,
)


class ContractRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    # -------------------------------------------------
    # Read
    # -------------------------------------------------
    async def get(self, contract_id: uuid.UUID) -> Optional[RenewalContract]:
        return await self.session.get(RenewalContract, contract_id)

    async def list_contracts(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[RenewalContract], int]:
        q = select(RenewalContract)
        count_q = select(func.count(RenewalContract.id))

        if status:
            q = q.where(RenewalContract.status == status)
            count_q = count_q.where(RenewalContract.status == status)
        if search:
            pattern = f"%{search}%"
            matches = or_(
                RenewalContract.po_number.ilike(pattern),
                RenewalContract.vendor_name.ilike(pattern),
                RenewalContract.original_file_name.ilike(pattern),
            )
            q = q.where(matches)
            count_q = count_q.where(matches)

        total = (await self.session.execute(count_q)).scalar() or 0
        result = await self.session.execute(
            q.order_by(RenewalContract.end_date.asc().nulls_last(), RenewalContract.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def count_by_status(self) -> dict[str, int]:
        result = await self.session.execute(
            select(RenewalContract.status, func.count(RenewalContract.id)).group_by(
                RenewalContract.status
            )
        )
        return {row[0]: row[1] for row in result.all()}

    async def find_due_for_reminder(self, days: int, today: date) -> list[RenewalContract]:
        """Contracts expiring exactly `days` from `today` that still need this reminder.

        Window is [today + days, today + days + 1); DRAFT, acknowledged and
        already-reminded contracts are excluded.
        """
        result = await self.session.execute(build_due_reminder_query(days, today))
        return list(result.scalars().all())

    async def list_with_end_date(self) -> list[RenewalContract]:
        result = await self.session.execute(
            select(RenewalContract).where(RenewalContract.end_date.is_not(None))
        )
        return list(result.scalars().all())

    # -------------------------------------------------
    # Write
    # -------------------------------------------------
    async def add(self, contract: RenewalContract) -> RenewalContract:
        self.session.add(contract)
        await self.session.flush()
        return contract

    async def save(self, contract: RenewalContract) -> RenewalContract:
        await self.session.flush()
        return contract

    async def flush(self) -> None:
        await self.session.flush()

    async def mark_reminder_sent(self, contract: RenewalContract, days: int) -> None:
        contract.mark_reminder_sent(days)
        await self.session.flush()

    async def delete(self, contract: RenewalContract) -> None:
        await self.session.execute(
            delete(RenewalContract).where(RenewalContract.id == contract.id)
        )


def build_due_reminder_query(days: int, today: date):
    target = today + timedelta(days=days)
    flag = getattr(RenewalContract, REMINDER_FLAG_COLUMNS[days])
    return (
        select(RenewalContract)
        .where(
            RenewalContract.end_date >= target,
            RenewalContract.end_date < target + timedelta(days=1),
            RenewalContract.status != ContractStatus.DRAFT.value,
            flag == False,  # noqa: E712
            RenewalContract.is_acknowledged == False,  # noqa: E712
        )
        .order_by(RenewalContract.created_at.asc())
    )

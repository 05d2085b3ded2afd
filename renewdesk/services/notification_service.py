"""
Renewal reminder notifications: payload construction, in-app records and
e-mail rendering/dispatch.

The scheduler owns sequencing and failure isolation; every method here
either succeeds or raises so the caller can log per admin.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from renewdesk.models.notification import AppNotification
from renewdesk.models.renewal_contract import RenewalContract
from renewdesk.models.user import User
from renewdesk.services.email_service import send_email

logger = structlog.get_logger()

NOTIFICATION_CATEGORY_RENEWAL = "RENEWAL"
ADMIN_ROLE = "admin"

# ---------- Template registry ----------

TEMPLATES = {
    "renewal_reminder": {
        "subject": "[RenewDesk] {title}",
        "html": (
            "<h2>{title}</h2>"
            "<p>{body}</p>"
            "<p><strong>PO Number:</strong> {po_number}</p>"
            "<p><strong>Vendor:</strong> {vendor_name}</p>"
            "<p><strong>End Date:</strong> {end_date}</p>"
            "<p>Open <a href='{link}'>the contract</a> to renew it or acknowledge "
            "the reminder.</p>"
        ),
    },
}

_ID_MONTHS = (
    "Januari", "Februari", "Maret", "April", "Mei", "Juni",
    "Juli", "Agustus", "September", "Oktober", "November", "Desember",
)


def format_end_date(value: Optional[date]) -> str:
    """Long Indonesian date, e.g. 17 Agustus 2025."""
    if value is None:
        return "Unknown"
    return f"{value.day} {_ID_MONTHS[value.month - 1]} {value.year}"


def urgency_for(days: int) -> str:
    if days == 1:
        return "URGENT"
    if days == 7:
        return "WARNING"
    if days == 60:
        return "EARLY NOTICE"
    return "REMINDER"


def notification_type_for(days: int) -> str:
    return f"RENEWAL_D{days}_WARNING"


@dataclass
class ReminderPayload:
    contract_id: str
    days: int
    urgency: str
    title: str
    body: str
    notification_type: str
    link: str
    po_number: str
    vendor_name: str
    end_date: str

    def template_context(self) -> dict:
        return {
            "title": self.title,
            "body": self.body,
            "po_number": self.po_number,
            "vendor_name": self.vendor_name,
            "end_date": self.end_date,
            "link": self.link,
        }


def build_reminder_payload(contract: RenewalContract, days: int) -> ReminderPayload:
    urgency = urgency_for(days)
    label = contract.po_number or contract.original_file_name
    vendor = contract.vendor_name or "Unknown"
    end_date = format_end_date(contract.end_date)
    return ReminderPayload(
        contract_id=str(contract.id),
        days=days,
        urgency=urgency,
        title=f"{urgency}: Contract Expiring in {days} Day(s)",
        body=f'Contract "{label}" (Vendor: {vendor}) will expire on {end_date}.',
        notification_type=notification_type_for(days),
        link=f"/renewal/detail/{contract.id}",
        po_number=contract.po_number or "-",
        vendor_name=vendor,
        end_date=end_date,
    )


def render_template(template_id: str, context: dict) -> tuple[str, str]:
    """Return (subject, html). Raises KeyError for unknown templates or missing keys."""
    template = TEMPLATES[template_id]
    return template["subject"].format(**context), template["html"].format(**context)


class ReminderNotifier:
    """Dispatches one reminder payload to admins, one channel call at a time."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_admins(self) -> list[User]:
        result = await self.session.execute(
            select(User)
            .where(User.role == ADMIN_ROLE, User.is_active == True)  # noqa: E712
            .order_by(User.created_at.asc())
        )
        return list(result.scalars().all())

    async def notify_in_app(self, admin: User, payload: ReminderPayload) -> AppNotification:
        # Savepoint: a failed insert for one admin must not poison the outer transaction.
        async with self.session.begin_nested():
            notification = AppNotification(
                id=uuid.uuid4(),
                user_id=admin.id,
                title=payload.title,
                body=payload.body,
                type=payload.notification_type,
                category=NOTIFICATION_CATEGORY_RENEWAL,
                entity_id=payload.contract_id,
                link=payload.link,
                is_read=False,
                created_at=datetime.utcnow(),
            )
            self.session.add(notification)
            await self.session.flush()
        return notification

    async def send_email(self, admin: User, payload: ReminderPayload) -> bool:
        subject, html = render_template("renewal_reminder", payload.template_context())
        sent = await send_email(admin.email, subject, html, text_content=payload.body)
        logger.info(
            "renewal_email_dispatched",
            contract_id=payload.contract_id,
            days=payload.days,
            to=admin.email,
            success=sent,
        )
        return sent

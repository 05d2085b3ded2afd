"""
Renewal contract model: a vendor agreement tracked for expiry.

Status is derived from end_date (see services/contract_status.py):
  DRAFT (no end date) | ACTIVE | EXPIRING_SOON | EXPIRED

Each lead-time threshold (60/30/7/1 days) has its own one-way
"reminder sent" latch, persisted here so the daily job can be re-run safely.
"""

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from renewdesk.database import Base


class ContractStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    EXPIRING_SOON = "EXPIRING_SOON"
    EXPIRED = "EXPIRED"


# Days before expiry, most distant first.
REMINDER_THRESHOLDS = (60, 30, 7, 1)

REMINDER_FLAG_COLUMNS = {
    60: "reminder_d60_sent",
    30: "reminder_d30_sent",
    7: "reminder_d7_sent",
    1: "reminder_d1_sent",
}


class RenewalContract(Base):
    __tablename__ = "renewal_contracts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # Extracted or manually entered metadata
    po_number: Mapped[Optional[str]] = mapped_column(String(100))
    vendor_name: Mapped[Optional[str]] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text)
    contract_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2))
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    # Source file (empty for manual entries)
    original_file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ContractStatus.DRAFT.value
    )

    reminder_d60_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reminder_d30_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reminder_d7_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reminder_d1_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    is_acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    acknowledged_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )

    extraction_strategy: Mapped[Optional[str]] = mapped_column(String(50))
    extraction_confidence: Mapped[Optional[float]] = mapped_column(Float)
    raw_extracted_data: Mapped[Optional[dict]] = mapped_column(JSONB)

    uploaded_by_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_renewal_end_date", "end_date"),
        Index("idx_renewal_status", "status"),
    )

    def is_reminder_sent(self, days: int) -> bool:
        return bool(getattr(self, REMINDER_FLAG_COLUMNS[days]))

    def mark_reminder_sent(self, days: int) -> None:
        setattr(self, REMINDER_FLAG_COLUMNS[days], True)

    def reset_reminders(self) -> None:
        for column in REMINDER_FLAG_COLUMNS.values():
            setattr(self, column, False)

    def is_due_for_reminder(self, days: int, today: date) -> bool:
        """In-memory mirror of ContractRepository.find_due_for_reminder."""
        if self.end_date is None or self.status == ContractStatus.DRAFT.value:
            return False
        if self.is_acknowledged or self.is_reminder_sent(days):
            return False
        return (self.end_date - today).days == days

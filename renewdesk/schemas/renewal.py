from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from renewdesk.models.renewal_contract import RenewalContract
from renewdesk.services.extraction_strategies import ExtractionResult
from renewdesk.services.text_validation import TextValidationResult


class ContractCreate(BaseModel):
    po_number: Optional[str] = Field(None, max_length=100)
    vendor_name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    contract_value: Optional[Decimal] = Field(None, ge=0, max_digits=15, decimal_places=2)
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ContractUpdate(ContractCreate):
    """Partial update: only fields present in the request body are applied."""


class ContractResponse(BaseModel):
    id: str
    po_number: Optional[str] = None
    vendor_name: Optional[str] = None
    description: Optional[str] = None
    contract_value: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    original_file_name: str
    file_path: str
    file_size: int
    status: str
    reminder_d60_sent: bool
    reminder_d30_sent: bool
    reminder_d7_sent: bool
    reminder_d1_sent: bool
    is_acknowledged: bool
    acknowledged_at: Optional[str] = None
    acknowledged_by_id: Optional[str] = None
    extraction_strategy: Optional[str] = None
    extraction_confidence: Optional[float] = None
    uploaded_by_id: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


def contract_to_response(c: RenewalContract) -> ContractResponse:
    return ContractResponse(
        id=str(c.id),
        po_number=c.po_number,
        vendor_name=c.vendor_name,
        description=c.description,
        contract_value=str(c.contract_value) if c.contract_value is not None else None,
        start_date=c.start_date.isoformat() if c.start_date else None,
        end_date=c.end_date.isoformat() if c.end_date else None,
        original_file_name=c.original_file_name,
        file_path=c.file_path or "",
        file_size=c.file_size or 0,
        status=c.status,
        reminder_d60_sent=bool(c.reminder_d60_sent),
        reminder_d30_sent=bool(c.reminder_d30_sent),
        reminder_d7_sent=bool(c.reminder_d7_sent),
        reminder_d1_sent=bool(c.reminder_d1_sent),
        is_acknowledged=bool(c.is_acknowledged),
        acknowledged_at=c.acknowledged_at.isoformat() if c.acknowledged_at else None,
        acknowledged_by_id=str(c.acknowledged_by_id) if c.acknowledged_by_id else None,
        extraction_strategy=c.extraction_strategy,
        extraction_confidence=c.extraction_confidence,
        uploaded_by_id=str(c.uploaded_by_id),
        created_at=c.created_at.isoformat() if c.created_at else None,
        updated_at=c.updated_at.isoformat() if c.updated_at else None,
    )


class ValidationInfo(BaseModel):
    is_valid: bool
    character_count: int
    is_scanned_image: bool
    warning_message: Optional[str] = None
    raw_text_preview: Optional[str] = None
    was_forced: bool = False

    @classmethod
    def from_result(cls, result: TextValidationResult, was_forced: bool = False) -> "ValidationInfo":
        return cls(**result.to_dict(), was_forced=was_forced)


class ExtractionInfo(BaseModel):
    strategy: str
    confidence: float
    po_number: Optional[str] = None
    vendor_name: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    contract_value: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_result(cls, result: ExtractionResult) -> "ExtractionInfo":
        payload = result.to_payload()
        payload.pop("raw_text", None)
        return cls(**payload)


class UploadWarningResponse(BaseModel):
    success: bool = False
    warning: str
    validation: ValidationInfo
    message: str


class UploadSuccessResponse(BaseModel):
    success: bool = True
    contract: ContractResponse
    extraction: ExtractionInfo
    validation: ValidationInfo


class ContractStats(BaseModel):
    total: int
    active: int
    expiring_soon: int
    expired: int
    draft: int


class ReminderRunResponse(BaseModel):
    run_date: str
    skipped: bool
    notified: dict[str, int]
    statuses_updated: int
    failed_phases: list[str]

"""
Renewal contract use cases: upload & extract, manual entry, edits,
acknowledgment toggles, deletion, dashboard counts and the status pass.

Services work on the request session and only flush; get_db() commits.
Rejections are raised as HTTPException with the usual
{"error": {"code", "message"}} detail.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from renewdesk.models.renewal_contract import ContractStatus, RenewalContract
from renewdesk.schemas.renewal import ContractCreate, ContractUpdate
from renewdesk.services.audit_service import create_audit_log
from renewdesk.services.contract_extraction import (
    MANUAL_STRATEGY,
    RAW_TEXT_LIMIT,
    ExtractionStrategyChain,
    extraction_chain,
    none_result,
    normalize_text,
)
from renewdesk.services.contract_repository import ContractRepository
from renewdesk.services.contract_status import business_today, calculate_status, status_for
from renewdesk.services.extraction_strategies import ExtractionResult
from renewdesk.services.storage import R2Client, build_contract_key, r2_client
from renewdesk.services.text_validation import TextValidationResult, validate_pdf

logger = structlog.get_logger()

ENTITY_TYPE = "RENEWAL_CONTRACT"
MANUAL_FILE_NAME = "Manual Entry"

_EDITABLE_FIELDS = (
    "po_number",
    "vendor_name",
    "description",
    "contract_value",
    "start_date",
    "end_date",
)


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": {"code": code, "message": message}},
    )


def contract_state(contract: RenewalContract) -> dict:
    """JSON-safe snapshot used for audit before/after states."""
    return {
        "po_number": contract.po_number,
        "vendor_name": contract.vendor_name,
        "description": contract.description,
        "contract_value": str(contract.contract_value) if contract.contract_value is not None else None,
        "start_date": contract.start_date.isoformat() if contract.start_date else None,
        "end_date": contract.end_date.isoformat() if contract.end_date else None,
        "status": contract.status,
        "is_acknowledged": bool(contract.is_acknowledged),
        "reminder_d60_sent": bool(contract.reminder_d60_sent),
        "reminder_d30_sent": bool(contract.reminder_d30_sent),
        "reminder_d7_sent": bool(contract.reminder_d7_sent),
        "reminder_d1_sent": bool(contract.reminder_d1_sent),
    }


def _check_date_range(start_date: Optional[date], end_date: Optional[date]) -> None:
    if start_date and end_date and end_date < start_date:
        raise _error(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_DATE_RANGE",
            "end_date must not be before start_date",
        )


def _new_contract(
    uploaded_by: str,
    original_file_name: str,
    file_path: str,
    file_size: int,
    extraction_strategy: str,
    extraction_confidence: float,
    status_value: str,
    **fields,
) -> RenewalContract:
    now = datetime.utcnow()
    return RenewalContract(
        id=uuid.uuid4(),
        original_file_name=original_file_name,
        file_path=file_path,
        file_size=file_size,
        status=status_value,
        reminder_d60_sent=False,
        reminder_d30_sent=False,
        reminder_d7_sent=False,
        reminder_d1_sent=False,
        is_acknowledged=False,
        extraction_strategy=extraction_strategy,
        extraction_confidence=extraction_confidence,
        uploaded_by_id=uuid.UUID(str(uploaded_by)),
        created_at=now,
        updated_at=now,
        **fields,
    )


# ---------------------------------------------------------------------------
# Upload & extract
# ---------------------------------------------------------------------------


@dataclass
class UploadOutcome:
    validation: TextValidationResult
    contract: Optional[RenewalContract] = None
    extraction: Optional[ExtractionResult] = None

    @property
    def accepted(self) -> bool:
        return self.contract is not None

    @property
    def forced(self) -> bool:
        """Stored despite failing the text gate."""
        return self.accepted and not self.validation.is_valid


async def upload_and_extract(
    db: AsyncSession,
    file_bytes: bytes,
    filename: Optional[str],
    current_user: dict,
    force_upload: bool = False,
    content_type: str = "application/pdf",
    today: Optional[date] = None,
    chain: ExtractionStrategyChain = extraction_chain,
    storage: R2Client = r2_client,
) -> UploadOutcome:
    """
    Validate, extract and persist an uploaded contract PDF.

    A document that fails the text gate is returned as a warning with nothing
    stored, unless force_upload is set. A forced document that failed the gate
    is stored with the NONE sentinel: the chain is not consulted for text the
    gate already judged unusable.
    """
    validation, text = await validate_pdf(file_bytes)

    if not validation.is_valid and not force_upload:
        logger.info(
            "renewal_upload_rejected",
            file_name=filename,
            character_count=validation.character_count,
            scanned=validation.is_scanned_image,
        )
        return UploadOutcome(validation=validation)

    if validation.is_valid:
        extraction = chain.extract(text)
    else:
        extraction = none_result(normalize_text(text)[:RAW_TEXT_LIMIT])
        logger.warning(
            "renewal_upload_forced",
            file_name=filename,
            character_count=validation.character_count,
        )

    key = build_contract_key(filename)
    try:
        storage.upload(file_bytes, key, content_type=content_type)
    except Exception as e:
        logger.error("renewal_file_upload_failed", key=key, error=str(e))
        raise _error(
            status.HTTP_502_BAD_GATEWAY,
            "STORAGE_UPLOAD_FAILED",
            "Failed to upload file to storage",
        )

    contract = _new_contract(
        uploaded_by=current_user["user_id"],
        original_file_name=filename or "contract.pdf",
        file_path=key,
        file_size=len(file_bytes),
        extraction_strategy=extraction.strategy,
        extraction_confidence=extraction.confidence,
        status_value=status_for(extraction.end_date, today).value,
        po_number=extraction.po_number,
        vendor_name=extraction.vendor_name,
        description=extraction.description,
        contract_value=extraction.contract_value,
        start_date=extraction.start_date,
        end_date=extraction.end_date,
        raw_extracted_data=extraction.to_payload(),
    )
    await ContractRepository(db).add(contract)

    await create_audit_log(
        db,
        actor_id=current_user["user_id"],
        actor_email=current_user.get("email"),
        action="RENEWAL_CONTRACT_UPLOADED",
        entity_type=ENTITY_TYPE,
        entity_id=str(contract.id),
        after_state=contract_state(contract),
    )
    logger.info(
        "renewal_contract_uploaded",
        contract_id=str(contract.id),
        strategy=extraction.strategy,
        confidence=extraction.confidence,
        status=contract.status,
        forced=not validation.is_valid,
    )
    return UploadOutcome(validation=validation, contract=contract, extraction=extraction)


# ---------------------------------------------------------------------------
# Manual entry & edits
# ---------------------------------------------------------------------------


async def create_manual(
    db: AsyncSession,
    body: ContractCreate,
    current_user: dict,
    today: Optional[date] = None,
) -> RenewalContract:
    _check_date_range(body.start_date, body.end_date)

    contract = _new_contract(
        uploaded_by=current_user["user_id"],
        original_file_name=MANUAL_FILE_NAME,
        file_path="",
        file_size=0,
        extraction_strategy=MANUAL_STRATEGY,
        extraction_confidence=1.0,
        status_value=status_for(body.end_date, today).value,
        **body.model_dump(),
    )
    await ContractRepository(db).add(contract)

    await create_audit_log(
        db,
        actor_id=current_user["user_id"],
        actor_email=current_user.get("email"),
        action="RENEWAL_CONTRACT_CREATED",
        entity_type=ENTITY_TYPE,
        entity_id=str(contract.id),
        after_state=contract_state(contract),
    )
    logger.info("renewal_contract_created", contract_id=str(contract.id), status=contract.status)
    return contract


async def get_contract_or_404(db: AsyncSession, contract_id: uuid.UUID) -> RenewalContract:
    contract = await ContractRepository(db).get(contract_id)
    if contract is None:
        raise _error(
            status.HTTP_404_NOT_FOUND,
            "CONTRACT_NOT_FOUND",
            f"Contract with ID {contract_id} not found",
        )
    return contract


async def list_contracts(
    db: AsyncSession,
    status_filter: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[RenewalContract], int]:
    return await ContractRepository(db).list_contracts(
        status=status_filter, search=search, page=page, limit=limit
    )


async def update_contract(
    db: AsyncSession,
    contract_id: uuid.UUID,
    body: ContractUpdate,
    current_user: dict,
    today: Optional[date] = None,
) -> RenewalContract:
    """
    Apply a partial update.

    Touching end_date recomputes the status right away. Moving end_date to a
    different day also clears all four reminder flags, so an extended
    contract is reminded again against its new expiry.
    """
    contract = await get_contract_or_404(db, contract_id)
    changes = {
        field: value
        for field, value in body.model_dump(exclude_unset=True).items()
        if field in _EDITABLE_FIELDS
    }

    _check_date_range(
        changes.get("start_date", contract.start_date),
        changes.get("end_date", contract.end_date),
    )

    before = contract_state(contract)
    old_end_date = contract.end_date
    for field, value in changes.items():
        setattr(contract, field, value)

    if "end_date" in changes:
        contract.status = status_for(contract.end_date, today).value
        if contract.end_date != old_end_date:
            contract.reset_reminders()
            logger.info(
                "renewal_reminders_reset",
                contract_id=str(contract.id),
                old_end_date=old_end_date.isoformat() if old_end_date else None,
                new_end_date=contract.end_date.isoformat() if contract.end_date else None,
            )

    contract.updated_at = datetime.utcnow()
    await ContractRepository(db).save(contract)

    await create_audit_log(
        db,
        actor_id=current_user["user_id"],
        actor_email=current_user.get("email"),
        action="RENEWAL_CONTRACT_UPDATED",
        entity_type=ENTITY_TYPE,
        entity_id=str(contract.id),
        before_state=before,
        after_state=contract_state(contract),
    )
    logger.info("renewal_contract_updated", contract_id=str(contract.id), fields=sorted(changes))
    return contract


# ---------------------------------------------------------------------------
# Acknowledgment
# ---------------------------------------------------------------------------


async def acknowledge_contract(
    db: AsyncSession, contract_id: uuid.UUID, current_user: dict
) -> RenewalContract:
    contract = await get_contract_or_404(db, contract_id)
    if contract.is_acknowledged:
        raise _error(
            status.HTTP_400_BAD_REQUEST,
            "ALREADY_ACKNOWLEDGED",
            "Contract already acknowledged",
        )

    before = contract_state(contract)
    contract.is_acknowledged = True
    contract.acknowledged_at = datetime.utcnow()
    contract.acknowledged_by_id = uuid.UUID(str(current_user["user_id"]))
    contract.updated_at = datetime.utcnow()
    await ContractRepository(db).save(contract)

    await create_audit_log(
        db,
        actor_id=current_user["user_id"],
        actor_email=current_user.get("email"),
        action="RENEWAL_CONTRACT_ACKNOWLEDGED",
        entity_type=ENTITY_TYPE,
        entity_id=str(contract.id),
        before_state=before,
        after_state=contract_state(contract),
    )
    logger.info("renewal_contract_acknowledged", contract_id=str(contract.id))
    return contract


async def unacknowledge_contract(
    db: AsyncSession, contract_id: uuid.UUID, current_user: dict
) -> RenewalContract:
    contract = await get_contract_or_404(db, contract_id)
    if not contract.is_acknowledged:
        raise _error(
            status.HTTP_400_BAD_REQUEST,
            "NOT_ACKNOWLEDGED",
            "Contract is not acknowledged",
        )

    before = contract_state(contract)
    contract.is_acknowledged = False
    contract.acknowledged_at = None
    contract.acknowledged_by_id = None
    contract.updated_at = datetime.utcnow()
    await ContractRepository(db).save(contract)

    await create_audit_log(
        db,
        actor_id=current_user["user_id"],
        actor_email=current_user.get("email"),
        action="RENEWAL_CONTRACT_UNACKNOWLEDGED",
        entity_type=ENTITY_TYPE,
        entity_id=str(contract.id),
        before_state=before,
        after_state=contract_state(contract),
    )
    logger.info("renewal_contract_unacknowledged", contract_id=str(contract.id))
    return contract


# ---------------------------------------------------------------------------
# Delete, stats, status pass
# ---------------------------------------------------------------------------


async def delete_contract(
    db: AsyncSession,
    contract_id: uuid.UUID,
    current_user: dict,
    storage: R2Client = r2_client,
) -> None:
    contract = await get_contract_or_404(db, contract_id)
    before = contract_state(contract)
    file_path = contract.file_path

    await ContractRepository(db).delete(contract)
    await create_audit_log(
        db,
        actor_id=current_user["user_id"],
        actor_email=current_user.get("email"),
        action="RENEWAL_CONTRACT_DELETED",
        entity_type=ENTITY_TYPE,
        entity_id=str(contract_id),
        before_state=before,
    )

    if file_path:
        try:
            storage.delete(file_path)
        except Exception as e:
            # best effort
            logger.warning("renewal_file_delete_failed", key=file_path, error=str(e))

    logger.info("renewal_contract_deleted", contract_id=str(contract_id))


async def get_dashboard_stats(db: AsyncSession) -> dict:
    counts = await ContractRepository(db).count_by_status()
    return {
        "total": sum(counts.values()),
        "active": counts.get(ContractStatus.ACTIVE.value, 0),
        "expiring_soon": counts.get(ContractStatus.EXPIRING_SOON.value, 0),
        "expired": counts.get(ContractStatus.EXPIRED.value, 0),
        "draft": counts.get(ContractStatus.DRAFT.value, 0),
    }


async def recompute_all_statuses(repo: ContractRepository, today: Optional[date] = None) -> int:
    """Re-derive the status of every dated contract; returns how many changed."""
    today = today or business_today()
    updated = 0
    for contract in await repo.list_with_end_date():
        new_status = calculate_status(contract.end_date, today).value
        if contract.status != new_status:
            logger.info(
                "renewal_status_changed",
                contract_id=str(contract.id),
                old_status=contract.status,
                new_status=new_status,
            )
            contract.status = new_status
            updated += 1
    if updated:
        await repo.flush()
    return updated

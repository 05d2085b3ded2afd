"""
Renewal contracts: /api/v1/renewal-contracts

Upload-and-extract, manual entry, edits, acknowledgment and the manual
reminder trigger. Admin only.

    DRAFT (no end date) | ACTIVE | EXPIRING_SOON (<= 30 days) | EXPIRED
"""

import uuid
from typing import Optional, Union

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from renewdesk.config import settings
from renewdesk.database import get_db
from renewdesk.jobs.renewal_reminders import RenewalReminderScheduler, get_reminder_scheduler
from renewdesk.middleware.auth import get_current_user
from renewdesk.middleware.authorization import require_roles
from renewdesk.models.renewal_contract import ContractStatus
from renewdesk.schemas.common import PaginatedResponse, build_pagination
from renewdesk.schemas.renewal import (
    ContractCreate,
    ContractResponse,
    ContractStats,
    ContractUpdate,
    ExtractionInfo,
    ReminderRunResponse,
    UploadSuccessResponse,
    UploadWarningResponse,
    ValidationInfo,
    contract_to_response,
)
from renewdesk.services import renewal_service

logger = structlog.get_logger()
router = APIRouter(dependencies=[Depends(require_roles("admin"))])

ALLOWED_CONTENT_TYPES = {"application/pdf", "application/x-pdf"}
FORCE_UPLOAD_HINT = "Set forceUpload=true to store the file anyway; fields can then be filled in manually."


@router.get("/stats", response_model=ContractStats)
async def get_stats(db: AsyncSession = Depends(get_db)):
    return ContractStats(**await renewal_service.get_dashboard_stats(db))


@router.post("/reminders/run", response_model=ReminderRunResponse)
async def trigger_reminders(
    current_user: dict = Depends(get_current_user),
    scheduler: RenewalReminderScheduler = Depends(get_reminder_scheduler),
):
    """Run the daily reminder sequence now (same steps as the scheduled run)."""
    logger.info("renewal_manual_run_requested", user_id=current_user["user_id"])
    summary = await scheduler.run_once()
    return ReminderRunResponse(**summary.to_dict())


@router.get("", response_model=PaginatedResponse[ContractResponse])
async def list_contracts(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=100),
    contract_status: Optional[ContractStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=100),
    db: AsyncSession = Depends(get_db),
):
    rows, total = await renewal_service.list_contracts(
        db,
        status_filter=contract_status.value if contract_status else None,
        search=search.strip() if search else None,
        page=page,
        limit=limit,
    )
    return PaginatedResponse(
        data=[contract_to_response(c) for c in rows],
        pagination=build_pagination(page, limit, total),
    )


@router.post("/manual", response_model=ContractResponse, status_code=status.HTTP_201_CREATED)
async def create_manual(
    body: ContractCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    contract = await renewal_service.create_manual(db, body, current_user)
    return contract_to_response(contract)


@router.post("/upload")
async def upload_contract(
    file: UploadFile = File(...),
    force_upload: bool = Query(False, alias="forceUpload"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Union[UploadSuccessResponse, UploadWarningResponse]:
    """
    Upload a contract PDF and extract its metadata.

    Low-text (likely scanned) or unreadable files come back as a warning and
    nothing is stored; repeat with forceUpload=true to keep them anyway.
    """
    if file.content_type not in ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": {
                    "code": "UNSUPPORTED_FILE_TYPE",
                    "message": f"Only PDF files are accepted, got {file.content_type}",
                }
            },
        )

    file_bytes = await file.read()
    if len(file_bytes) > settings.CONTRACT_UPLOAD_MAX_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={
                "error": {
                    "code": "FILE_TOO_LARGE",
                    "message": f"File too large. Max size: {settings.CONTRACT_UPLOAD_MAX_BYTES // (1024 * 1024)} MB",
                }
            },
        )

    outcome = await renewal_service.upload_and_extract(
        db,
        file_bytes,
        file.filename,
        current_user,
        force_upload=force_upload,
        content_type=file.content_type,
    )

    validation = ValidationInfo.from_result(outcome.validation, was_forced=outcome.forced)
    if not outcome.accepted:
        return UploadWarningResponse(
            warning=outcome.validation.warning_message or "",
            validation=validation,
            message=FORCE_UPLOAD_HINT,
        )
    return UploadSuccessResponse(
        contract=contract_to_response(outcome.contract),
        extraction=ExtractionInfo.from_result(outcome.extraction),
        validation=validation,
    )


@router.get("/{contract_id}", response_model=ContractResponse)
async def get_contract(contract_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    contract = await renewal_service.get_contract_or_404(db, contract_id)
    return contract_to_response(contract)


@router.patch("/{contract_id}", response_model=ContractResponse)
async def update_contract(
    contract_id: uuid.UUID,
    body: ContractUpdate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    contract = await renewal_service.update_contract(db, contract_id, body, current_user)
    return contract_to_response(contract)


@router.post("/{contract_id}/acknowledge", response_model=ContractResponse)
async def acknowledge_contract(
    contract_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Stop automatic reminders for this contract until unacknowledged."""
    contract = await renewal_service.acknowledge_contract(db, contract_id, current_user)
    return contract_to_response(contract)


@router.post("/{contract_id}/unacknowledge", response_model=ContractResponse)
async def unacknowledge_contract(
    contract_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    contract = await renewal_service.unacknowledge_contract(db, contract_id, current_user)
    return contract_to_response(contract)


@router.delete("/{contract_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_contract(
    contract_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await renewal_service.delete_contract(db, contract_id, current_user)

"""
Unit tests for renewdesk/services/renewal_service.py

The session is mocked; storage is a MagicMock passed in explicitly.
"""

from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException

from renewdesk.models.audit_log import AuditLog
from renewdesk.models.renewal_contract import ContractStatus, RenewalContract
from renewdesk.schemas.renewal import ContractCreate, ContractUpdate
from renewdesk.services import renewal_service
from renewdesk.services.contract_repository import ContractRepository
from renewdesk.services.text_validation import unreadable_file_result, validate_text

TODAY = date(2025, 3, 10)

ADOBE_TEXT = (
    "Kontrak Purchase Order (PO) No: 4500012345\n"
    "Vendor: PT. Adobe Systems Indonesia\n"
    "Periode: 1 Januari 2025 - 31 Desember 2025\n"
)


def _added(session, model):
    return [c.args[0] for c in session.add.call_args_list if isinstance(c.args[0], model)]


def _validate(text: str):
    return AsyncMock(return_value=(validate_text(text), text))


# ---------------------------------------------------------------------------
# Upload & extract
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_upload_valid_text_runs_chain_and_stores(mock_session, admin_user):
    storage = MagicMock()
    with patch.object(renewal_service, "validate_pdf", _validate(ADOBE_TEXT)):
        outcome = await renewal_service.upload_and_extract(
            mock_session, b"%PDF-1.4 body", "adobe.pdf", admin_user, today=TODAY, storage=storage
        )

    assert outcome.accepted
    assert outcome.forced is False
    contract = outcome.contract
    assert contract.extraction_strategy == "ADOBE"
    assert contract.po_number == "4500012345"
    assert contract.end_date == date(2025, 12, 31)
    assert contract.status == ContractStatus.ACTIVE.value
    assert contract.file_size == len(b"%PDF-1.4 body")
    assert contract.file_path.endswith(".pdf")
    assert not any(contract.is_reminder_sent(d) for d in (60, 30, 7, 1))
    assert contract.raw_extracted_data["strategy"] == "ADOBE"

    storage.upload.assert_called_once()
    assert _added(mock_session, RenewalContract) == [contract]
    audit = _added(mock_session, AuditLog)[0]
    assert audit.action == "RENEWAL_CONTRACT_UPLOADED"


@pytest.mark.asyncio
async def test_upload_low_text_is_rejected_without_storing(mock_session, admin_user):
    storage = MagicMock()
    with patch.object(renewal_service, "validate_pdf", _validate("too short")):
        outcome = await renewal_service.upload_and_extract(
            mock_session, b"%PDF", "scan.pdf", admin_user, storage=storage
        )

    assert not outcome.accepted
    assert outcome.validation.is_scanned_image is True
    storage.upload.assert_not_called()
    mock_session.add.assert_not_called()


@pytest.mark.asyncio
async def test_forced_upload_skips_chain(mock_session, admin_user):
    storage = MagicMock()
    chain = MagicMock()
    with patch.object(renewal_service, "validate_pdf", _validate("NO. PO : P1")):
        outcome = await renewal_service.upload_and_extract(
            mock_session,
            b"%PDF",
            "scan.pdf",
            admin_user,
            force_upload=True,
            chain=chain,
            storage=storage,
        )

    chain.extract.assert_not_called()
    assert outcome.accepted
    assert outcome.extraction.strategy == "NONE"
    assert outcome.forced is True
    assert outcome.contract.extraction_confidence == 0.0
    assert outcome.contract.po_number is None
    assert outcome.contract.status == ContractStatus.DRAFT.value


@pytest.mark.asyncio
async def test_forced_upload_of_unreadable_file(mock_session, admin_user):
    with patch.object(
        renewal_service, "validate_pdf", AsyncMock(return_value=(unreadable_file_result(), ""))
    ):
        outcome = await renewal_service.upload_and_extract(
            mock_session, b"junk", "broken.pdf", admin_user, force_upload=True, storage=MagicMock()
        )
    assert outcome.contract.status == ContractStatus.DRAFT.value
    assert outcome.extraction.strategy == "NONE"


@pytest.mark.asyncio
async def test_storage_failure_is_bad_gateway(mock_session, admin_user):
    storage = MagicMock()
    storage.upload.side_effect = RuntimeError("R2 unavailable")
    with patch.object(renewal_service, "validate_pdf", _validate(ADOBE_TEXT)):
        with pytest.raises(HTTPException) as exc:
            await renewal_service.upload_and_extract(
                mock_session, b"%PDF", "adobe.pdf", admin_user, storage=storage
            )

    assert exc.value.status_code == 502
    assert exc.value.detail["error"]["code"] == "STORAGE_UPLOAD_FAILED"
    mock_session.add.assert_not_called()


# ---------------------------------------------------------------------------
# Manual entry
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_manual(mock_session, admin_user):
    body = ContractCreate(po_number="PO-77", vendor_name="Allied", end_date=TODAY + timedelta(days=10))
    contract = await renewal_service.create_manual(mock_session, body, admin_user, today=TODAY)

    assert contract.extraction_strategy == "MANUAL"
    assert contract.extraction_confidence == 1.0
    assert contract.original_file_name == "Manual Entry"
    assert contract.file_path == ""
    assert contract.file_size == 0
    assert contract.status == ContractStatus.EXPIRING_SOON.value
    assert contract.is_acknowledged is False


@pytest.mark.asyncio
async def test_create_manual_without_end_date_is_draft(mock_session, admin_user):
    contract = await renewal_service.create_manual(
        mock_session, ContractCreate(po_number="PO-78"), admin_user, today=TODAY
    )
    assert contract.status == ContractStatus.DRAFT.value


@pytest.mark.asyncio
async def test_create_manual_rejects_inverted_dates(mock_session, admin_user):
    body = ContractCreate(start_date=date(2025, 5, 1), end_date=date(2025, 4, 1))
    with pytest.raises(HTTPException) as exc:
        await renewal_service.create_manual(mock_session, body, admin_user)
    assert exc.value.status_code == 400
    assert exc.value.detail["error"]["code"] == "INVALID_DATE_RANGE"


# ---------------------------------------------------------------------------
# Edits
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_changing_end_date_resets_flags_and_status(mock_session, admin_user, contract_factory):
    contract = contract_factory(
        end_date=TODAY + timedelta(days=7),
        status=ContractStatus.EXPIRING_SOON.value,
        reminder_d60_sent=True,
        reminder_d30_sent=True,
        reminder_d7_sent=True,
    )
    mock_session.get.return_value = contract

    body = ContractUpdate(end_date=TODAY + timedelta(days=365))
    updated = await renewal_service.update_contract(
        mock_session, contract.id, body, admin_user, today=TODAY
    )

    assert updated.status == ContractStatus.ACTIVE.value
    assert not any(updated.is_reminder_sent(d) for d in (60, 30, 7, 1))
    audit = _added(mock_session, AuditLog)[0]
    assert "end_date" in audit.changed_fields
    assert "reminder_d7_sent" in audit.changed_fields


@pytest.mark.asyncio
async def test_same_end_date_keeps_flags(mock_session, admin_user, contract_factory):
    end = TODAY + timedelta(days=7)
    contract = contract_factory(
        end_date=end, status=ContractStatus.EXPIRING_SOON.value, reminder_d60_sent=True
    )
    mock_session.get.return_value = contract

    body = ContractUpdate(end_date=end, vendor_name="Adobe Inc.")
    updated = await renewal_service.update_contract(
        mock_session, contract.id, body, admin_user, today=TODAY
    )

    assert updated.reminder_d60_sent is True
    assert updated.vendor_name == "Adobe Inc."


@pytest.mark.asyncio
async def test_update_without_end_date_leaves_status(mock_session, admin_user, contract_factory):
    contract = contract_factory(end_date=TODAY - timedelta(days=3), status=ContractStatus.ACTIVE.value)
    mock_session.get.return_value = contract

    updated = await renewal_service.update_contract(
        mock_session, contract.id, ContractUpdate(description="note"), admin_user, today=TODAY
    )
    assert updated.status == ContractStatus.ACTIVE.value
    assert updated.description == "note"


@pytest.mark.asyncio
async def test_clearing_end_date_makes_draft(mock_session, admin_user, contract_factory):
    contract = contract_factory(end_date=TODAY + timedelta(days=40), status=ContractStatus.ACTIVE.value)
    mock_session.get.return_value = contract

    updated = await renewal_service.update_contract(
        mock_session, contract.id, ContractUpdate(end_date=None), admin_user, today=TODAY
    )
    assert updated.end_date is None
    assert updated.status == ContractStatus.DRAFT.value


@pytest.mark.asyncio
async def test_update_checks_range_against_stored_dates(mock_session, admin_user, contract_factory):
    contract = contract_factory(start_date=date(2025, 6, 1), end_date=date(2026, 6, 1))
    mock_session.get.return_value = contract

    with pytest.raises(HTTPException) as exc:
        await renewal_service.update_contract(
            mock_session, contract.id, ContractUpdate(end_date=date(2025, 1, 1)), admin_user
        )
    assert exc.value.status_code == 400
    assert contract.end_date == date(2026, 6, 1)


@pytest.mark.asyncio
async def test_missing_contract_is_404(mock_session, admin_user, contract_factory):
    contract = contract_factory()
    with pytest.raises(HTTPException) as exc:
        await renewal_service.update_contract(mock_session, contract.id, ContractUpdate(), admin_user)
    assert exc.value.status_code == 404
    assert exc.value.detail["error"]["code"] == "CONTRACT_NOT_FOUND"


# ---------------------------------------------------------------------------
# Acknowledgment
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_acknowledge_then_unacknowledge(mock_session, admin_user, contract_factory):
    contract = contract_factory(end_date=TODAY + timedelta(days=7), status=ContractStatus.EXPIRING_SOON.value)
    mock_session.get.return_value = contract

    await renewal_service.acknowledge_contract(mock_session, contract.id, admin_user)
    assert contract.is_acknowledged is True
    assert str(contract.acknowledged_by_id) == admin_user["user_id"]
    assert contract.acknowledged_at is not None
    assert contract.is_due_for_reminder(7, TODAY) is False

    await renewal_service.unacknowledge_contract(mock_session, contract.id, admin_user)
    assert contract.is_acknowledged is False
    assert contract.acknowledged_by_id is None
    assert contract.is_due_for_reminder(7, TODAY) is True


@pytest.mark.asyncio
async def test_acknowledge_twice_is_rejected(mock_session, admin_user, contract_factory):
    contract = contract_factory(is_acknowledged=True)
    mock_session.get.return_value = contract

    with pytest.raises(HTTPException) as exc:
        await renewal_service.acknowledge_contract(mock_session, contract.id, admin_user)
    assert exc.value.status_code == 400
    assert exc.value.detail["error"]["code"] == "ALREADY_ACKNOWLEDGED"


@pytest.mark.asyncio
async def test_unacknowledge_when_not_acknowledged(mock_session, admin_user, contract_factory):
    contract = contract_factory()
    mock_session.get.return_value = contract

    with pytest.raises(HTTPException) as exc:
        await renewal_service.unacknowledge_contract(mock_session, contract.id, admin_user)
    assert exc.value.detail["error"]["code"] == "NOT_ACKNOWLEDGED"


# ---------------------------------------------------------------------------
# Delete, stats, status pass
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_delete_removes_stored_file(mock_session, admin_user, contract_factory):
    contract = contract_factory(file_path="renewal-contracts/a.pdf")
    mock_session.get.return_value = contract
    storage = MagicMock()

    await renewal_service.delete_contract(mock_session, contract.id, admin_user, storage=storage)

    mock_session.execute.assert_awaited_once()
    storage.delete.assert_called_once_with("renewal-contracts/a.pdf")
    assert _added(mock_session, AuditLog)[0].action == "RENEWAL_CONTRACT_DELETED"


@pytest.mark.asyncio
async def test_delete_ignores_storage_failure(mock_session, admin_user, contract_factory):
    contract = contract_factory(file_path="renewal-contracts/a.pdf")
    mock_session.get.return_value = contract
    storage = MagicMock()
    storage.delete.side_effect = RuntimeError("R2 unavailable")

    await renewal_service.delete_contract(mock_session, contract.id, admin_user, storage=storage)
    mock_session.execute.assert_awaited_once()


@pytest.mark.asyncio
async def test_delete_manual_entry_has_no_file(mock_session, admin_user, contract_factory):
    contract = contract_factory(file_path="", original_file_name="Manual Entry")
    mock_session.get.return_value = contract
    storage = MagicMock()

    await renewal_service.delete_contract(mock_session, contract.id, admin_user, storage=storage)
    storage.delete.assert_not_called()


@pytest.mark.asyncio
async def test_dashboard_stats(mock_session):
    result = MagicMock()
    result.all.return_value = [("ACTIVE", 4), ("EXPIRING_SOON", 2), ("DRAFT", 1)]
    mock_session.execute.return_value = result

    stats = await renewal_service.get_dashboard_stats(mock_session)
    assert stats == {"total": 7, "active": 4, "expiring_soon": 2, "expired": 0, "draft": 1}


@pytest.mark.asyncio
async def test_recompute_all_statuses(mock_session, contract_factory):
    stale = contract_factory(end_date=TODAY - timedelta(days=1), status=ContractStatus.EXPIRING_SOON.value)
    fresh = contract_factory(end_date=TODAY + timedelta(days=90), status=ContractStatus.ACTIVE.value)
    repo = ContractRepository(mock_session)
    repo.list_with_end_date = AsyncMock(return_value=[stale, fresh])

    assert await renewal_service.recompute_all_statuses(repo, today=TODAY) == 1
    assert stale.status == ContractStatus.EXPIRED.value
    mock_session.flush.assert_awaited_once()

    mock_session.flush.reset_mock()
    assert await renewal_service.recompute_all_statuses(repo, today=TODAY) == 0
    mock_session.flush.assert_not_awaited()

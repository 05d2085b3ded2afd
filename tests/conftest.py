import uuid
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from renewdesk.models.renewal_contract import ContractStatus, RenewalContract
from renewdesk.models.user import User


class _Savepoint:
    """Stand-in for AsyncSession.begin_nested(); never swallows exceptions."""

    def __init__(self):
        self.entered = 0

    async def __aenter__(self):
        self.entered += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


def _mock_session() -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.get = AsyncMock(return_value=None)
    session.savepoint = _Savepoint()
    session.begin_nested = MagicMock(return_value=session.savepoint)
    return session


@pytest.fixture
def mock_session() -> AsyncMock:
    return _mock_session()


@pytest.fixture
def admin_user() -> dict:
    return {
        "user_id": str(uuid.uuid4()),
        "role": "admin",
        "email": "admin@helpdesk.test",
    }


@pytest.fixture
def contract_factory():
    def _make(**overrides) -> RenewalContract:
        values = dict(
            id=uuid.uuid4(),
            po_number="PO-2025-001",
            vendor_name="Adobe Systems",
            description=None,
            contract_value=None,
            start_date=None,
            end_date=None,
            original_file_name="contract.pdf",
            file_path="renewal-contracts/contract.pdf",
            file_size=2048,
            status=ContractStatus.DRAFT.value,
            reminder_d60_sent=False,
            reminder_d30_sent=False,
            reminder_d7_sent=False,
            reminder_d1_sent=False,
            is_acknowledged=False,
            acknowledged_at=None,
            acknowledged_by_id=None,
            extraction_strategy="ADOBE",
            extraction_confidence=1.0,
            raw_extracted_data=None,
            uploaded_by_id=uuid.uuid4(),
            created_at=datetime(2025, 1, 1, 9, 0),
            updated_at=datetime(2025, 1, 1, 9, 0),
        )
        values.update(overrides)
        return RenewalContract(**values)

    return _make


@pytest.fixture
def admin_factory():
    def _make(email="admin@helpdesk.test", **overrides) -> User:
        values = dict(
            id=uuid.uuid4(),
            email=email,
            first_name="Helpdesk",
            last_name="Admin",
            role="admin",
            is_active=True,
            created_at=datetime(2024, 1, 1),
        )
        values.update(overrides)
        return User(**values)

    return _make

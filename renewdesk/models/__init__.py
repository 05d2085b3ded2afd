"""Central model registry. Import all models so Alembic autodiscover works."""

from renewdesk.database import Base  # noqa: F401

from renewdesk.models.user import User  # noqa: F401
from renewdesk.models.renewal_contract import RenewalContract  # noqa: F401
from renewdesk.models.notification import AppNotification  # noqa: F401
from renewdesk.models.audit_log import AuditLog  # noqa: F401

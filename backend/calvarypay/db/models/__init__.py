"""Re-export all models so Base.metadata sees them."""

from calvarypay.db.models.audit_log import AuditLog
from calvarypay.db.models.transaction import Transaction

__all__ = [
    "AuditLog",
    "Transaction",
]

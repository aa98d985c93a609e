"""AuditLog model — append-only trail of inbound webhook calls."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String

from calvarypay.db.base import Base, JSONType


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(100), primary_key=True)
    event_time = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    type = Column(String(100), nullable=False, index=True)  # webhook.<event>
    correlation_id = Column(String(255), nullable=True, index=True)
    payload = Column(JSONType, nullable=False, default=dict)
    signature_hmac = Column(String(255), nullable=True)

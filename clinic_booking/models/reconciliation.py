from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, Enum as SQLEnum
from sqlalchemy.sql import func
import enum

from ..core.database import Base

class ReconciliationAction(str, enum.Enum):
    RELEASE_SLOT = "release_slot"
    RESERVE_SLOT = "reserve_slot"
    ROLLBACK_FAILED = "rollback_failed"

class ReconciliationRecord(Base):
    """A slot write that could not be completed after its appointment write."""
    __tablename__ = "reconciliation_records"

    id = Column(Integer, primary_key=True, index=True)
    # Plain references, the rows they point at may be in an unknown state
    appointment_id = Column(Integer, nullable=True, index=True)
    time_slot_id = Column(Integer, nullable=True, index=True)
    action = Column(SQLEnum(ReconciliationAction), nullable=False)
    reason = Column(Text, nullable=True)
    resolved = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime, server_default=func.now())
    resolved_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<ReconciliationRecord(id={self.id}, action='{self.action}', resolved={self.resolved})>"

from sqlalchemy import Column, String, Numeric, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from vault.database import Base
from vault.models._common import new_id, utcnow


class WithdrawalStatus:
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class Withdrawal(Base):
    __tablename__ = "withdrawals"
    __table_args__ = (
        Index("ix_withdrawals_status_created", "status", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    amount = Column(Numeric(18, 6), nullable=False)
    wallet_address = Column(String(42), nullable=False)
    tx_hash = Column(String(66), nullable=True)
    status = Column(String(20), nullable=False, default=WithdrawalStatus.pending)
    error = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    profile = relationship("Profile", back_populates="withdrawals")

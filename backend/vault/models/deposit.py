from sqlalchemy import Column, String, Numeric, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from vault.database import Base
from vault.models._common import new_id, utcnow


class DepositStatus:
    pending = "pending"
    confirmed = "confirmed"
    failed = "failed"


class Deposit(Base):
    __tablename__ = "deposits"
    __table_args__ = (
        Index("ix_deposits_match", "status", "sender_address", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    amount = Column(Numeric(18, 6), nullable=False)
    sender_address = Column(String(42), nullable=False)
    tx_hash = Column(String(66), unique=True, nullable=True)
    status = Column(String(20), nullable=False, default=DepositStatus.pending)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)

    profile = relationship("Profile", back_populates="deposits")

from sqlalchemy import Column, String, Numeric, DateTime, CheckConstraint
from sqlalchemy.orm import relationship
from vault.database import Base
from vault.models._common import new_id, utcnow


class ProfileRole:
    user = "user"
    admin = "admin"


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_profile_balance_non_negative"),
        CheckConstraint("locked_balance >= 0", name="ck_profile_locked_non_negative"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    # Only written by ledger.confirm_deposit / request_withdrawal / cancel_withdrawal
    balance = Column(Numeric(18, 6), nullable=False, default=0)
    locked_balance = Column(Numeric(18, 6), nullable=False, default=0)
    role = Column(String(20), nullable=False, default=ProfileRole.user)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    deposits = relationship("Deposit", back_populates="profile")
    withdrawals = relationship("Withdrawal", back_populates="profile")
    positions = relationship("StrategyPosition", back_populates="profile")

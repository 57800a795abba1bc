from sqlalchemy import Column, String, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from vault.database import Base
from vault.models._common import new_id, utcnow


class PositionSide:
    yes = "YES"
    no = "NO"


class PositionStatus:
    active = "active"
    closed = "closed"
    pending = "pending"


class StrategyPosition(Base):
    """Position opened by the external strategy against a profile's balance."""

    __tablename__ = "strategy_positions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    market_name = Column(String(200), nullable=False)
    side = Column(String(3), nullable=False)
    entry_price = Column(Numeric(18, 6), nullable=False)
    current_price = Column(Numeric(18, 6), nullable=True)
    exit_price = Column(Numeric(18, 6), nullable=True)
    amount = Column(Numeric(18, 6), nullable=False)
    profit_loss = Column(Numeric(18, 6), nullable=True)
    status = Column(String(20), nullable=False, default=PositionStatus.pending)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    profile = relationship("Profile", back_populates="positions")

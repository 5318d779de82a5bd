"""InvestmentTransaction model - buys, sells, dividends and other investment activity."""

from datetime import datetime, timezone

from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class InvestmentTransaction(Base):
    """An investment transaction from the investment change stream."""

    __tablename__ = "investment_transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    external_id = Column(String, nullable=False, unique=True, index=True)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    security_id = Column(String(36), ForeignKey("securities.id"), nullable=True)
    type = Column(String, nullable=False)  # e.g. "buy", "sell", "cash", "fee", "transfer"
    subtype = Column(String, nullable=True)
    amount = Column(Numeric(18, 4), nullable=True)
    price = Column(Numeric(18, 4), nullable=True)
    quantity = Column(Numeric(18, 8), nullable=True)
    fees = Column(Numeric(18, 4), nullable=True)
    currency = Column(String, nullable=True)
    date = Column(Date, nullable=False)
    name = Column(String, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    account = relationship("Account", back_populates="investment_transactions")
    security = relationship("Security", back_populates="investment_transactions")

"""Security model - instruments referenced by holdings and investment activity."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class Security(Base):
    """A security as reported by the aggregator."""

    __tablename__ = "securities"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    external_id = Column(String, nullable=False, unique=True, index=True)
    ticker = Column(String, nullable=True)
    name = Column(String, nullable=True)  # Company/fund name
    type = Column(String, nullable=True)  # e.g. "equity", "etf", "cash"
    currency = Column(String, nullable=True)
    isin = Column(String, nullable=True)
    cusip = Column(String, nullable=True)
    is_cash_equivalent = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    holdings = relationship("Holding", back_populates="security")
    investment_transactions = relationship("InvestmentTransaction", back_populates="security")

"""Holding model - current position per (account, security)."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class Holding(Base):
    """A holding row in the Item's current snapshot.

    There is no history here: every holdings refresh replaces the set for
    the Item's accounts, so (account_id, security_id) is unique.
    """

    __tablename__ = "holdings"
    __table_args__ = (
        UniqueConstraint(
            "account_id", "security_id",
            name="uix_holding_account_security",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    security_id = Column(
        String(36), ForeignKey("securities.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    quantity = Column(Numeric(18, 8), nullable=False, default=Decimal("0"))
    cost_basis = Column(Numeric(18, 4), nullable=True)
    institution_price = Column(Numeric(18, 4), nullable=True)
    institution_price_as_of = Column(Date, nullable=True)
    institution_value = Column(Numeric(18, 4), nullable=True)
    currency = Column(String, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    account = relationship("Account", back_populates="holdings")
    security = relationship("Security", back_populates="holdings")

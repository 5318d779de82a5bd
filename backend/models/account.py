"""Account model - an account held at a linked institution."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class Account(Base):
    """An account belonging to exactly one Item.

    Identified upstream by the aggregator-issued ``external_id``. Accounts
    are created on demand when a transaction or holding references them.
    """

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    item_id = Column(
        String(36), ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_id = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    name_user_edited = Column(Boolean, default=False)  # True if user has customized the name
    official_name = Column(String, nullable=True)
    mask = Column(String, nullable=True)
    type = Column(String, nullable=True)  # e.g. "depository", "investment", "credit"
    subtype = Column(String, nullable=True)
    currency = Column(String, nullable=True)
    current_balance = Column(Numeric(18, 4), nullable=True)
    available_balance = Column(Numeric(18, 4), nullable=True)
    credit_limit = Column(Numeric(18, 4), nullable=True)
    balance_updated_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    item = relationship("Item", back_populates="accounts")
    transactions = relationship("Transaction", back_populates="account", cascade="all, delete-orphan")
    investment_transactions = relationship(
        "InvestmentTransaction", back_populates="account", cascade="all, delete-orphan"
    )
    holdings = relationship("Holding", back_populates="account", cascade="all, delete-orphan")

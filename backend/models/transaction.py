"""Transaction model - banking transactions mirrored from the aggregator."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class Transaction(Base):
    """A banking transaction.

    ``external_id`` is the aggregator transaction id and is unique across
    the whole mirror. ``category_id`` belongs to local categorization and
    is never written by sync.
    """

    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    external_id = Column(String, nullable=False, unique=True, index=True)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount = Column(Numeric(18, 4), nullable=False)  # Plaid sign: positive = outflow
    currency = Column(String, nullable=True)
    name = Column(String, nullable=False)
    merchant_name = Column(String, nullable=True)
    date = Column(Date, nullable=False)
    authorized_date = Column(Date, nullable=True)
    pending = Column(Boolean, default=False, nullable=False)
    pending_transaction_id = Column(String, nullable=True)
    payment_channel = Column(String, nullable=True)
    upstream_category = Column(String, nullable=True)
    upstream_subcategory = Column(String, nullable=True)
    logo_url = Column(String, nullable=True)
    category_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    account = relationship("Account", back_populates="transactions")

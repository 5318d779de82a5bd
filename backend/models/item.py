"""Item model - one linked financial institution and its sync state."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, String, Text
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class Item(Base):
    """A Plaid Item representing a linked financial institution.

    Each institution linked via Plaid Link gets its own access_token.
    The two cursors record the last page of each upstream change stream
    that was durably applied; ``None`` means the stream has never
    completed a first page.
    """

    __tablename__ = "items"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    item_id = Column(String, unique=True, index=True, nullable=False)
    access_token = Column(String, nullable=False)
    institution_id = Column(String, nullable=True)
    institution_name = Column(String, nullable=True)

    # Sync state, owned by the persistence gateway
    transactions_cursor = Column(Text, nullable=True)
    investments_cursor = Column(Text, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    requires_reauth = Column(Boolean, default=False, nullable=False)
    last_sync_status = Column(String, nullable=True)  # "success" | "failed" | "reauth_required" | "syncing"
    last_sync_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    accounts = relationship("Account", back_populates="item", cascade="all, delete-orphan")

    @property
    def display_name(self) -> str:
        return self.institution_name or self.item_id

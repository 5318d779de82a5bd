"""Upstream data source protocol.

This module defines the normalized records exchanged between the
aggregator client and the sync engine, and the ``DataSourceClient``
protocol the engine consumes. Clients translate their wire formats into
these dataclasses; the engine never sees raw provider responses.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Protocol, Union

from models.item import Item

# Opaque resumption token. Only the client that issued it may interpret it.
Cursor = str


@dataclass
class UpstreamAccount:
    """Normalized account metadata from the aggregator."""

    id: str  # Aggregator account id
    name: str
    type: str | None = None
    subtype: str | None = None
    official_name: str | None = None
    mask: str | None = None
    currency: str | None = None
    current_balance: Decimal | None = None
    available_balance: Decimal | None = None
    credit_limit: Decimal | None = None


@dataclass
class UpstreamSecurity:
    """Normalized security metadata."""

    id: str  # Aggregator security id
    ticker: str | None = None
    name: str | None = None
    type: str | None = None
    currency: str | None = None
    isin: str | None = None
    cusip: str | None = None
    is_cash_equivalent: bool = False


@dataclass
class UpstreamTransaction:
    """A banking transaction from the transactions change stream."""

    external_id: str
    account_id: str  # Aggregator account id
    amount: Decimal
    date: date
    name: str
    currency: str | None = None
    merchant_name: str | None = None
    authorized_date: date | None = None
    pending: bool = False
    pending_transaction_id: str | None = None
    payment_channel: str | None = None
    category: str | None = None  # Upstream primary category
    subcategory: str | None = None  # Upstream detailed category
    logo_url: str | None = None


@dataclass
class UpstreamInvestmentTransaction:
    """An investment transaction from the investments change stream."""

    external_id: str
    account_id: str
    date: date
    type: str
    subtype: str | None = None
    security_id: str | None = None  # Aggregator security id
    amount: Decimal | None = None
    price: Decimal | None = None
    quantity: Decimal | None = None
    fees: Decimal | None = None
    currency: str | None = None
    name: str | None = None


@dataclass
class UpstreamHolding:
    """A position in the current holdings snapshot."""

    account_id: str
    security_id: str
    quantity: Decimal
    cost_basis: Decimal | None = None
    institution_price: Decimal | None = None
    institution_price_as_of: date | None = None
    institution_value: Decimal | None = None
    currency: str | None = None


UpstreamRecord = Union[UpstreamTransaction, UpstreamInvestmentTransaction]


@dataclass
class ChangePage:
    """One page of changes returned by a single upstream fetch.

    ``added``, ``modified`` and ``removed`` are disjoint. ``accounts`` and
    ``securities`` carry metadata for the records on this page.
    """

    next_cursor: Cursor
    has_more: bool
    added: list[UpstreamRecord] = field(default_factory=list)
    modified: list[UpstreamRecord] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    accounts: list[UpstreamAccount] = field(default_factory=list)
    securities: list[UpstreamSecurity] = field(default_factory=list)


@dataclass
class HoldingsSnapshot:
    """The complete current holdings set for an Item."""

    holdings: list[UpstreamHolding] = field(default_factory=list)
    accounts: list[UpstreamAccount] = field(default_factory=list)
    securities: list[UpstreamSecurity] = field(default_factory=list)
    as_of: datetime | None = None


class DataSourceClient(Protocol):
    """Protocol that the upstream aggregator client must implement.

    Every method raises the exceptions in :mod:`integrations.exceptions`
    (``ReauthRequiredError``, ``TransientUpstreamError``,
    ``ProductNotSupportedError``, ``ProviderDataError``) instead of
    returning an error field.
    """

    @property
    def provider_name(self) -> str:
        """Return the provider name (e.g. 'Plaid')."""
        ...

    def fetch_transaction_changes(self, item: Item, cursor: Cursor | None) -> ChangePage:
        """Fetch the next page of transaction changes after ``cursor``.

        A ``None`` cursor starts from the beginning of upstream history.
        """
        ...

    def fetch_investment_changes(self, item: Item, cursor: Cursor | None) -> ChangePage:
        """Fetch the next page of investment transaction changes after ``cursor``."""
        ...

    def fetch_current_holdings(self, item: Item) -> HoldingsSnapshot:
        """Fetch the complete current holdings snapshot for the Item."""
        ...

"""Test fixtures and sample data."""
import pytest
from datetime import date
from decimal import Decimal

from integrations.provider_protocol import (
    ChangePage,
    HoldingsSnapshot,
    UpstreamAccount,
    UpstreamHolding,
    UpstreamInvestmentTransaction,
    UpstreamSecurity,
    UpstreamTransaction,
)
from models import Account, Item
from sqlalchemy.orm import Session


def create_item(
    db: Session,
    item_id: str = "item_chase",
    institution_name: str = "Chase",
    **kwargs,
) -> Item:
    """Create and commit an Item.

    Committed (not just flushed) so that sessions opened by the services
    under test can see it.
    """
    item = Item(
        item_id=item_id,
        access_token=f"access-sandbox-{item_id}",
        institution_name=institution_name,
        **kwargs,
    )
    db.add(item)
    db.commit()
    return item


def make_account(account_id: str = "acc_checking", name: str = "Everyday Checking", **kwargs) -> UpstreamAccount:
    defaults = {
        "type": "depository",
        "subtype": "checking",
        "mask": "0000",
        "currency": "USD",
        "current_balance": Decimal("1200.50"),
        "available_balance": Decimal("1100.00"),
    }
    defaults.update(kwargs)
    return UpstreamAccount(id=account_id, name=name, **defaults)


def make_transaction(
    external_id: str,
    account_id: str = "acc_checking",
    amount: str = "12.34",
    txn_date: date = date(2025, 1, 15),
    name: str = "Coffee Shop",
    **kwargs,
) -> UpstreamTransaction:
    return UpstreamTransaction(
        external_id=external_id,
        account_id=account_id,
        amount=Decimal(amount),
        date=txn_date,
        name=name,
        currency="USD",
        **kwargs,
    )


def make_investment_transaction(
    external_id: str,
    account_id: str = "acc_brokerage",
    security_id: str | None = "sec_vti",
    txn_type: str = "buy",
    amount: str = "1000.00",
    quantity: str = "4",
    txn_date: date = date(2025, 1, 10),
) -> UpstreamInvestmentTransaction:
    return UpstreamInvestmentTransaction(
        external_id=external_id,
        account_id=account_id,
        date=txn_date,
        type=txn_type,
        security_id=security_id,
        amount=Decimal(amount),
        quantity=Decimal(quantity),
        price=Decimal(amount) / Decimal(quantity) if Decimal(quantity) else None,
        currency="USD",
        name=f"{txn_type} {security_id}",
    )


def make_holding(
    security_id: str = "sec_vti",
    account_id: str = "acc_brokerage",
    quantity: str = "10",
    price: str | None = "250.00",
    price_as_of: date | None = date(2025, 1, 31),
) -> UpstreamHolding:
    return UpstreamHolding(
        account_id=account_id,
        security_id=security_id,
        quantity=Decimal(quantity),
        cost_basis=Decimal("2000.00"),
        institution_price=Decimal(price) if price is not None else None,
        institution_price_as_of=price_as_of,
        institution_value=Decimal(quantity) * Decimal(price) if price else None,
        currency="USD",
    )


def make_page(
    next_cursor: str,
    has_more: bool = False,
    added=(),
    modified=(),
    removed=(),
    accounts=(),
    securities=(),
) -> ChangePage:
    return ChangePage(
        next_cursor=next_cursor,
        has_more=has_more,
        added=list(added),
        modified=list(modified),
        removed=list(removed),
        accounts=list(accounts),
        securities=list(securities),
    )


BROKERAGE_ACCOUNT = make_account(
    "acc_brokerage", "Brokerage", type="investment", subtype="brokerage",
    current_balance=Decimal("5000.00"), available_balance=None,
)

SECURITIES = [
    UpstreamSecurity(id="sec_vti", ticker="VTI", name="Vanguard Total Stock Market ETF", type="etf", currency="USD"),
    UpstreamSecurity(id="sec_bnd", ticker="BND", name="Vanguard Total Bond Market ETF", type="etf", currency="USD"),
]


def make_snapshot(*holdings: UpstreamHolding) -> HoldingsSnapshot:
    return HoldingsSnapshot(
        holdings=list(holdings),
        accounts=[BROKERAGE_ACCOUNT],
        securities=list(SECURITIES),
    )


@pytest.fixture
def item(db: Session) -> Item:
    """A committed Item with no sync history."""
    return create_item(db)


@pytest.fixture
def second_item(db: Session) -> Item:
    return create_item(db, item_id="item_schwab", institution_name="Schwab")


@pytest.fixture
def checking_account(db: Session, item: Item) -> Account:
    account = Account(
        item_id=item.id,
        external_id="acc_checking",
        name="Everyday Checking",
        type="depository",
        subtype="checking",
    )
    db.add(account)
    db.commit()
    return account

"""Unit tests for SQLAlchemy models."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from models import Account, Holding, InvestmentTransaction, Item, Security, Transaction
from tests.fixtures import create_item


def test_item_defaults(item):
    """A fresh Item has never synced and does not need reauth."""
    assert item.id is not None
    assert len(item.id) == 36
    assert item.transactions_cursor is None
    assert item.investments_cursor is None
    assert item.requires_reauth is False
    assert item.last_synced_at is None
    assert item.created_at is not None


def test_item_display_name(db):
    named = create_item(db, item_id="item_named", institution_name="Chase")
    unnamed = create_item(db, item_id="item_unnamed", institution_name=None)
    assert named.display_name == "Chase"
    assert unnamed.display_name == "item_unnamed"


def test_item_id_unique(db, item):
    db.add(Item(item_id=item.item_id, access_token="access-dup"))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_account_belongs_to_item(item, checking_account):
    assert checking_account.item_id == item.id
    assert checking_account.item.institution_name == "Chase"
    assert checking_account.name_user_edited is False
    assert item.accounts == [checking_account]


def test_transaction_relationship(db, checking_account):
    txn = Transaction(
        external_id="txn_1",
        account_id=checking_account.id,
        amount=Decimal("42.50"),
        name="Grocery Store",
        date=date(2025, 2, 1),
    )
    db.add(txn)
    db.commit()

    assert txn.pending is False
    assert txn.category_id is None
    assert checking_account.transactions == [txn]


def test_transaction_external_id_unique(db, checking_account):
    for _ in range(2):
        db.add(
            Transaction(
                external_id="txn_dup",
                account_id=checking_account.id,
                amount=Decimal("1.00"),
                name="Dup",
                date=date(2025, 2, 1),
            )
        )
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_investment_transaction_without_security(db, item):
    account = Account(item_id=item.id, external_id="acc_brokerage", name="Brokerage", type="investment")
    db.add(account)
    db.flush()
    txn = InvestmentTransaction(
        external_id="inv_cash",
        account_id=account.id,
        type="cash",
        subtype="deposit",
        amount=Decimal("-500.00"),
        date=date(2025, 1, 5),
    )
    db.add(txn)
    db.commit()

    assert txn.security is None
    assert account.investment_transactions == [txn]


def test_holding_unique_per_account_and_security(db, item):
    account = Account(item_id=item.id, external_id="acc_brokerage", name="Brokerage")
    security = Security(external_id="sec_vti", ticker="VTI")
    db.add_all([account, security])
    db.flush()

    db.add(Holding(account_id=account.id, security_id=security.id, quantity=Decimal("1")))
    db.add(Holding(account_id=account.id, security_id=security.id, quantity=Decimal("2")))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_holding_relationships(db, item):
    account = Account(item_id=item.id, external_id="acc_brokerage", name="Brokerage")
    security = Security(external_id="sec_bnd", ticker="BND", name="Vanguard Total Bond Market ETF")
    db.add_all([account, security])
    db.flush()
    holding = Holding(
        account_id=account.id,
        security_id=security.id,
        quantity=Decimal("3.5"),
        institution_price=Decimal("72.10"),
        institution_price_as_of=date(2025, 1, 31),
    )
    db.add(holding)
    db.commit()

    assert holding.account.external_id == "acc_brokerage"
    assert holding.security.ticker == "BND"
    assert security.holdings == [holding]
    assert holding.quantity == Decimal("3.5")

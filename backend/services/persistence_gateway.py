"""Persistence gateway - the mirror's only writer.

All writes made by the sync engine go through this class. Record writes
are ``flush()``ed into the caller's unit of work; ``commit_cursor_and_page``
and ``commit_holdings_snapshot`` own the ``commit()`` that makes them
durable together with the matching Item state. Item flag changes
(cursor resets, reauth, status) commit immediately.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from integrations.exceptions import PersistenceError, ProviderDataError
from integrations.provider_protocol import (
    Cursor,
    UpstreamAccount,
    UpstreamHolding,
    UpstreamInvestmentTransaction,
    UpstreamRecord,
    UpstreamSecurity,
    UpstreamTransaction,
)
from models import Account, Holding, InvestmentTransaction, Item, Security, Transaction
from services.sync_types import ALL_STREAMS, HoldingsCounts, RecordKind, Stream

logger = logging.getLogger(__name__)

T = TypeVar("T")

CURSOR_FIELDS: dict[Stream, str] = {
    Stream.TRANSACTIONS: "transactions_cursor",
    Stream.INVESTMENTS: "investments_cursor",
}

_RECORD_MODELS = {
    RecordKind.TRANSACTION: Transaction,
    RecordKind.INVESTMENT_TRANSACTION: InvestmentTransaction,
}


class PersistenceGateway:
    """Durable store for Items, their records and their cursor state."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def list_items(self) -> list[Item]:
        return self.db.query(Item).order_by(Item.created_at, Item.id).all()

    def list_active_items(self) -> list[Item]:
        """Items eligible for an automatic run (not awaiting re-authentication)."""
        return (
            self.db.query(Item)
            .filter(Item.requires_reauth.is_(False))
            .order_by(Item.created_at, Item.id)
            .all()
        )

    def get_item(self, item_id: str) -> Item | None:
        """Look up an Item by local id, falling back to the aggregator item id."""
        item = self.db.get(Item, item_id)
        if item is None:
            item = self.db.query(Item).filter_by(item_id=item_id).first()
        return item

    def get_cursor(self, item: Item, stream: Stream) -> Cursor | None:
        return getattr(item, CURSOR_FIELDS[stream])

    def reset_cursor(self, item: Item, streams: Iterable[Stream] = ALL_STREAMS) -> None:
        """Null the cursor of each given stream and commit immediately."""
        streams = list(streams)
        for stream in streams:
            setattr(item, CURSOR_FIELDS[stream], None)
        self._commit(f"reset cursors for {item.display_name}")
        logger.info(
            "Reset %s cursor(s) for %s",
            ", ".join(s.value for s in streams), item.display_name,
        )

    def mark_requires_reauth(self, item: Item, flag: bool, message: str | None = None) -> None:
        item.requires_reauth = flag
        if flag:
            item.last_sync_status = "reauth_required"
            item.last_sync_error = message
        elif item.last_sync_status == "reauth_required":
            item.last_sync_status = None
            item.last_sync_error = None
        self._commit(f"update reauth flag for {item.display_name}")

    def mark_syncing(self, item: Item) -> None:
        item.last_sync_status = "syncing"
        self._commit(f"mark {item.display_name} syncing")

    def mark_synced(self, item: Item) -> None:
        """Record a fully successful run: timestamp and stale reauth flag cleared."""
        item.last_synced_at = datetime.now(timezone.utc)
        item.requires_reauth = False
        item.last_sync_status = "success"
        item.last_sync_error = None
        self._commit(f"mark {item.display_name} synced")

    def mark_failed(self, item: Item, message: str) -> None:
        item.last_sync_status = "failed"
        item.last_sync_error = message
        self._commit(f"mark {item.display_name} failed")

    # ------------------------------------------------------------------
    # Accounts and securities
    # ------------------------------------------------------------------

    def get_account(self, external_id: str) -> Account | None:
        return self.db.query(Account).filter_by(external_id=external_id).first()

    def ensure_account(
        self,
        item: Item,
        external_id: str,
        remote: UpstreamAccount | None = None,
    ) -> Account:
        """Return the Account for ``external_id``, creating it if needed.

        New accounts take their metadata from ``remote`` when the page
        carried it; otherwise a placeholder name is used until a later
        page supplies one.
        """
        account = self.get_account(external_id)
        if account is not None:
            return account

        account = Account(
            item_id=item.id,
            external_id=external_id,
            name=remote.name if remote else f"Account {external_id[-4:]}",
        )
        if remote is not None:
            self._apply_account_metadata(account, remote)
        self.db.add(account)
        self.db.flush()
        logger.debug("Created account %s for %s", external_id, item.display_name)
        return account

    def refresh_accounts(self, accounts: Iterable[UpstreamAccount]) -> int:
        """Update metadata and balances of accounts that already exist.

        Accounts not yet in the mirror are left for ``ensure_account``.
        Returns the number of accounts updated.
        """
        updated = 0
        for remote in accounts:
            account = self.get_account(remote.id)
            if account is None:
                continue
            self._apply_account_metadata(account, remote)
            updated += 1
        if updated:
            self.db.flush()
        return updated

    @staticmethod
    def _apply_account_metadata(account: Account, remote: UpstreamAccount) -> None:
        # Preserve user-edited name
        if not account.name_user_edited and remote.name:
            account.name = remote.name
        account.official_name = remote.official_name
        account.mask = remote.mask
        account.type = remote.type
        account.subtype = remote.subtype
        account.currency = remote.currency or account.currency
        account.current_balance = remote.current_balance
        account.available_balance = remote.available_balance
        account.credit_limit = remote.credit_limit
        account.balance_updated_at = datetime.now(timezone.utc)

    def get_security(self, external_id: str) -> Security | None:
        return self.db.query(Security).filter_by(external_id=external_id).first()

    def upsert_security(self, remote: UpstreamSecurity) -> Security:
        security = self.get_security(remote.id)
        if security is None:
            security = Security(external_id=remote.id)
            self.db.add(security)
        security.ticker = remote.ticker or security.ticker
        security.name = remote.name or security.name
        security.type = remote.type or security.type
        security.currency = remote.currency or security.currency
        security.isin = remote.isin or security.isin
        security.cusip = remote.cusip or security.cusip
        security.is_cash_equivalent = remote.is_cash_equivalent
        self.db.flush()
        return security

    def ensure_security(self, external_id: str) -> Security:
        """Return the Security for ``external_id``, creating a bare row if needed."""
        security = self.get_security(external_id)
        if security is None:
            security = Security(external_id=external_id)
            self.db.add(security)
            self.db.flush()
        return security

    # ------------------------------------------------------------------
    # Change records
    # ------------------------------------------------------------------

    def upsert_record(self, kind: RecordKind, record: UpstreamRecord):
        """Insert or update one record keyed by its external id.

        The record's account must already exist (see ``ensure_account``).
        Returns the ORM row; not committed.
        """
        account = self.get_account(record.account_id)
        if account is None:
            raise ProviderDataError(
                f"{kind.value} {record.external_id} references unknown account {record.account_id}"
            )

        model = _RECORD_MODELS[kind]
        row = self.db.query(model).filter_by(external_id=record.external_id).first()
        is_new = row is None
        if is_new:
            # Added to the session only once populated; resolving a security flushes
            row = model(external_id=record.external_id)
        row.account_id = account.id

        if kind == RecordKind.TRANSACTION:
            if not isinstance(record, UpstreamTransaction):
                raise ProviderDataError(f"Expected a transaction, got {type(record).__name__}")
            self._apply_transaction(row, record)
        else:
            if not isinstance(record, UpstreamInvestmentTransaction):
                raise ProviderDataError(
                    f"Expected an investment transaction, got {type(record).__name__}"
                )
            self._apply_investment_transaction(row, record)

        if is_new:
            self.db.add(row)
        self.db.flush()
        return row

    def delete_record(self, kind: RecordKind, external_id: str) -> bool:
        """Delete a record by external id. Unknown ids are a no-op (returns False)."""
        model = _RECORD_MODELS[kind]
        row = self.db.query(model).filter_by(external_id=external_id).first()
        if row is None:
            return False
        self.db.delete(row)
        self.db.flush()
        return True

    @staticmethod
    def _apply_transaction(row: Transaction, record: UpstreamTransaction) -> None:
        # category_id is local categorization and is never touched here
        row.amount = record.amount
        row.currency = record.currency
        row.name = record.name
        row.merchant_name = record.merchant_name
        row.date = record.date
        row.authorized_date = record.authorized_date
        row.pending = record.pending
        row.pending_transaction_id = record.pending_transaction_id
        row.payment_channel = record.payment_channel
        row.upstream_category = record.category
        row.upstream_subcategory = record.subcategory
        row.logo_url = record.logo_url

    def _apply_investment_transaction(
        self, row: InvestmentTransaction, record: UpstreamInvestmentTransaction
    ) -> None:
        row.security_id = (
            self.ensure_security(record.security_id).id if record.security_id else None
        )
        row.type = record.type
        row.subtype = record.subtype
        row.amount = record.amount
        row.price = record.price
        row.quantity = record.quantity
        row.fees = record.fees
        row.currency = record.currency
        row.date = record.date
        row.name = record.name

    # ------------------------------------------------------------------
    # Holdings
    # ------------------------------------------------------------------

    def current_holdings(self, item: Item) -> dict[tuple[str, str], Holding]:
        """Stored holdings for the Item keyed by (account external id, security external id)."""
        rows = (
            self.db.query(Holding)
            .join(Account, Holding.account_id == Account.id)
            .filter(Account.item_id == item.id)
            .all()
        )
        return {(h.account.external_id, h.security.external_id): h for h in rows}

    def replace_holdings_snapshot(
        self, item: Item, holdings: list[UpstreamHolding]
    ) -> HoldingsCounts:
        """Make the Item's stored holdings equal ``holdings``.

        Upserts every given holding keyed by (account, security) and
        deletes stored holdings of the Item's accounts that are absent.
        Accounts and securities must already exist. Not committed.
        """
        existing = self.current_holdings(item)
        counts = HoldingsCounts()
        seen: set[tuple[str, str]] = set()

        for remote in holdings:
            key = (remote.account_id, remote.security_id)
            if key in seen:
                raise ProviderDataError(
                    f"Duplicate holding for account {remote.account_id}, security {remote.security_id}"
                )
            seen.add(key)

            row = existing.get(key)
            if row is None:
                account = self.get_account(remote.account_id)
                security = self.get_security(remote.security_id)
                if account is None or security is None:
                    raise ProviderDataError(
                        f"Holding references unknown account {remote.account_id} "
                        f"or security {remote.security_id}"
                    )
                row = Holding(account_id=account.id, security_id=security.id)
                self.db.add(row)
                counts.added += 1
            else:
                counts.updated += 1

            row.quantity = remote.quantity
            row.cost_basis = remote.cost_basis
            row.institution_price = remote.institution_price
            row.institution_price_as_of = remote.institution_price_as_of
            row.institution_value = remote.institution_value
            row.currency = remote.currency

        for key, row in existing.items():
            if key not in seen:
                self.db.delete(row)
                counts.removed += 1

        self.db.flush()
        return counts

    # ------------------------------------------------------------------
    # Units of work
    # ------------------------------------------------------------------

    def commit_cursor_and_page(
        self,
        item: Item,
        stream: Stream,
        new_cursor: Cursor,
        page_effects: Callable[[], T],
    ) -> T:
        """Apply a page's writes and advance the stream cursor in one transaction.

        ``page_effects`` performs the (flush-only) record writes. Either the
        writes and the new cursor are committed together, or neither is.
        """
        try:
            result = page_effects()
            setattr(item, CURSOR_FIELDS[stream], new_cursor)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(
                f"Failed to commit {stream.value} page for {item.display_name}: {e}"
            ) from e
        except Exception:
            self.db.rollback()
            raise
        return result

    def commit_holdings_snapshot(self, item: Item, snapshot_effects: Callable[[], T]) -> T:
        """Run a holdings replacement and commit it as one transaction."""
        try:
            result = snapshot_effects()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(
                f"Failed to commit holdings snapshot for {item.display_name}: {e}"
            ) from e
        except Exception:
            self.db.rollback()
            raise
        return result

    def _commit(self, what: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to {what}: {e}") from e

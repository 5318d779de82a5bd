"""Change reconciler - applies upstream change pages to the mirror."""

import logging
from dataclasses import replace
from decimal import Decimal

from integrations.provider_protocol import ChangePage, HoldingsSnapshot, UpstreamHolding
from models import Holding, Item
from services.persistence_gateway import PersistenceGateway
from services.sync_types import HoldingsCounts, PageCounts, RecordKind

logger = logging.getLogger(__name__)


class ChangeReconciler:
    """Applies change pages and holdings snapshots through the gateway.

    Nothing here commits. The caller wraps ``apply_page`` in
    ``PersistenceGateway.commit_cursor_and_page`` so the page and its
    cursor become durable together, and any exception raised here fails
    the whole page.
    """

    def apply_page(
        self,
        gateway: PersistenceGateway,
        item: Item,
        kind: RecordKind,
        page: ChangePage,
    ) -> PageCounts:
        """Apply one page of added/modified/removed records.

        Added and modified records are both upserts keyed by external id,
        so replayed or out-of-order pages converge. Removing an id that is
        not stored is a no-op.

        Returns:
            Counts taken from the page lists, signalling the page is safe to
            commit with its cursor
        """
        gateway.refresh_accounts(page.accounts)
        for security in page.securities:
            gateway.upsert_security(security)

        remote_accounts = {a.id: a for a in page.accounts}
        ensured: set[str] = set()

        for record in [*page.added, *page.modified]:
            if record.account_id not in ensured:
                gateway.ensure_account(item, record.account_id, remote_accounts.get(record.account_id))
                ensured.add(record.account_id)
            gateway.upsert_record(kind, record)

        missing = 0
        for external_id in page.removed:
            if not gateway.delete_record(kind, external_id):
                missing += 1
        if missing:
            logger.debug(
                "%s: %d removed %s id(s) were not in the mirror",
                item.display_name, missing, kind.value,
            )

        return PageCounts(
            added=len(page.added),
            modified=len(page.modified),
            removed=len(page.removed),
        )

    def reconcile_holdings(
        self,
        gateway: PersistenceGateway,
        item: Item,
        snapshot: HoldingsSnapshot,
    ) -> HoldingsCounts:
        """Replace the Item's holdings with ``snapshot``.

        This is a full snapshot, not a diff: any stored holding of the
        Item's accounts missing from the snapshot is deleted.
        """
        gateway.refresh_accounts(snapshot.accounts)
        for security in snapshot.securities:
            gateway.upsert_security(security)

        remote_accounts = {a.id: a for a in snapshot.accounts}
        for account_id in {h.account_id for h in snapshot.holdings}:
            gateway.ensure_account(item, account_id, remote_accounts.get(account_id))
        for security_id in {h.security_id for h in snapshot.holdings}:
            gateway.ensure_security(security_id)

        holdings = self._consolidate_holdings(snapshot.holdings, item.display_name)
        stored = gateway.current_holdings(item)
        holdings = [
            self._preserve_price(h, stored.get((h.account_id, h.security_id)))
            for h in holdings
        ]

        counts = gateway.replace_holdings_snapshot(item, holdings)
        logger.info(
            "%s: holdings reconciled (%d added, %d updated, %d removed)",
            item.display_name, counts.added, counts.updated, counts.removed,
        )
        return counts

    @staticmethod
    def _preserve_price(remote: UpstreamHolding, stored: Holding | None) -> UpstreamHolding:
        """Keep the last known price when upstream reports none.

        Some institutions return a null or zero price for positions they
        could not price that day.
        """
        if remote.institution_price:
            return remote
        if stored is None or not stored.institution_price or stored.institution_price <= 0:
            return remote
        return replace(
            remote,
            institution_price=stored.institution_price,
            institution_price_as_of=stored.institution_price_as_of,
        )

    @staticmethod
    def _consolidate_holdings(
        holdings: list[UpstreamHolding],
        institution_name: str,
    ) -> list[UpstreamHolding]:
        """Merge holdings that share the same (account, security).

        The holdings table has a unique constraint on that pair, so
        duplicates are summed before the snapshot is written.
        """
        seen: dict[tuple[str, str], UpstreamHolding] = {}
        for h in holdings:
            key = (h.account_id, h.security_id)
            existing = seen.get(key)
            if existing is None:
                seen[key] = h
                continue
            seen[key] = replace(
                existing,
                quantity=existing.quantity + h.quantity,
                cost_basis=_sum_optional(existing.cost_basis, h.cost_basis),
                institution_value=_sum_optional(existing.institution_value, h.institution_value),
            )

        if len(seen) < len(holdings):
            logger.warning(
                "Merged %d duplicate holdings for %s",
                len(holdings) - len(seen), institution_name,
            )
        return list(seen.values())


def _sum_optional(a: Decimal | None, b: Decimal | None) -> Decimal | None:
    if a is None:
        return b
    if b is None:
        return a
    return a + b

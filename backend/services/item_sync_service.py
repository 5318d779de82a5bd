"""Item sync service - drives the change streams of a single Item."""

import logging
from typing import Iterable

from sqlalchemy.orm import Session

from integrations.exceptions import (
    PersistenceError,
    ProductNotSupportedError,
    ProviderDataError,
    ProviderError,
    ReauthRequiredError,
)
from integrations.provider_protocol import ChangePage, DataSourceClient
from models import Item
from services.change_reconciler import ChangeReconciler
from services.persistence_gateway import PersistenceGateway
from services.sync_types import (
    ALL_STREAMS,
    STREAM_RECORD_KIND,
    ErrorKind,
    HoldingsCounts,
    ItemSyncOutcome,
    Stream,
    StreamOutcome,
    StreamState,
    classify_error,
)

logger = logging.getLogger(__name__)


class ItemSyncService:
    """Runs the paginated fetch/apply loop for each stream of one Item.

    Every page is committed together with its cursor before the next page
    is fetched, so an interrupted run resumes from the last applied page.
    Errors never escape ``sync_item``; they are classified into the
    returned outcome.
    """

    def __init__(self, client: DataSourceClient, reconciler: ChangeReconciler | None = None):
        self._client = client
        self._reconciler = reconciler or ChangeReconciler()

    def sync_item(
        self,
        db: Session,
        item: Item,
        streams: Iterable[Stream] = ALL_STREAMS,
    ) -> ItemSyncOutcome:
        """Sync the requested streams of ``item``.

        Args:
            db: Database session owned by this Item's run
            item: The Item to sync (bound to ``db``)
            streams: Streams to run; the others are reported as skipped

        Returns:
            ItemSyncOutcome with one StreamOutcome per stream
        """
        gateway = PersistenceGateway(db)
        requested = set(streams)
        outcome = ItemSyncOutcome(item_id=item.id, institution_name=item.display_name)
        for stream in ALL_STREAMS:
            state = StreamState.SYNCING if stream in requested else StreamState.SKIPPED
            outcome.streams[stream] = StreamOutcome(stream=stream, state=state)

        logger.info(
            "Syncing %s (%s)",
            item.display_name, ", ".join(s.value for s in ALL_STREAMS if s in requested),
        )

        try:
            gateway.mark_syncing(item)
        except PersistenceError as e:
            logger.error("Could not start sync for %s: %s", item.display_name, e)
            for stream in requested:
                self._fail(outcome.streams[stream], e)
            return outcome

        for stream in ALL_STREAMS:
            if stream not in requested:
                continue
            stream_outcome = outcome.streams[stream]
            try:
                self._run_stream(gateway, item, stream, stream_outcome)
                if stream == Stream.INVESTMENTS:
                    outcome.holdings = self._refresh_holdings(gateway, item)
                stream_outcome.state = StreamState.UP_TO_DATE
            except ReauthRequiredError as e:
                logger.warning("%s requires re-authentication: %s", item.display_name, e)
                self._handle_reauth(gateway, item, outcome, requested, e)
                return outcome
            except ProductNotSupportedError as e:
                logger.info(
                    "%s does not support %s, skipping: %s",
                    item.display_name, stream.value, e,
                )
                stream_outcome.state = StreamState.SKIPPED
            except (ProviderError, PersistenceError) as e:
                logger.warning("%s %s sync failed: %s", item.display_name, stream.value, e)
                self._fail(stream_outcome, e)
            except Exception as e:
                logger.exception("Unexpected error syncing %s %s", item.display_name, stream.value)
                db.rollback()
                self._fail(stream_outcome, e)

        self._finish(gateway, item, outcome)
        return outcome

    def _run_stream(
        self,
        gateway: PersistenceGateway,
        item: Item,
        stream: Stream,
        stream_outcome: StreamOutcome,
    ) -> None:
        """Fetch and apply pages until upstream reports no more.

        A null cursor runs the same loop; upstream then returns all history.
        """
        fetch = (
            self._client.fetch_transaction_changes
            if stream == Stream.TRANSACTIONS
            else self._client.fetch_investment_changes
        )
        kind = STREAM_RECORD_KIND[stream]
        cursor = gateway.get_cursor(item, stream)

        while True:
            page: ChangePage = fetch(item, cursor)
            if page.has_more and (not page.next_cursor or page.next_cursor == cursor):
                raise ProviderDataError(
                    f"{stream.value} cursor did not advance for {item.display_name}",
                    provider_name=self._client.provider_name,
                )

            counts = gateway.commit_cursor_and_page(
                item,
                stream,
                page.next_cursor,
                lambda: self._reconciler.apply_page(gateway, item, kind, page),
            )
            stream_outcome.pages += 1
            stream_outcome.counts.add(counts)
            cursor = page.next_cursor

            logger.debug(
                "%s %s page %d: %d added, %d modified, %d removed",
                item.display_name, stream.value, stream_outcome.pages,
                counts.added, counts.modified, counts.removed,
            )
            if not page.has_more:
                break

        logger.info(
            "%s %s: %d page(s), %d added, %d modified, %d removed",
            item.display_name, stream.value, stream_outcome.pages,
            stream_outcome.counts.added, stream_outcome.counts.modified,
            stream_outcome.counts.removed,
        )

    def _refresh_holdings(self, gateway: PersistenceGateway, item: Item) -> HoldingsCounts | None:
        """Replace the Item's holdings with the current upstream snapshot."""
        try:
            snapshot = self._client.fetch_current_holdings(item)
        except ProductNotSupportedError as e:
            logger.info("%s has no holdings product: %s", item.display_name, e)
            return None
        return gateway.commit_holdings_snapshot(
            item,
            lambda: self._reconciler.reconcile_holdings(gateway, item, snapshot),
        )

    def _handle_reauth(
        self,
        gateway: PersistenceGateway,
        item: Item,
        outcome: ItemSyncOutcome,
        requested: set[Stream],
        error: ReauthRequiredError,
    ) -> None:
        # Terminal for the whole Item: every stream not yet finished stops
        for stream in ALL_STREAMS:
            stream_outcome = outcome.streams[stream]
            if stream in requested and stream_outcome.state == StreamState.SYNCING:
                stream_outcome.state = StreamState.NEEDS_REAUTH
                stream_outcome.error_kind = ErrorKind.REAUTH_REQUIRED
                stream_outcome.error = str(error)
        try:
            gateway.mark_requires_reauth(item, True, str(error))
        except PersistenceError as e:
            logger.error("Could not flag %s for re-authentication: %s", item.display_name, e)

    def _finish(self, gateway: PersistenceGateway, item: Item, outcome: ItemSyncOutcome) -> None:
        try:
            if outcome.succeeded:
                gateway.mark_synced(item)
                logger.info("Synced %s", item.display_name)
            else:
                gateway.mark_failed(item, outcome.error_summary() or "sync failed")
        except PersistenceError as e:
            logger.error("Could not record sync status for %s: %s", item.display_name, e)

    @staticmethod
    def _fail(stream_outcome: StreamOutcome, error: BaseException) -> None:
        stream_outcome.state = StreamState.SYNC_FAILED
        stream_outcome.error_kind = classify_error(error)
        stream_outcome.error = str(error)

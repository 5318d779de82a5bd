"""Sync service - runs the Item sync engine across every linked Item."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session

from config import settings
from database import get_session_local
from integrations.exceptions import ItemNotFoundError, SyncInProgressError
from integrations.provider_protocol import DataSourceClient
from models import Item
from services.item_sync_service import ItemSyncService
from services.persistence_gateway import PersistenceGateway
from services.sync_types import (
    ALL_STREAMS,
    ItemFailure,
    ItemSyncOutcome,
    Stream,
    SyncResult,
    classify_error,
)

logger = logging.getLogger(__name__)


class SyncService:
    """Fleet sync coordinator.

    Each Item is synced in its own database session, so a failure in one
    Item can never roll back or block another. Only the aggregate
    SyncResult is shared across Items.
    """

    # Class-level lock shared across all instances to prevent concurrent syncs.
    # This works for single-user, single-process applications. For multi-worker
    # deployments, a distributed lock (Redis, file lock) would be required.
    _sync_lock = threading.Lock()

    def __init__(
        self,
        client: Optional[DataSourceClient] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        max_workers: Optional[int] = None,
    ):
        """Initialize with optional collaborators for dependency injection.

        Args:
            client: Upstream data source. If None, a PlaidClient is created
                    on first use.
            session_factory: Callable returning a new Session. Defaults to
                             the application sessionmaker.
            max_workers: Items synced concurrently. Defaults to
                         settings.SYNC_MAX_WORKERS; 1 means sequential.
        """
        self._client = client
        self._session_factory = session_factory
        self._max_workers = max_workers if max_workers is not None else settings.SYNC_MAX_WORKERS

    @classmethod
    def is_sync_in_progress(cls) -> bool:
        """Check if a sync operation is currently in progress.

        Returns:
            True if sync is in progress, False otherwise
        """
        acquired = cls._sync_lock.acquire(blocking=False)
        if acquired:
            cls._sync_lock.release()
            return False
        return True

    @property
    def client(self) -> DataSourceClient:
        """Get the upstream client, creating the default if not provided."""
        if self._client is None:
            from integrations.plaid_client import PlaidClient

            self._client = PlaidClient()
        return self._client

    @property
    def session_factory(self) -> Callable[[], Session]:
        if self._session_factory is None:
            self._session_factory = get_session_local()
        return self._session_factory

    @contextmanager
    def exclusive(self):
        """Hold the process-wide sync lock for the duration of the block.

        Raises:
            SyncInProgressError: If another sync already holds the lock
        """
        if not self._sync_lock.acquire(blocking=False):
            raise SyncInProgressError("Sync already in progress")
        try:
            yield
        finally:
            self._sync_lock.release()

    def sync_all(self, streams: Iterable[Stream] = ALL_STREAMS) -> SyncResult:
        """Sync every Item that does not require re-authentication.

        Never aborts early: each Item's failure is recorded and the run
        continues with the next Item.
        """
        with self.exclusive():
            return self.run_all(streams)

    def sync_item(self, item_id: str, streams: Iterable[Stream] = ALL_STREAMS) -> SyncResult:
        """Sync one Item on explicit request, even if it is flagged for reauth.

        Raises:
            ItemNotFoundError: If no Item has this id
            SyncInProgressError: If another sync is running
        """
        with self.exclusive():
            return self.run_item(item_id, streams)

    def run_all(self, streams: Iterable[Stream] = ALL_STREAMS) -> SyncResult:
        """Body of ``sync_all``; the caller must hold ``exclusive()``."""
        streams = tuple(streams)
        with self.session_factory() as db:
            items = [(i.id, i.display_name) for i in PersistenceGateway(db).list_active_items()]

        if not items:
            logger.info("No active Items to sync")
            return SyncResult()

        logger.info(
            "Starting sync of %d Item(s), streams=%s, workers=%d",
            len(items), ",".join(s.value for s in streams), max(1, self._max_workers),
        )
        result = self._sync_items(items, streams)
        logger.info(
            "Sync finished: %d attempted, %d succeeded, %d failed",
            result.items_attempted, result.items_succeeded, result.items_failed,
        )
        return result

    def run_item(self, item_id: str, streams: Iterable[Stream] = ALL_STREAMS) -> SyncResult:
        """Body of ``sync_item``; the caller must hold ``exclusive()``."""
        with self.session_factory() as db:
            item = PersistenceGateway(db).get_item(item_id)
            if item is None:
                raise ItemNotFoundError(f"Item {item_id} not found")
            items = [(item.id, item.display_name)]
        return self._sync_items(items, tuple(streams))

    def mark_reauth_complete(self, item_id: str) -> None:
        """Clear the reauth flag after the user re-linked the Item.

        Called by the out-of-band re-authentication flow; the next
        automatic run picks the Item up again.
        """
        with self.session_factory() as db:
            gateway = PersistenceGateway(db)
            item = gateway.get_item(item_id)
            if item is None:
                raise ItemNotFoundError(f"Item {item_id} not found")
            gateway.mark_requires_reauth(item, False)
            logger.info("Re-authentication complete for %s", item.display_name)

    def _sync_items(self, items: list[tuple[str, str]], streams: tuple[Stream, ...]) -> SyncResult:
        result = SyncResult()

        if self._max_workers <= 1 or len(items) == 1:
            for item_id, name in items:
                self._collect(result, item_id, name, lambda: self._sync_one(item_id, streams))
            return result

        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="item-sync") as pool:
            futures = [
                (item_id, name, pool.submit(self._sync_one, item_id, streams))
                for item_id, name in items
            ]
            for item_id, name, future in futures:
                self._collect(result, item_id, name, future.result)
        return result

    @staticmethod
    def _collect(
        result: SyncResult,
        item_id: str,
        name: str,
        get_outcome: Callable[[], Optional[ItemSyncOutcome]],
    ) -> None:
        try:
            outcome = get_outcome()
        except Exception as e:
            logger.exception("Sync of %s failed unexpectedly", name)
            error_kind = classify_error(e)
            result.record_failure(
                ItemFailure(
                    item_id=item_id,
                    institution_name=name,
                    error_kind=error_kind,
                    message=str(e) or type(e).__name__,
                    retriable=True,
                )
            )
            return
        if outcome is not None:
            result.record(outcome)

    def _sync_one(self, item_id: str, streams: tuple[Stream, ...]) -> Optional[ItemSyncOutcome]:
        """Sync one Item in a fresh session."""
        db = self.session_factory()
        try:
            item = db.get(Item, item_id)
            if item is None:
                logger.warning("Item %s disappeared before it could be synced", item_id)
                return None
            return ItemSyncService(self.client).sync_item(db, item, streams)
        finally:
            db.close()

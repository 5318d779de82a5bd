"""Resync service - full re-download of upstream history."""

import logging
from typing import Iterable, Optional

from integrations.exceptions import ItemNotFoundError
from services.persistence_gateway import PersistenceGateway
from services.sync_service import SyncService
from services.sync_types import ALL_STREAMS, Stream, SyncResult

logger = logging.getLogger(__name__)


class ResyncService:
    """Resets cursors and re-runs the sync from the beginning of history.

    The reset is committed before the sync starts, so the first fetch can
    never read a stale cursor. Replaying history converges to the same
    mirror because applying a page is idempotent.
    """

    def __init__(self, sync_service: Optional[SyncService] = None):
        self._sync_service = sync_service or SyncService()

    def resync_all(self, streams: Iterable[Stream] = ALL_STREAMS) -> SyncResult:
        """Reset the selected cursors of every Item, then sync the fleet.

        Items awaiting re-authentication are reset too, but the fleet run
        still skips them until their flag is cleared.
        """
        streams = tuple(streams)
        service = self._sync_service
        with service.exclusive():
            with service.session_factory() as db:
                gateway = PersistenceGateway(db)
                items = gateway.list_items()
                for item in items:
                    gateway.reset_cursor(item, streams)
            logger.info("Reset cursors for %d Item(s); starting full resync", len(items))
            return service.run_all(streams)

    def resync_item(self, item_id: str, streams: Iterable[Stream] = ALL_STREAMS) -> SyncResult:
        """Reset the selected cursors of one Item, then sync it.

        Raises:
            ItemNotFoundError: If no Item has this id
        """
        streams = tuple(streams)
        service = self._sync_service
        with service.exclusive():
            with service.session_factory() as db:
                gateway = PersistenceGateway(db)
                item = gateway.get_item(item_id)
                if item is None:
                    raise ItemNotFoundError(f"Item {item_id} not found")
                gateway.reset_cursor(item, streams)
                local_id = item.id
            return service.run_item(local_id, streams)

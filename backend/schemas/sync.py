"""Pydantic schemas for sync runs."""

from typing import Optional

from pydantic import BaseModel

from services.sync_types import (
    ALL_STREAMS,
    ErrorKind,
    ItemSyncOutcome,
    Stream,
    StreamState,
    SyncResult,
)


class SyncRequest(BaseModel):
    """Optional request body selecting which streams to run."""

    streams: list[Stream] = list(ALL_STREAMS)


class StreamOutcomeResponse(BaseModel):
    stream: Stream
    state: StreamState
    pages: int
    added: int
    modified: int
    removed: int
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None


class HoldingsCountsResponse(BaseModel):
    added: int
    updated: int
    removed: int

    model_config = {"from_attributes": True}


class ItemSyncOutcomeResponse(BaseModel):
    """Per-Item detail in a sync response."""

    item_id: str
    institution_name: str
    succeeded: bool
    requires_reauth: bool
    streams: list[StreamOutcomeResponse]
    holdings: Optional[HoldingsCountsResponse] = None

    @classmethod
    def from_outcome(cls, outcome: ItemSyncOutcome) -> "ItemSyncOutcomeResponse":
        return cls(
            item_id=outcome.item_id,
            institution_name=outcome.institution_name,
            succeeded=outcome.succeeded,
            requires_reauth=outcome.requires_reauth,
            streams=[
                StreamOutcomeResponse(
                    stream=s.stream,
                    state=s.state,
                    pages=s.pages,
                    added=s.counts.added,
                    modified=s.counts.modified,
                    removed=s.counts.removed,
                    error_kind=s.error_kind,
                    error=s.error,
                )
                for s in outcome.streams.values()
            ],
            holdings=(
                HoldingsCountsResponse.model_validate(outcome.holdings)
                if outcome.holdings is not None
                else None
            ),
        )


class ItemFailureResponse(BaseModel):
    item_id: str
    institution_name: str
    error_kind: ErrorKind
    message: str
    retriable: bool

    model_config = {"from_attributes": True}


class SyncResultResponse(BaseModel):
    """Response schema for a sync or resync run."""

    items_attempted: int
    items_succeeded: int
    items_failed: int
    failures: list[ItemFailureResponse]
    items: list[ItemSyncOutcomeResponse]

    @classmethod
    def from_result(cls, result: SyncResult) -> "SyncResultResponse":
        return cls(
            items_attempted=result.items_attempted,
            items_succeeded=result.items_succeeded,
            items_failed=result.items_failed,
            failures=[ItemFailureResponse.model_validate(f) for f in result.failures],
            items=[ItemSyncOutcomeResponse.from_outcome(o) for o in result.outcomes],
        )


class SyncStatusResponse(BaseModel):
    """Whether a sync run currently holds the lock."""

    in_progress: bool

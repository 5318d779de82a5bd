"""Value types shared by the sync engine services.

None of these are persisted: they describe what a sync run did so the
caller (API, CLI, scheduler) can report it.
"""

import enum
from dataclasses import dataclass, field

from integrations.exceptions import (
    PersistenceError,
    ProviderDataError,
    ReauthRequiredError,
    TransientUpstreamError,
)


class Stream(str, enum.Enum):
    """An upstream change stream with its own cursor on the Item."""

    TRANSACTIONS = "transactions"
    INVESTMENTS = "investments"


ALL_STREAMS: tuple[Stream, ...] = (Stream.TRANSACTIONS, Stream.INVESTMENTS)


class RecordKind(str, enum.Enum):
    """The kind of record carried by a change page."""

    TRANSACTION = "transaction"
    INVESTMENT_TRANSACTION = "investment_transaction"


STREAM_RECORD_KIND: dict[Stream, RecordKind] = {
    Stream.TRANSACTIONS: RecordKind.TRANSACTION,
    Stream.INVESTMENTS: RecordKind.INVESTMENT_TRANSACTION,
}


class StreamState(str, enum.Enum):
    """Per-Item, per-stream sync state.

    NEVER_SYNCED -> SYNCING -> {UP_TO_DATE, NEEDS_REAUTH, SYNC_FAILED}.
    UP_TO_DATE and SYNC_FAILED return to SYNCING on the next run;
    NEEDS_REAUTH holds until re-authentication clears the Item's flag.
    """

    NEVER_SYNCED = "never_synced"
    SYNCING = "syncing"
    UP_TO_DATE = "up_to_date"
    NEEDS_REAUTH = "needs_reauth"
    SYNC_FAILED = "sync_failed"
    SKIPPED = "skipped"


class ErrorKind(str, enum.Enum):
    REAUTH_REQUIRED = "reauth_required"
    TRANSIENT = "transient"
    PERSISTENCE = "persistence"
    DATA = "data"
    UNKNOWN = "unknown"


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception raised during a sync to its reported kind."""
    if isinstance(exc, ReauthRequiredError):
        return ErrorKind.REAUTH_REQUIRED
    if isinstance(exc, TransientUpstreamError):
        return ErrorKind.TRANSIENT
    if isinstance(exc, PersistenceError):
        return ErrorKind.PERSISTENCE
    if isinstance(exc, ProviderDataError):
        return ErrorKind.DATA
    return ErrorKind.UNKNOWN


@dataclass
class PageCounts:
    """Records applied from one or more change pages."""

    added: int = 0
    modified: int = 0
    removed: int = 0

    def add(self, other: "PageCounts") -> None:
        self.added += other.added
        self.modified += other.modified
        self.removed += other.removed

    @property
    def total(self) -> int:
        return self.added + self.modified + self.removed


@dataclass
class HoldingsCounts:
    """Result of one holdings snapshot replacement."""

    added: int = 0
    updated: int = 0
    removed: int = 0


@dataclass
class StreamOutcome:
    """What happened to one stream of one Item during a run."""

    stream: Stream
    state: StreamState = StreamState.NEVER_SYNCED
    pages: int = 0
    counts: PageCounts = field(default_factory=PageCounts)
    error_kind: ErrorKind | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.state in (StreamState.SYNC_FAILED, StreamState.NEEDS_REAUTH)


@dataclass
class ItemSyncOutcome:
    """Outcome of syncing a single Item."""

    item_id: str  # Local Item primary key
    institution_name: str
    streams: dict[Stream, StreamOutcome] = field(default_factory=dict)
    holdings: HoldingsCounts | None = None

    @property
    def requires_reauth(self) -> bool:
        return any(s.state == StreamState.NEEDS_REAUTH for s in self.streams.values())

    @property
    def succeeded(self) -> bool:
        return not any(s.failed for s in self.streams.values())

    @property
    def first_failure(self) -> StreamOutcome | None:
        # Reauth outranks per-stream failures when reporting the Item
        failed = [s for s in self.streams.values() if s.failed]
        failed.sort(key=lambda s: s.state != StreamState.NEEDS_REAUTH)
        return failed[0] if failed else None

    def error_summary(self) -> str | None:
        messages = [
            f"{s.stream.value}: {s.error}" for s in self.streams.values() if s.failed and s.error
        ]
        return "; ".join(messages) or None


@dataclass
class ItemFailure:
    """A failed Item in a SyncResult."""

    item_id: str
    institution_name: str
    error_kind: ErrorKind
    message: str
    retriable: bool


@dataclass
class SyncResult:
    """Aggregate outcome of a fleet (or single Item) sync run."""

    items_attempted: int = 0
    items_succeeded: int = 0
    items_failed: int = 0
    failures: list[ItemFailure] = field(default_factory=list)
    outcomes: list[ItemSyncOutcome] = field(default_factory=list)

    def record(self, outcome: ItemSyncOutcome) -> None:
        """Fold one Item's outcome into the aggregate."""
        self.items_attempted += 1
        self.outcomes.append(outcome)
        if outcome.succeeded:
            self.items_succeeded += 1
            return

        self.items_failed += 1
        first = outcome.first_failure
        error_kind = first.error_kind if first and first.error_kind else ErrorKind.UNKNOWN
        self.failures.append(
            ItemFailure(
                item_id=outcome.item_id,
                institution_name=outcome.institution_name,
                error_kind=error_kind,
                message=outcome.error_summary() or "sync failed",
                retriable=error_kind != ErrorKind.REAUTH_REQUIRED,
            )
        )

    def record_failure(self, failure: ItemFailure) -> None:
        """Record an Item that failed before producing an outcome."""
        self.items_attempted += 1
        self.items_failed += 1
        self.failures.append(failure)

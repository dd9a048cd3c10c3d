"""
block_history.py

Allocation/free history of the selected block.

The reconciler fetches a block's event history from the data provider
without blocking the caller, and shows only the response to the most recent
request. Older responses that arrive late are dropped.

Usage:
    from block_history import BlockHistoryReconciler, HistoryQuery

    reconciler = BlockHistoryReconciler(provider)
    reconciler.subscribe(lambda r: print(r.format_entries()))
    reconciler.query(HistoryQuery(0, 0x1000, 12, TimeMode.HISTORICAL))
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from block_model import (
    MalformedEventRecord,
    MemoryEventRecord,
    TimeMode,
    viewer_config,
)

logger = logging.getLogger(__name__)

HistoryEntry = Union[MemoryEventRecord, MalformedEventRecord]
Dispatch = Callable[..., None]


def call_now(fn: Callable[..., Any], *args: Any) -> None:
    """Default dispatcher: run the completion on the calling thread."""
    fn(*args)


class InlineExecutor(Executor):
    """Runs each submitted call immediately on the submitting thread.

    Paired with ``call_now`` it makes a session fully synchronous, which is
    what console scripts want.
    """

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        try:
            result = fn(*args, **kwargs)
        except Exception as e:
            future.set_exception(e)
        else:
            future.set_result(result)
        return future


def resolve_executor(
    executor: Optional[Executor],
    dispatch: Dispatch,
    max_workers: int,
    thread_name_prefix: str,
) -> Executor:
    """Pick the executor for provider calls.

    Completions mutate state owned by the dispatching thread, so worker
    threads are only used together with a dispatcher that hands results
    back to that thread. With ``call_now`` calls run inline.

    Raises:
        ValueError: If a thread pool is paired with ``call_now``
    """
    if executor is None:
        if dispatch is call_now:
            return InlineExecutor()
        return ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=thread_name_prefix)
    if dispatch is call_now and isinstance(executor, ThreadPoolExecutor):
        raise ValueError("A thread pool executor needs a dispatcher that runs completions on the UI thread")
    return executor


# ============================================================
# Request sequencing
# ============================================================

class RequestTicker:
    """Hands out increasing sequence numbers; only the newest one is current."""

    def __init__(self) -> None:
        self._latest = 0

    @property
    def latest(self) -> int:
        return self._latest

    def issue(self) -> int:
        self._latest += 1
        return self._latest

    def is_current(self, seq: int) -> bool:
        return seq == self._latest


# ============================================================
# History reconciler
# ============================================================

class FetchState(Enum):
    """Lifecycle of a history fetch."""
    IDLE = "idle"
    FETCHING = "fetching"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class HistoryQuery:
    """Everything a history fetch depends on.

    Attributes:
        pool_id: Index of the memory pool
        tile_address: Lookup address of the selected tile
        timestamp: Effective timestamp in ``mode`` semantics
        mode: Realtime or historical time semantics
    """
    pool_id: int
    tile_address: int
    timestamp: int
    mode: TimeMode


def normalize_history(raw_records: Sequence[Any]) -> List[HistoryEntry]:
    """Turn provider records into typed entries, keeping provider order.

    Records failing the one-variant check become placeholders.
    """
    entries: List[HistoryEntry] = []
    for raw in raw_records:
        if isinstance(raw, MemoryEventRecord):
            entries.append(raw)
            continue
        try:
            entries.append(MemoryEventRecord.from_wire(raw))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Malformed history record %r: %s", raw, e)
            entries.append(MalformedEventRecord(raw=raw, reason=str(e)))
    return entries


class BlockHistoryReconciler:
    """Fetches and presents the history of one block at a time.

    Attributes:
        state: Current ``FetchState``
        last_outcome: SUCCESS or FAILURE of the last applied response
        entries: Displayed history, most recent first
        last_error: Error of the last failed fetch, if any
        current_query: Dependency key of the newest request
    """

    def __init__(
        self,
        provider: Any,
        executor: Optional[Executor] = None,
        dispatch: Dispatch = call_now,
    ):
        """Initialize the reconciler.

        Args:
            provider: Object implementing ``query_block_history``
            executor: Runs provider calls (see ``resolve_executor`` for the default)
            dispatch: Delivers completions to the UI thread
        """
        self.provider = provider
        self._executor = resolve_executor(executor, dispatch, viewer_config.fetch_workers, "block-history")
        self._owns_executor = executor is None
        self._dispatch = dispatch
        self._ticker = RequestTicker()
        self._listeners: List[Callable[[BlockHistoryReconciler], None]] = []

        self.state = FetchState.IDLE
        self.last_outcome: Optional[FetchState] = None
        self.entries: Tuple[HistoryEntry, ...] = ()
        self.last_error: Optional[BaseException] = None
        self.current_query: Optional[HistoryQuery] = None

    def subscribe(self, listener: Callable[[BlockHistoryReconciler], None]) -> None:
        """Call ``listener`` after every applied response."""
        self._listeners.append(listener)

    @property
    def latest_seq(self) -> int:
        return self._ticker.latest

    def query(self, query: HistoryQuery) -> Optional[int]:
        """Fetch history for ``query`` unless it is already the current key.

        Returns:
            The sequence number of the issued fetch, or None if nothing changed
        """
        if query == self.current_query:
            return None
        return self._issue(query)

    def refresh(self) -> Optional[int]:
        """Fetch the current key again."""
        if self.current_query is None:
            return None
        return self._issue(self.current_query)

    def shutdown(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def _issue(self, query: HistoryQuery) -> int:
        seq = self._ticker.issue()
        self.current_query = query
        self.state = FetchState.FETCHING
        logger.debug("History fetch #%d for %s @ %d (%s)",
                     seq, hex(query.tile_address), query.timestamp, query.mode.value)

        future = self._executor.submit(
            self.provider.query_block_history,
            query.pool_id,
            query.tile_address,
            query.timestamp,
            query.mode,
        )
        future.add_done_callback(lambda f: self._dispatch(self._apply, seq, f))
        return seq

    def _apply(self, seq: int, future: Future) -> None:
        if not self._ticker.is_current(seq):
            logger.debug("Dropping stale history response #%d (latest #%d)", seq, self._ticker.latest)
            return

        error = future.exception()
        if error is not None:
            # Keep showing the last good history.
            logger.error("Error fetching block history: %s", error)
            self.last_error = error
            self.last_outcome = FetchState.FAILURE
        else:
            records = future.result()
            logger.debug("History fetch #%d returned %d records", seq, len(records))
            self.entries = tuple(reversed(normalize_history(records)))
            self.last_error = None
            self.last_outcome = FetchState.SUCCESS

        self.state = self.last_outcome
        for listener in self._listeners:
            listener(self)
        if self._ticker.is_current(seq):
            self.state = FetchState.IDLE

    def format_entries(
        self,
        left_padding: Optional[int] = None,
        right_padding: Optional[int] = None,
    ) -> str:
        """Render the displayed history for the details panel."""
        left = viewer_config.left_padding if left_padding is None else left_padding
        right = viewer_config.right_padding if right_padding is None else right_padding

        lines: List[str] = []
        if self.current_query is not None:
            lines.append(f"=== Block {hex(self.current_query.tile_address + left)} ===")
        if self.state is FetchState.FETCHING:
            lines.append("(loading...)")
        if self.last_error is not None:
            lines.append(f"(fetch failed: {self.last_error})")
        if not self.entries:
            lines.append("(no history)")
        for entry in self.entries:
            lines.append("")
            lines.append(entry.to_console(left, right))
        return "\n".join(lines)

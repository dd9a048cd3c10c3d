"""
block_viewer.py

Session state and event entry points of the block map viewer.

A ``BlockMapSession`` owns everything the viewer shows: the pool, time mode
and cursor, the tile and block sizes, the latest snapshot, the selection and
the selected block's history. Each external trigger has one method. Provider
calls run on an executor and their results come back through ``dispatch``,
so all state changes happen on the caller's thread.

Usage:
    from block_provider import TraceBlockProvider
    from block_viewer import BlockMapSession

    session = BlockMapSession(TraceBlockProvider(pools))
    session.subscribe(lambda s: print(s.snapshot.to_console()))
    session.resize(800)
    session.load()
    session.click(23, 9)
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future
from typing import Any, Callable, List, Optional, Tuple

from block_grid import classify_tiles, compute_layout, hit_test
from block_history import (
    BlockHistoryReconciler,
    Dispatch,
    HistoryQuery,
    RequestTicker,
    call_now,
    resolve_executor,
)
from block_model import (
    GridLayout,
    MemorySnapshot,
    TileCategory,
    TimeMode,
    ViewerConfig,
    viewer_config,
)
from block_selection import SelectionStateMachine

logger = logging.getLogger(__name__)

SessionListener = Callable[["BlockMapSession"], None]


class BlockMapSession:
    """One operator's view over a block data provider.

    Attributes:
        loaded: Whether ``load()`` has been called; nothing is fetched before
        pool_names: Pools reported by the provider
        pool_id: Index of the active pool
        mode: Active time semantics
        timestamp: Time cursor, in ``mode`` semantics
        realtime_offset: Added to the cursor in realtime mode
        time_limit: Largest meaningful cursor value for the active pool and mode
        tile_size: Tile edge length in pixels
        block_size: Bytes per block requested from the provider
        viewport_width: Width of the area the grid lives in
        snapshot: Latest applied snapshot
        last_error: Error of the last failed snapshot fetch, if any
        selection: Selection state machine
        history: History reconciler for the selected block
    """

    def __init__(
        self,
        provider: Any,
        config: Optional[ViewerConfig] = None,
        executor: Optional[Executor] = None,
        dispatch: Dispatch = call_now,
    ):
        """Initialize a session.

        Args:
            provider: Object implementing ``BlockDataProvider``
            config: Viewer configuration (defaults to ``viewer_config``)
            executor: Runs provider calls (see ``resolve_executor`` for the default)
            dispatch: Delivers completions to the UI thread
        """
        self.provider = provider
        self.config = config if config is not None else viewer_config
        self._executor = resolve_executor(executor, dispatch, self.config.fetch_workers, "block-map")
        self._owns_executor = executor is None
        self._dispatch = dispatch
        self._ticker = RequestTicker()
        self._listeners: List[SessionListener] = []

        self.loaded = False
        self.pool_names: List[str] = []
        self.pool_id = 0
        self.mode = TimeMode.REALTIME
        self.timestamp = 0
        self.realtime_offset = 0
        self.time_limit = 0
        self.tile_size = self.config.tile_size
        self.block_size = self.config.block_size
        self.viewport_width: float = 0
        self.snapshot = MemorySnapshot(captured_at=0)
        self.last_error: Optional[BaseException] = None

        self.selection = SelectionStateMachine()
        self.history = BlockHistoryReconciler(provider, executor=self._executor, dispatch=dispatch)
        self.history.subscribe(lambda _: self._notify())

    # ------------------------------------------------------------
    # Listeners and derived state
    # ------------------------------------------------------------

    def subscribe(self, listener: SessionListener) -> None:
        """Call ``listener`` with the session whenever something visible changes."""
        self._listeners.append(listener)

    def effective_timestamp(self) -> int:
        """Timestamp sent to the provider."""
        if self.mode is TimeMode.REALTIME:
            return self.timestamp + self.realtime_offset
        return self.timestamp

    def layout(self) -> GridLayout:
        return compute_layout(
            len(self.snapshot),
            self.viewport_width,
            self.tile_size,
            self.config.grid_width_ratio,
        )

    def tiles(self) -> List[TileCategory]:
        return classify_tiles(self.snapshot, self.selection.state)

    def history_query(self) -> HistoryQuery:
        return HistoryQuery(
            pool_id=self.pool_id,
            tile_address=self.selection.state.lookup_address,
            timestamp=self.effective_timestamp(),
            mode=self.mode,
        )

    @property
    def pool_name(self) -> str:
        if 0 <= self.pool_id < len(self.pool_names):
            return self.pool_names[self.pool_id]
        return f"pool {self.pool_id}"

    def describe(self) -> str:
        """One-line summary for status bars and console output."""
        return (
            f"{self.pool_name} | {self.mode.label} {self.effective_timestamp()} | "
            f"{len(self.snapshot)} blocks of {self.block_size} B | tile {self.tile_size} px"
        )

    # ------------------------------------------------------------
    # External triggers
    # ------------------------------------------------------------

    def load(self) -> Optional[int]:
        """Mark data as loaded and fetch the pool list and first snapshot."""
        self.loaded = True
        logger.info("Loading block map (pool %d, %s mode)", self.pool_id, self.mode.value)
        return self._refetch(push_block_size=True)

    def select_pool(self, pool_id: int) -> Optional[int]:
        self.pool_id = pool_id
        self.timestamp = 0
        logger.info("Switched to pool %d", pool_id)
        return self._refetch(push_block_size=True)

    def scrub(self, timestamp: int) -> Optional[int]:
        """Move the time cursor."""
        timestamp = max(0, int(timestamp))
        if timestamp == self.timestamp:
            return None
        self.timestamp = timestamp
        return self._refetch()

    def set_realtime_offset(self, offset: int) -> Optional[int]:
        if offset == self.realtime_offset:
            return None
        self.realtime_offset = offset
        if self.mode is not TimeMode.REALTIME:
            return None
        return self._refetch()

    def toggle_mode(self) -> Optional[int]:
        self.mode = self.mode.toggled()
        self.timestamp = 0
        logger.info("Time mode is now %s", self.mode.value)
        return self._refetch()

    def resize(self, viewport_width: float) -> None:
        """Repaint for a new viewport width. No fetch."""
        if viewport_width == self.viewport_width:
            return
        self.viewport_width = viewport_width
        self._notify()

    def grow_tiles(self) -> None:
        self._set_tile_size(self.tile_size + self.config.tile_step)

    def shrink_tiles(self) -> None:
        self._set_tile_size(self.tile_size - self.config.tile_step)

    def grow_blocks(self) -> Optional[int]:
        return self._set_block_size(self.block_size * 2)

    def shrink_blocks(self) -> Optional[int]:
        return self._set_block_size(self.block_size // 2)

    def click(self, x: float, y: float) -> Optional[int]:
        """Select the tile under ``(x, y)`` on the drawing surface.

        Returns:
            The selected tile index, or None when the click missed the grid
        """
        index = hit_test(x, y, self.layout(), len(self.snapshot))
        if index is None:
            return None
        self.selection.on_click(index, self.snapshot)
        self._request_history()
        self._notify()
        return index

    def refresh(self) -> Optional[int]:
        """Fetch the current snapshot and history again."""
        seq = self._request_snapshot()
        self.history.refresh()
        return seq

    def shutdown(self) -> None:
        self.history.shutdown()
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    # ------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------

    def _set_tile_size(self, size: int) -> None:
        size = max(self.config.min_tile_size, size)
        if size == self.tile_size:
            return
        self.tile_size = size
        logger.debug("Tile size is now %d px", size)
        self._notify()

    def _set_block_size(self, size: int) -> Optional[int]:
        size = max(1, size)
        if size == self.block_size:
            return None
        self.block_size = size
        logger.info("Block size is now %d bytes", size)
        return self._refetch(push_block_size=True)

    def _refetch(self, push_block_size: bool = False) -> Optional[int]:
        seq = self._request_snapshot(push_block_size)
        self._request_history()
        self._notify()
        return seq

    def _request_snapshot(self, push_block_size: bool = False) -> Optional[int]:
        if not self.loaded:
            return None
        seq = self._ticker.issue()
        args = (
            self.pool_id,
            self.effective_timestamp(),
            self.mode,
            self.config.truncate_limit,
            self.block_size if push_block_size else None,
        )
        logger.debug("Snapshot fetch #%d for pool %d @ %d (%s)", seq, args[0], args[1], args[2].value)
        future = self._executor.submit(self._fetch, *args)
        future.add_done_callback(lambda f: self._dispatch(self._apply_snapshot, seq, f))
        return seq

    def _fetch(
        self,
        pool_id: int,
        timestamp: int,
        mode: TimeMode,
        truncate_limit: int,
        block_size: Optional[int],
    ) -> Tuple[List[str], Optional[int], MemorySnapshot]:
        """Worker side of a snapshot fetch."""
        if block_size is not None:
            self.provider.set_block_size(pool_id, block_size)
        names = list(self.provider.get_pool_list())
        get_time_limit = getattr(self.provider, "get_time_limit", None)
        limit = get_time_limit(pool_id, mode) if get_time_limit is not None else None
        result = self.provider.get_snapshot(pool_id, timestamp, mode, truncate_limit)
        return names, limit, MemorySnapshot.from_provider(result)

    def _apply_snapshot(self, seq: int, future: Future) -> None:
        if not self._ticker.is_current(seq):
            logger.debug("Dropping stale snapshot #%d (latest #%d)", seq, self._ticker.latest)
            return

        error = future.exception()
        if error is not None:
            # Keep painting the last good snapshot.
            logger.error("Error fetching snapshot: %s", error)
            self.last_error = error
            self._notify()
            return

        self.pool_names, limit, self.snapshot = future.result()
        if limit is not None:
            self.time_limit = limit
        self.last_error = None
        self.selection.on_snapshot(self.snapshot)
        self._notify()
        self._request_history()

    def _request_history(self) -> None:
        if self.loaded:
            self.history.query(self.history_query())

    def _notify(self) -> None:
        for listener in self._listeners:
            listener(self)

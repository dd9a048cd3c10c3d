"""
test_block_viewer.py

Integration tests for BlockMapSession over an in-memory trace.
"""

import threading

import pytest
from block_history import FetchState, InlineExecutor
from block_model import TileCategory, TimeMode, ViewerConfig
from block_provider import ProviderError, TraceBlockProvider
from block_viewer import BlockMapSession


@pytest.fixture
def provider(small_pool, arena_pool):
    return TraceBlockProvider([small_pool, arena_pool])


@pytest.fixture
def config():
    return ViewerConfig()


@pytest.fixture
def session(provider, config):
    """Synchronous session showing operation indices, grid 10 tiles wide."""
    s = BlockMapSession(provider, config=config, executor=InlineExecutor())
    s.resize(80)
    s.toggle_mode()
    return s


def block_ids(session):
    return [(b.block_id, b.status_code) for b in session.snapshot.blocks]


class CoreProvider:
    """Provider exposing only the four core queries, no time limit."""

    def __init__(self, inner):
        self._inner = inner

    def get_snapshot(self, pool_id, timestamp, mode, truncate_limit):
        return self._inner.get_snapshot(pool_id, timestamp, mode, truncate_limit)

    def get_pool_list(self):
        return self._inner.get_pool_list()

    def query_block_history(self, pool_id, tile_address, timestamp, mode):
        return self._inner.query_block_history(pool_id, tile_address, timestamp, mode)

    def set_block_size(self, pool_id, new_size):
        self._inner.set_block_size(pool_id, new_size)


# ============================================================
# Loading and time
# ============================================================

class TestLoading:
    """Tests for load and time controls."""

    def test_nothing_fetched_before_load(self, provider, manual_executor):
        session = BlockMapSession(provider, executor=manual_executor)
        assert session.scrub(3) is None
        assert session.toggle_mode() is None
        assert manual_executor.pending == []

    def test_load(self, session):
        session.load()
        assert session.loaded
        assert session.pool_names == ["heap", "arena"]
        assert session.time_limit == 2
        assert block_ids(session) == [(0, 3), (0, 3), (-1, 0)]
        assert session.selection.state.selected_tile_index == 0
        assert session.selection.state.status_bucket_at_selection == 3

    def test_default_mode_is_realtime(self, provider):
        assert BlockMapSession(provider, executor=InlineExecutor()).mode is TimeMode.REALTIME

    def test_scrub(self, session):
        session.load()
        session.scrub(2)
        assert session.snapshot.captured_at == 2
        assert block_ids(session) == [(0, 1), (0, 1), (1, 2)]
        assert session.scrub(2) is None

    def test_toggle_mode_resets_timestamp(self, session):
        session.load()
        session.scrub(2)
        session.toggle_mode()
        assert session.mode is TimeMode.REALTIME
        assert session.timestamp == 0

    def test_realtime_offset(self, session):
        session.load()
        session.set_realtime_offset(100)
        assert session.effective_timestamp() == 0

        session.toggle_mode()
        assert session.effective_timestamp() == 100
        session.scrub(2)
        assert session.effective_timestamp() == 102
        assert block_ids(session) == [(0, 1), (0, 1), (1, 2)]

    def test_select_pool_resets_timestamp(self, session):
        session.load()
        session.scrub(2)
        session.select_pool(1)
        assert session.timestamp == 0
        assert session.pool_name == "arena"
        assert block_ids(session) == [(0, 3), (-1, 0)]


# ============================================================
# Geometry
# ============================================================

class TestGeometry:
    """Tests for resize and tile/block size controls."""

    def test_resize_repaints_without_fetch(self, provider, manual_executor):
        session = BlockMapSession(provider, executor=manual_executor)
        session.load()
        manual_executor.run_all()
        notified = []
        session.subscribe(notified.append)

        session.resize(400)
        assert manual_executor.pending == []
        assert notified == [session]
        assert session.layout().columns == 50

    def test_tile_size_steps(self, session, config):
        session.grow_tiles()
        assert session.tile_size == config.tile_size + config.tile_step
        session.shrink_tiles()
        session.shrink_tiles()
        assert session.tile_size == config.min_tile_size

    def test_layout_uses_tile_size(self, session):
        session.load()
        session.grow_tiles()
        layout = session.layout()
        assert layout.tile_size == 8
        assert layout.columns == 5

    def test_block_size_pushed_to_provider(self, session, small_pool):
        session.load()
        session.grow_blocks()
        assert session.block_size == 64
        assert small_pool.block_size == 64
        assert len(session.snapshot) == 2

    def test_block_size_minimum(self, session):
        session.block_size = 2
        session.shrink_blocks()
        assert session.block_size == 1
        assert session.shrink_blocks() is None
        assert session.block_size == 1


# ============================================================
# Selection and history
# ============================================================

class TestSelection:
    """Tests for click selection and history."""

    def test_click_selects_and_queries_history(self, session):
        session.load()
        session.scrub(2)

        assert session.click(9, 1) == 2
        state = session.selection.state
        assert state.selected_block_id == 1
        assert state.lookup_address == 0x1040
        assert session.history.current_query.tile_address == 0x1040
        assert [e.event.address for e in session.history.entries] == [0x1040]
        assert session.tiles()[2] is TileCategory.SELECTED

    def test_click_outside_grid(self, session):
        session.load()
        before = session.selection.state
        assert session.click(500, 500) is None
        assert session.click(13, 0) is None
        assert session.selection.state == before

    def test_history_newest_first(self, session):
        session.load()
        session.scrub(2)
        session.click(1, 1)
        assert [e.event.timestamp for e in session.history.entries] == [2, 0]

    def test_history_follows_time(self, session):
        session.load()
        session.click(1, 1)
        assert len(session.history.entries) == 1
        session.scrub(2)
        assert len(session.history.entries) == 2

    def test_selection_follows_block_across_block_size(self, session):
        session.load()
        session.scrub(1)
        session.click(9, 1)
        assert session.selection.state.selected_block_id == 1

        session.grow_blocks()
        state = session.selection.state
        assert state.selected_tile_index == 1
        assert state.selected_block_id == 1
        assert state.status_bucket_at_selection == 2

    def test_same_block_highlight(self, session):
        session.load()
        assert session.tiles() == [
            TileCategory.SELECTED,
            TileCategory.SAME_BLOCK_HIGHLIGHT,
            TileCategory.UNUSED,
        ]


# ============================================================
# Concurrency and errors
# ============================================================

class TestAsync:
    """Tests for out-of-order responses and failures."""

    def test_stale_snapshot_dropped(self, provider, manual_executor):
        session = BlockMapSession(provider, executor=manual_executor)
        session.toggle_mode()
        session.load()
        session.scrub(2)
        # pending: snapshot@0, history@0, snapshot@2, history@2
        assert len(manual_executor.pending) == 4

        manual_executor.run(2)
        assert session.snapshot.captured_at == 2
        manual_executor.run(0)
        assert session.snapshot.captured_at == 2
        assert block_ids(session) == [(0, 1), (0, 1), (1, 2)]

    def test_history_state_while_fetching(self, provider, manual_executor):
        session = BlockMapSession(provider, executor=manual_executor)
        session.load()
        assert session.history.state is FetchState.FETCHING
        manual_executor.run_all()
        assert session.history.state is FetchState.IDLE

    def test_failed_fetch_keeps_last_snapshot(self, session):
        session.load()
        good = session.snapshot
        session.select_pool(7)

        assert session.snapshot is good
        assert isinstance(session.last_error, ProviderError)

    def test_error_cleared_by_next_success(self, session):
        session.load()
        session.select_pool(7)
        session.select_pool(1)
        assert session.last_error is None

    def test_listeners_notified(self, session):
        seen = []
        session.subscribe(seen.append)
        session.load()
        assert seen
        assert all(s is session for s in seen)

    def test_provider_without_time_limit(self, provider, config):
        session = BlockMapSession(CoreProvider(provider), config=config, executor=InlineExecutor())
        session.toggle_mode()
        session.load()

        assert session.last_error is None
        assert session.pool_names == ["heap", "arena"]
        assert len(session.snapshot) == 3
        assert session.time_limit == 0

    def test_default_session_updates_on_calling_thread(self, provider):
        session = BlockMapSession(provider)
        threads = set()
        session.subscribe(lambda s: threads.add(threading.current_thread()))

        session.load()
        session.click(0, 0)
        session.shutdown()

        assert threads == {threading.current_thread()}
        assert len(session.snapshot) > 0
        assert session.history.last_outcome is FetchState.SUCCESS

    def test_describe(self, session):
        session.load()
        text = session.describe()
        assert "heap" in text
        assert "OP # 0" in text
        assert "3 blocks" in text


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

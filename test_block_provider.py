"""
test_block_provider.py

Unit tests for TraceBuilder and TraceBlockProvider.
"""

import pytest
from block_model import BlockRecord, EventKind, TimeMode, viewer_config
from block_provider import MemoryPool, ProviderError, TraceBlockProvider, TraceBuilder


def statuses(blocks):
    return [(b.block_id, b.status_code) for b in blocks]


# ============================================================
# TraceBuilder
# ============================================================

class TestTraceBuilder:
    """Tests for TraceBuilder."""

    def test_malloc_assigns_aligned_addresses(self):
        builder = TraceBuilder("heap", base_address=0x1000)
        builder, a = builder.malloc(24)
        builder, b = builder.malloc(16)
        assert a == 0x1000
        assert b == 0x1020

    def test_explicit_address(self):
        builder, addr = TraceBuilder("heap").malloc(8, address=0x5000)
        assert addr == 0x5000

    def test_malloc_rejects_live_address(self):
        builder, addr = TraceBuilder("heap").malloc(8)
        with pytest.raises(ValueError, match="already allocated"):
            builder.malloc(8, address=addr)

    def test_address_reusable_after_free(self):
        builder, addr = TraceBuilder("heap").malloc(8)
        builder.free(addr)
        builder, again = builder.malloc(8, address=addr)
        assert again == addr

    def test_malloc_rejects_non_positive_size(self):
        with pytest.raises(ValueError, match="positive"):
            TraceBuilder("heap").malloc(0)

    def test_free_unknown_address(self):
        with pytest.raises(KeyError):
            TraceBuilder("heap").free(0xDEAD)

    def test_double_free(self):
        builder, addr = TraceBuilder("heap").malloc(8)
        builder.free(addr)
        with pytest.raises(ValueError, match="Double free"):
            builder.free(addr)

    def test_timestamps(self):
        builder = TraceBuilder("heap", start_time=50)
        builder, addr = builder.malloc(8, ticks=5)
        pool = builder.advance(100).free(addr, "main").build()

        alloc, free = pool.events
        assert (alloc.event.timestamp, alloc.event.real_timestamp) == (0, 50)
        assert (free.event.timestamp, free.event.real_timestamp) == (1, 155)
        assert free.kind is EventKind.FREE
        assert free.event.size == 8
        assert free.event.callstack == "main"

    def test_build_uses_configured_block_size(self):
        assert TraceBuilder("heap").build().block_size == viewer_config.block_size
        assert TraceBuilder("heap").build(block_size=8).block_size == 8


class TestMemoryPool:
    """Tests for MemoryPool."""

    def test_span_is_block_aligned(self, small_pool):
        assert small_pool.span() == (0x1000, 0x1060)

    def test_empty_span(self):
        assert MemoryPool("empty").span() == (0, 0)


# ============================================================
# TraceBlockProvider
# ============================================================

class TestTraceBlockProvider:
    """Tests for TraceBlockProvider."""

    @pytest.fixture
    def provider(self, small_pool, arena_pool):
        return TraceBlockProvider([small_pool, arena_pool])

    def test_pool_list(self, provider):
        assert provider.get_pool_list() == ["heap", "arena"]

    def test_historical_snapshots(self, provider):
        ts, blocks = provider.get_snapshot(0, 0, TimeMode.HISTORICAL, 256)
        assert ts == 0
        assert statuses(blocks) == [(0, 3), (0, 3), (-1, 0)]
        assert [b.tile_address for b in blocks] == [0x1000, 0x1020, 0x1040]

        _, blocks = provider.get_snapshot(0, 1, TimeMode.HISTORICAL, 256)
        assert statuses(blocks) == [(0, 3), (0, 3), (1, 2)]

        _, blocks = provider.get_snapshot(0, 2, TimeMode.HISTORICAL, 256)
        assert statuses(blocks) == [(0, 1), (0, 1), (1, 2)]

    def test_historical_timestamp_is_clamped(self, provider):
        ts, _ = provider.get_snapshot(0, 99, TimeMode.HISTORICAL, 256)
        assert ts == 2

    def test_realtime_snapshots(self, provider):
        ts, blocks = provider.get_snapshot(0, 50, TimeMode.REALTIME, 256)
        assert ts == 50
        assert statuses(blocks) == [(0, 3), (0, 3), (1, 2)]

        _, blocks = provider.get_snapshot(0, 102, TimeMode.REALTIME, 256)
        assert statuses(blocks) == [(0, 1), (0, 1), (1, 2)]

    def test_realtime_before_first_operation(self, provider):
        _, blocks = provider.get_snapshot(1, 0, TimeMode.REALTIME, 256)
        assert statuses(blocks) == [(-1, 0), (-1, 0)]

    def test_truncation(self, provider):
        _, blocks = provider.get_snapshot(0, 2, TimeMode.HISTORICAL, 2)
        assert len(blocks) == 2

    def test_records_are_block_records(self, provider):
        _, blocks = provider.get_snapshot(0, 0, TimeMode.HISTORICAL, 256)
        assert all(isinstance(b, BlockRecord) for b in blocks)

    def test_block_filled_by_two_allocations(self):
        builder = TraceBuilder("heap", base_address=0x1000)
        builder, _ = builder.malloc(16)
        builder, _ = builder.malloc(16)
        provider = TraceBlockProvider([builder.build(block_size=32)])

        _, blocks = provider.get_snapshot(0, 1, TimeMode.HISTORICAL, 256)
        assert statuses(blocks) == [(0, 3)]

    def test_unknown_pool(self, provider):
        with pytest.raises(ProviderError, match="not found"):
            provider.get_snapshot(5, 0, TimeMode.HISTORICAL, 256)
        assert issubclass(ProviderError, RuntimeError)

    def test_set_block_size(self, provider):
        provider.set_block_size(0, 64)
        _, blocks = provider.get_snapshot(0, 1, TimeMode.HISTORICAL, 256)
        assert statuses(blocks) == [(0, 3), (1, 2)]
        assert [b.tile_address for b in blocks] == [0x1000, 0x1040]

    def test_set_block_size_validation(self, provider):
        with pytest.raises(ValueError):
            provider.set_block_size(0, 0)
        with pytest.raises(ProviderError):
            provider.set_block_size(9, 32)

    def test_constructor_block_size(self, small_pool):
        provider = TraceBlockProvider([small_pool], block_size=16)
        _, blocks = provider.get_snapshot(0, 0, TimeMode.HISTORICAL, 256)
        assert len(blocks) == 5

    def test_block_history_ascending(self, provider):
        history = provider.query_block_history(0, 0x1000, 2, TimeMode.HISTORICAL)
        assert [(r.kind, r.event.timestamp) for r in history] == [
            (EventKind.ALLOCATION, 0),
            (EventKind.FREE, 2),
        ]

    def test_block_history_respects_time(self, provider):
        assert provider.query_block_history(0, 0x1040, 0, TimeMode.HISTORICAL) == []
        history = provider.query_block_history(0, 0x1040, 2, TimeMode.HISTORICAL)
        assert [r.event.address for r in history] == [0x1040]

    def test_time_limit(self, provider):
        assert provider.get_time_limit(0, TimeMode.HISTORICAL) == 2
        assert provider.get_time_limit(0, TimeMode.REALTIME) == 102
        empty = TraceBlockProvider([MemoryPool("empty")])
        assert empty.get_time_limit(0, TimeMode.REALTIME) == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

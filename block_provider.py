"""
block_provider.py

Data provider contract and an in-memory implementation over recorded traces.

The viewer only talks to a ``BlockDataProvider``. ``TraceBlockProvider``
implements it over pools of allocation/free events, which is what the demos
and tests use; ``TraceBuilder`` records such pools with a fluent API.

Example:
    >>> builder = TraceBuilder("heap")
    >>> builder, a = builder.malloc(64, "main:10")
    >>> builder, b = builder.malloc(16, "main:11")
    >>> pool = builder.free(a, "main:20").build()
    >>> provider = TraceBlockProvider([pool], block_size=32)
    >>> provider.get_snapshot(0, 2, TimeMode.HISTORICAL, 256)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from block_model import (
    BlockRecord,
    MemoryEvent,
    MemoryEventRecord,
    TimeMode,
    viewer_config,
)

logger = logging.getLogger(__name__)


class ProviderError(RuntimeError):
    """Raised when the provider cannot answer a query."""


class BlockDataProvider(Protocol):
    """Queries the viewer issues against the backend.

    A provider may also define ``get_time_limit(pool_id, mode) -> int``, the
    largest meaningful cursor value. The session uses it to size the time
    slider when present.
    """

    def get_snapshot(
        self,
        pool_id: int,
        timestamp: int,
        mode: TimeMode,
        truncate_limit: int,
    ) -> Tuple[int, List[BlockRecord]]:
        ...

    def get_pool_list(self) -> List[str]:
        ...

    def query_block_history(
        self,
        pool_id: int,
        tile_address: int,
        timestamp: int,
        mode: TimeMode,
    ) -> List[MemoryEventRecord]:
        ...

    def set_block_size(self, pool_id: int, new_size: int) -> None:
        ...


# ============================================================
#  Recorded pools
# ============================================================

@dataclass
class MemoryPool:
    """A named sequence of allocation/free events.

    Attributes:
        name: Pool name shown in the pool selector
        events: Events in operation order
        block_size: Bytes represented by one map block
    """
    name: str
    events: List[MemoryEventRecord] = field(default_factory=list)
    block_size: int = 32

    def span(self) -> Tuple[int, int]:
        """Lowest and highest address touched by any event, block aligned."""
        if not self.events:
            return 0, 0
        lo = min(r.event.address for r in self.events)
        hi = max(r.event.address + r.event.size for r in self.events)
        lo -= lo % self.block_size
        hi += -hi % self.block_size
        return lo, hi


class TraceBuilder:
    """Builder for recording the events of one pool.

    Mirrors a heap model: an address can only be live once, and only live
    addresses can be freed. Each operation advances the wall clock.

    Example:
        >>> builder = TraceBuilder("heap")
        >>> builder, addr = builder.malloc(24, "parse_args")
        >>> pool = builder.advance(500).free(addr).build()
    """

    def __init__(self, name: str, base_address: int = 0x1000, start_time: int = 0) -> None:
        """Initialize an empty trace.

        Args:
            name: Pool name
            base_address: First address handed out by ``malloc``
            start_time: Wall-clock tick of the first operation
        """
        self._name = name
        self._events: List[MemoryEventRecord] = []
        self._live: Dict[int, MemoryEvent] = {}
        self._next_address = base_address
        self._clock = start_time

    def advance(self, ticks: int) -> "TraceBuilder":
        """Let wall-clock time pass without an operation."""
        self._clock += ticks
        return self

    def malloc(
        self,
        size: int,
        callstack: str = "",
        address: Optional[int] = None,
        ticks: int = 1,
    ) -> Tuple["TraceBuilder", int]:
        """Record an allocation.

        Args:
            size: Size in bytes
            callstack: Callstack text captured with the allocation
            address: Specific address to use (next free address if None)
            ticks: Wall-clock ticks consumed by this operation

        Returns:
            Tuple of (self for chaining, allocated address)

        Raises:
            ValueError: If size is not positive or the address is live
        """
        if size <= 0:
            raise ValueError(f"Allocation size must be positive, got {size}")
        if address is None:
            address = self._next_address
            self._next_address += size + (-size % 0x10)
        if address in self._live:
            raise ValueError(f"Address {hex(address)} already allocated")

        record = MemoryEventRecord.allocation(address, size, callstack, len(self._events), self._clock)
        self._events.append(record)
        self._live[address] = record.event
        self._clock += ticks
        return self, address

    def free(self, address: int, callstack: str = "", ticks: int = 1) -> "TraceBuilder":
        """Record a free of a live allocation.

        Raises:
            KeyError: If nothing was ever allocated at ``address``
            ValueError: If the allocation was already freed
        """
        allocation = self._live.pop(address, None)
        if allocation is None:
            if any(r.event.address == address for r in self._events):
                raise ValueError(f"Double free detected at address {hex(address)}")
            raise KeyError(f"No allocation at address {hex(address)}")

        self._events.append(
            MemoryEventRecord.free(address, allocation.size, callstack, len(self._events), self._clock)
        )
        self._clock += ticks
        return self

    def build(self, block_size: Optional[int] = None) -> MemoryPool:
        """Freeze the recorded events into a pool."""
        size = viewer_config.block_size if block_size is None else block_size
        return MemoryPool(name=self._name, events=list(self._events), block_size=size)


# ============================================================
#  In-memory provider
# ============================================================

class TraceBlockProvider:
    """Answers viewer queries from recorded pools.

    Safe to call from worker threads.
    """

    def __init__(self, pools: Sequence[MemoryPool], block_size: Optional[int] = None):
        self._pools = list(pools)
        self._lock = threading.Lock()
        if block_size is not None:
            for pool in self._pools:
                pool.block_size = block_size

    def get_pool_list(self) -> List[str]:
        with self._lock:
            return [pool.name for pool in self._pools]

    def set_block_size(self, pool_id: int, new_size: int) -> None:
        if new_size < 1:
            raise ValueError(f"Block size must be at least 1, got {new_size}")
        with self._lock:
            pool = self._pool(pool_id)
            logger.info("Pool '%s': block size %d -> %d", pool.name, pool.block_size, new_size)
            pool.block_size = new_size

    def get_time_limit(self, pool_id: int, mode: TimeMode) -> int:
        """Last operation index, or last wall-clock tick in realtime mode."""
        with self._lock:
            events = self._pool(pool_id).events
            if not events:
                return 0
            if mode is TimeMode.HISTORICAL:
                return len(events) - 1
            return max(r.event.real_timestamp for r in events)

    def get_snapshot(
        self,
        pool_id: int,
        timestamp: int,
        mode: TimeMode,
        truncate_limit: int,
    ) -> Tuple[int, List[BlockRecord]]:
        with self._lock:
            pool = self._pool(pool_id)
            resolved, applied = self._events_until(pool, timestamp, mode)
            blocks = self._paint(pool, applied)
        if truncate_limit > 0:
            blocks = blocks[:truncate_limit]
        logger.debug("Snapshot of '%s' @ %d (%s): %d blocks", pool.name, resolved, mode.value, len(blocks))
        return resolved, blocks

    def query_block_history(
        self,
        pool_id: int,
        tile_address: int,
        timestamp: int,
        mode: TimeMode,
    ) -> List[MemoryEventRecord]:
        with self._lock:
            pool = self._pool(pool_id)
            _, applied = self._events_until(pool, timestamp, mode)
            block_end = tile_address + pool.block_size
        updates = [
            r for r in applied
            if r.event.address < block_end and r.event.address + r.event.size > tile_address
        ]
        updates.sort(key=lambda r: r.event.timestamp)
        logger.debug("History of %s in '%s': %d updates", hex(tile_address), pool.name, len(updates))
        return updates

    def _pool(self, pool_id: int) -> MemoryPool:
        if not 0 <= pool_id < len(self._pools):
            raise ProviderError(f"Pool {pool_id} not found ({len(self._pools)} pools)")
        return self._pools[pool_id]

    @staticmethod
    def _events_until(
        pool: MemoryPool,
        timestamp: int,
        mode: TimeMode,
    ) -> Tuple[int, List[MemoryEventRecord]]:
        """Events in effect at ``timestamp`` and the timestamp actually used."""
        if mode is TimeMode.HISTORICAL:
            if not pool.events:
                return 0, []
            resolved = max(0, min(timestamp, len(pool.events) - 1))
            return resolved, pool.events[:resolved + 1]
        return timestamp, [r for r in pool.events if r.event.real_timestamp <= timestamp]

    @staticmethod
    def _paint(pool: MemoryPool, applied: List[MemoryEventRecord]) -> List[BlockRecord]:
        """Paint the applied events onto the pool's block grid."""
        lo, hi = pool.span()
        size = pool.block_size
        count = (hi - lo) // size

        live: Dict[int, Tuple[int, MemoryEvent]] = {}
        last_owner: Dict[int, int] = {}
        for alloc_id, record in enumerate(applied):
            e = record.event
            if record.is_allocation:
                live[e.address] = (alloc_id, e)
                for b in _blocks_covering(e, lo, size):
                    last_owner[b] = alloc_id
            else:
                live.pop(e.address, None)

        covered = [0] * count
        owner: Dict[int, int] = {}
        for address in sorted(live):
            alloc_id, e = live[address]
            for b in _blocks_covering(e, lo, size):
                start = lo + b * size
                covered[b] += min(start + size, e.address + e.size) - max(start, e.address)
                owner.setdefault(b, alloc_id)

        blocks: List[BlockRecord] = []
        for b in range(count):
            if b not in last_owner:
                status, block_id = 0, -1
            elif covered[b] == 0:
                status, block_id = 1, last_owner[b]
            elif covered[b] < size:
                status, block_id = 2, owner[b]
            else:
                status, block_id = 3, owner[b]
            blocks.append(BlockRecord(block_id=block_id, status_code=status, tile_address=lo + b * size))
        return blocks


def _blocks_covering(e: MemoryEvent, lo: int, size: int) -> range:
    first = (e.address - lo) // size
    last = (e.address + e.size - 1 - lo) // size
    return range(first, last + 1)

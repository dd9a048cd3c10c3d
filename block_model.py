"""
block_model.py

Data model for the block map viewer.

This module provides:
- Viewer configuration (tile geometry, query limits, display padding)
- Block records and positional memory snapshots
- Selection state and derived grid layout
- Allocation/free event records as an explicit tagged union
- Console rendering of snapshots and history entries

Example:
    >>> from block_model import *
    >>>
    >>> snapshot = MemorySnapshot(
    ...     captured_at=3,
    ...     blocks=(
    ...         BlockRecord(block_id=0, status_code=3, tile_address=0x1000),
    ...         BlockRecord(block_id=-1, status_code=0, tile_address=0x1020),
    ...     ),
    ... )
    >>> print(snapshot.to_console(columns=16))
    >>>
    >>> event = MemoryEventRecord.allocation(0x1000, 32, "main:12", 0, 1500)
    >>> print(event.to_console())
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union


# ============================================================
#  Viewer configuration
# ============================================================

@dataclass
class ViewerConfig:
    """Configuration for the block map viewer.

    Attributes:
        tile_size: Initial edge length of one grid tile in pixels
        tile_step: Pixels added or removed by the tile size buttons
        min_tile_size: Smallest tile edge allowed
        block_size: Initial number of bytes represented by one block
        truncate_limit: Maximum number of blocks requested per snapshot
        grid_width_ratio: Share of the viewport width used by the grid
        left_padding: Bytes of allocator padding before each allocation
        right_padding: Bytes of allocator padding after each allocation
        fetch_workers: Worker threads used for provider queries
        poll_interval_ms: How often the UI drains completed fetches
        window_title: Main window title
        window_geometry: Initial main window geometry
    """
    tile_size: int = 4
    tile_step: int = 4
    min_tile_size: int = 4
    block_size: int = 32
    truncate_limit: int = 256
    grid_width_ratio: float = 0.5
    left_padding: int = 0
    right_padding: int = 0
    fetch_workers: int = 2
    poll_interval_ms: int = 50
    window_title: str = "Block Map Viewer"
    window_geometry: str = "1400x850"


# Default configuration instance
viewer_config = ViewerConfig()


# ============================================================
#  Enumerations
# ============================================================

class StatusBucket(Enum):
    """Coarse status category a raw status code maps to."""
    UNUSED = 0
    FREED = 1
    PARTIAL = 2
    ALLOCATED = 3

    @classmethod
    def from_code(cls, status_code: int) -> StatusBucket:
        """Map a raw status code to its bucket (anything above 2 is allocated)."""
        if status_code <= 0:
            return cls.UNUSED
        if status_code == 1:
            return cls.FREED
        if status_code == 2:
            return cls.PARTIAL
        return cls.ALLOCATED


class TileCategory(Enum):
    """Render category of a single tile."""
    UNUSED = "unused"
    FREED = "freed"
    PARTIAL = "partial"
    ALLOCATED = "allocated"
    SELECTED = "selected"
    SAME_BLOCK_HIGHLIGHT = "same_block"


class TimeMode(Enum):
    """Time semantics of a query timestamp."""
    REALTIME = "realtime"
    HISTORICAL = "historical"

    def toggled(self) -> TimeMode:
        return TimeMode.HISTORICAL if self is TimeMode.REALTIME else TimeMode.REALTIME

    @property
    def label(self) -> str:
        """Caption of the mode toggle button."""
        return "TIME" if self is TimeMode.REALTIME else "OP #"


class EventKind(Enum):
    """Discriminant of a memory event record."""
    ALLOCATION = "Allocation"
    FREE = "Free"


class EventIntegrityError(ValueError):
    """Raised when an event record does not carry exactly one variant."""


# ============================================================
#  Blocks and snapshots
# ============================================================

_CONSOLE_GLYPHS: Dict[TileCategory, str] = {
    TileCategory.UNUSED: ".",
    TileCategory.FREED: "f",
    TileCategory.PARTIAL: "p",
    TileCategory.ALLOCATED: "#",
    TileCategory.SELECTED: "@",
    TileCategory.SAME_BLOCK_HIGHLIGHT: "+",
}


@dataclass(frozen=True)
class BlockRecord:
    """One positional entry of a snapshot.

    Attributes:
        block_id: Durable identity of the allocation occupying this block
        status_code: Raw status (0 unused, 1 freed, 2 partial, >2 allocated)
        tile_address: Address used to look up this block's history
    """
    block_id: int
    status_code: int
    tile_address: int

    @property
    def bucket(self) -> StatusBucket:
        return StatusBucket.from_code(self.status_code)

    @classmethod
    def from_tuple(cls, raw: Tuple[int, int, int]) -> BlockRecord:
        """Build a record from the provider's ``(id, status, address)`` triple."""
        block_id, status_code, tile_address = raw
        return cls(block_id=block_id, status_code=status_code, tile_address=tile_address)


@dataclass(frozen=True)
class MemorySnapshot:
    """Full positional listing of block records as of one timestamp.

    The order of ``blocks`` is the raster order and is never changed.

    Attributes:
        captured_at: Logical timestamp the provider resolved the query to
        blocks: Ordered block records
    """
    captured_at: int
    blocks: Tuple[BlockRecord, ...] = ()

    def __len__(self) -> int:
        return len(self.blocks)

    def is_valid_index(self, index: Optional[int]) -> bool:
        """Whether ``index`` addresses a block of this snapshot."""
        return index is not None and 0 <= index < len(self.blocks)

    def find_block(self, block_id: int) -> Optional[int]:
        """Position of the first block carrying ``block_id``, if any."""
        for position, record in enumerate(self.blocks):
            if record.block_id == block_id:
                return position
        return None

    @classmethod
    def from_provider(cls, result: Tuple[int, List[Any]]) -> MemorySnapshot:
        """Build a snapshot from a ``get_snapshot`` response.

        Entries may already be ``BlockRecord`` instances or raw triples.
        """
        captured_at, entries = result
        blocks = tuple(
            entry if isinstance(entry, BlockRecord) else BlockRecord.from_tuple(entry)
            for entry in entries
        )
        return cls(captured_at=captured_at, blocks=blocks)

    def to_console(
        self,
        columns: int = 32,
        categories: Optional[List[TileCategory]] = None,
    ) -> str:
        """Render the snapshot as a character map.

        Args:
            columns: Tiles per row
            categories: Pre-classified categories (defaults to plain buckets)
        """
        lines: List[str] = []
        lines.append(f"=== Block map @ t={self.captured_at} ({len(self.blocks)} blocks) ===")
        if not self.blocks:
            lines.append("(empty snapshot)")
            return "\n".join(lines)

        if categories is None:
            categories = [_category_for_bucket(r.bucket) for r in self.blocks]

        columns = max(1, columns)
        for start in range(0, len(self.blocks), columns):
            row = "".join(_CONSOLE_GLYPHS[c] for c in categories[start:start + columns])
            lines.append(f"{hex(self.blocks[start].tile_address):>12} | {row}")
        return "\n".join(lines)

    def print(self, columns: int = 32) -> None:
        """Print the snapshot to console."""
        print(self.to_console(columns=columns))


def _category_for_bucket(bucket: StatusBucket) -> TileCategory:
    return TileCategory[bucket.name]


# ============================================================
#  Selection and layout
# ============================================================

@dataclass(frozen=True)
class SelectionState:
    """The operator's logical selection.

    Attributes:
        selected_block_id: Durable identity of the selected block
        selected_tile_index: Raster position cache, None when nothing is selected
        status_bucket_at_selection: Status code of the selected block when last seen
        lookup_address: Tile address recorded by the last click, keys history queries
    """
    selected_block_id: int = 0
    selected_tile_index: Optional[int] = 0
    status_bucket_at_selection: int = 0
    lookup_address: int = 0

    @property
    def has_selection(self) -> bool:
        return self.selected_tile_index is not None


@dataclass(frozen=True)
class GridLayout:
    """Raster geometry derived for one paint.

    Attributes:
        tile_size: Edge length of a tile in pixels
        columns: Tiles per row
        rows: Number of rows
        surface_width: Drawing surface width in pixels
        surface_height: Drawing surface height in pixels
    """
    tile_size: int
    columns: int
    rows: int
    surface_width: float
    surface_height: int


# ============================================================
#  Memory events (tagged union)
# ============================================================

@dataclass(frozen=True)
class MemoryEvent:
    """Payload shared by both event variants.

    Attributes:
        address: Start address of the allocation
        size: Size in bytes (padding included)
        callstack: Raw callstack text captured with the operation
        timestamp: Logical timestamp (operation index)
        real_timestamp: Wall-clock time of the operation (tick count or backend time string)
    """
    address: int
    size: int
    callstack: str
    timestamp: int
    real_timestamp: Union[int, str]

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> MemoryEvent:
        return cls(
            address=int(data["address"]),
            size=int(data["size"]),
            callstack=str(data.get("callstack", "")),
            timestamp=int(data["timestamp"]),
            real_timestamp=data.get("real_timestamp", 0),
        )


@dataclass(frozen=True)
class MemoryEventRecord:
    """An allocation or a free, never both.

    Attributes:
        kind: Which variant this record is
        event: The variant's payload
    """
    kind: EventKind
    event: MemoryEvent

    def __post_init__(self) -> None:
        if not isinstance(self.kind, EventKind):
            raise EventIntegrityError(f"Unknown event variant: {self.kind!r}")
        if not isinstance(self.event, MemoryEvent):
            raise EventIntegrityError("Event record has no payload")

    @classmethod
    def allocation(
        cls,
        address: int,
        size: int,
        callstack: str,
        timestamp: int,
        real_timestamp: Union[int, str] = 0,
    ) -> MemoryEventRecord:
        return cls(EventKind.ALLOCATION, MemoryEvent(address, size, callstack, timestamp, real_timestamp))

    @classmethod
    def free(
        cls,
        address: int,
        size: int,
        callstack: str,
        timestamp: int,
        real_timestamp: Union[int, str] = 0,
    ) -> MemoryEventRecord:
        return cls(EventKind.FREE, MemoryEvent(address, size, callstack, timestamp, real_timestamp))

    @classmethod
    def from_wire(cls, raw: Mapping[str, Any]) -> MemoryEventRecord:
        """Parse the ``{"Allocation": {...}}`` / ``{"Free": {...}}`` wire shape.

        Raises:
            EventIntegrityError: If zero or both variants are populated
        """
        kind = classify_event(raw)
        return cls(kind, MemoryEvent.from_mapping(raw[kind.value]))

    @property
    def is_allocation(self) -> bool:
        return self.kind is EventKind.ALLOCATION

    def to_wire(self) -> Dict[str, Dict[str, Any]]:
        e = self.event
        return {
            self.kind.value: {
                "address": e.address,
                "size": e.size,
                "callstack": e.callstack,
                "timestamp": e.timestamp,
                "real_timestamp": e.real_timestamp,
            }
        }

    def to_console(self, left_padding: int = 0, right_padding: int = 0) -> str:
        """Render this record as a detail entry.

        Padding is removed so the operator sees the requested allocation,
        not the allocator's padded one.
        """
        e = self.event
        lines = [
            f"Type: {self.kind.value}",
            f"Start: {hex(e.address + left_padding)}",
            f"Size: {e.size - right_padding}",
            f"Timestamp: {e.timestamp} ({e.real_timestamp})",
            "Callstack:",
        ]
        lines.extend(f"  {line}" for line in (e.callstack.splitlines() or ["<none>"]))
        return "\n".join(lines)


@dataclass(frozen=True)
class MalformedEventRecord:
    """Placeholder for a provider record that failed the one-variant check.

    Attributes:
        raw: The record as delivered
        reason: Why it was rejected
    """
    raw: Any
    reason: str

    def to_console(self, left_padding: int = 0, right_padding: int = 0) -> str:
        return f"Type: Unknown\n  ({self.reason})"


def classify_event(raw: Any) -> EventKind:
    """Determine which variant a record carries.

    Accepts a ``MemoryEventRecord`` or a wire mapping.

    Raises:
        EventIntegrityError: If zero or both variants are populated
    """
    if isinstance(raw, MemoryEventRecord):
        return raw.kind
    if not isinstance(raw, Mapping):
        raise EventIntegrityError(f"Event record is not a mapping: {type(raw).__name__}")

    present = [kind for kind in EventKind if raw.get(kind.value) is not None]
    if len(present) != 1:
        names = ", ".join(k.value for k in present) or "none"
        raise EventIntegrityError(
            f"Event record must carry exactly one of Allocation/Free (found: {names})"
        )
    return present[0]

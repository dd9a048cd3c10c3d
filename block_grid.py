"""
block_grid.py

Raster geometry, tile classification and hit testing for the block map.

The grid occupies a fixed share of the viewport width (half by default) and
places tiles row-major in snapshot order, wrapping at the column count.

Usage:
    from block_grid import compute_layout, classify_tiles, hit_test

    layout = compute_layout(len(snapshot), viewport_width=800, tile_size=4)
    categories = classify_tiles(snapshot, selection)
    index = hit_test(23, 9, layout, len(snapshot))
"""

from __future__ import annotations

import logging
import math
from typing import Iterator, List, Optional, Tuple

from block_model import (
    BlockRecord,
    GridLayout,
    MemorySnapshot,
    SelectionState,
    StatusBucket,
    TileCategory,
    viewer_config,
)

logger = logging.getLogger(__name__)


# ============================================================
# Layout
# ============================================================

def compute_layout(
    block_count: int,
    viewport_width: float,
    tile_size: int,
    width_ratio: Optional[float] = None,
) -> GridLayout:
    """Derive the raster geometry for one paint.

    Args:
        block_count: Number of blocks in the snapshot
        viewport_width: Width of the window the grid lives in
        tile_size: Edge length of one tile in pixels
        width_ratio: Share of the viewport used by the grid (defaults to config)

    A viewport narrower than one tile is widened to one tile, so the layout
    always has at least one column.

    Returns:
        The layout; an empty snapshot yields zero rows

    Raises:
        ValueError: If tile_size is not positive
    """
    if tile_size <= 0:
        raise ValueError(f"tile_size must be positive, got {tile_size}")
    ratio = viewer_config.grid_width_ratio if width_ratio is None else width_ratio

    # Never narrower than one tile, so there is always a column to wrap at.
    surface_width = max(viewport_width * ratio, tile_size)
    columns = int(surface_width // tile_size)

    if block_count <= 0:
        return GridLayout(tile_size, columns, 0, surface_width, 0)

    rows = math.ceil(block_count * tile_size / surface_width)
    return GridLayout(
        tile_size=tile_size,
        columns=columns,
        rows=rows,
        surface_width=surface_width,
        surface_height=rows * tile_size,
    )


def tile_origin(index: int, layout: GridLayout) -> Tuple[int, int]:
    """Top-left pixel of the tile at raster ``index``."""
    row, col = divmod(index, layout.columns)
    return col * layout.tile_size, row * layout.tile_size


def raster_positions(
    snapshot: MemorySnapshot,
    layout: GridLayout,
) -> Iterator[Tuple[int, int, int, BlockRecord]]:
    """Yield ``(index, x, y, record)`` for every block, in snapshot order."""
    for index, record in enumerate(snapshot.blocks):
        x, y = tile_origin(index, layout)
        yield index, x, y, record


# ============================================================
# Classification
# ============================================================

def buckets_match(status_code: int, bucket_at_selection: int) -> bool:
    """Compare a tile's status with the selection's.

    An allocated-family selection (partial or full) matches any
    allocated-family tile. Unused and freed selections need an exact match.
    """
    if bucket_at_selection > 1:
        return status_code > 1
    return status_code == bucket_at_selection


def classify_status(status_code: int) -> TileCategory:
    """Plain category of a status code, ignoring selection."""
    return TileCategory[StatusBucket.from_code(status_code).name]


def classify_tile(index: int, record: BlockRecord, selection: SelectionState) -> TileCategory:
    """Render category of the tile at ``index``."""
    if index == selection.selected_tile_index:
        return TileCategory.SELECTED
    if (
        record.block_id == selection.selected_block_id
        and buckets_match(record.status_code, selection.status_bucket_at_selection)
        and record.status_code > 0
    ):
        return TileCategory.SAME_BLOCK_HIGHLIGHT
    return classify_status(record.status_code)


def classify_tiles(snapshot: MemorySnapshot, selection: SelectionState) -> List[TileCategory]:
    """Categories for every tile, in raster order."""
    return [
        classify_tile(index, record, selection)
        for index, record in enumerate(snapshot.blocks)
    ]


# ============================================================
# Hit testing
# ============================================================

def hit_test(x: float, y: float, layout: GridLayout, block_count: int) -> Optional[int]:
    """Map a pointer position on the drawing surface to a raster index.

    Returns:
        The block index, or None when the pointer is outside the grid
    """
    if x < 0 or y < 0:
        return None
    col = int(x // layout.tile_size)
    row = int(y // layout.tile_size)
    if col >= layout.columns:
        return None

    index = row * layout.columns + col
    if index >= block_count:
        logger.debug("Click at (%s, %s) -> index %d is outside %d blocks", x, y, index, block_count)
        return None

    logger.debug("Block clicked at row: %d, col: %d, index: %d", row, col, index)
    return index

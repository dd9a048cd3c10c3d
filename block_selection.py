"""
block_selection.py

Selection state machine for the block map.

A selection has a durable identity (the block id) and a cached position (the
tile index) that is only valid against the snapshot it was computed from.
Every new snapshot is reconciled exactly once, before it is painted; clicks
bypass reconciliation because the clicked tile is valid by construction.

Usage:
    from block_selection import SelectionStateMachine

    machine = SelectionStateMachine()
    machine.on_snapshot(snapshot)       # reconcile, then paint
    machine.on_click(index, snapshot)   # after a successful hit test
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, List, Optional

from block_model import MemorySnapshot, SelectionState

logger = logging.getLogger(__name__)

SelectionListener = Callable[[SelectionState], None]


def reconcile_selection(selection: SelectionState, snapshot: MemorySnapshot) -> SelectionState:
    """Re-anchor a selection against a new snapshot.

    Tries, in order: the cached position, the first block with the same id,
    then the first block of the snapshot. An empty snapshot clears the
    selection. Applying it twice gives the same result as applying it once.
    """
    blocks = snapshot.blocks

    if snapshot.is_valid_index(selection.selected_tile_index):
        record = blocks[selection.selected_tile_index]
        return replace(selection, status_bucket_at_selection=record.status_code)

    position = snapshot.find_block(selection.selected_block_id)
    if position is not None:
        return replace(
            selection,
            selected_tile_index=position,
            status_bucket_at_selection=blocks[position].status_code,
        )

    if not blocks:
        return replace(selection, selected_tile_index=None)

    first = blocks[0]
    return replace(
        selection,
        selected_block_id=first.block_id,
        selected_tile_index=0,
        status_bucket_at_selection=first.status_code,
    )


def select_tile(selection: SelectionState, snapshot: MemorySnapshot, index: int) -> SelectionState:
    """Selection after a click on the tile at ``index``.

    Raises:
        IndexError: If ``index`` is not a block of ``snapshot``
    """
    if not snapshot.is_valid_index(index):
        raise IndexError(f"Tile index {index} outside snapshot of {len(snapshot)} blocks")
    record = snapshot.blocks[index]
    return SelectionState(
        selected_block_id=record.block_id,
        selected_tile_index=index,
        status_bucket_at_selection=record.status_code,
        lookup_address=record.tile_address,
    )


class SelectionStateMachine:
    """Owns the selection and applies one transition per event."""

    def __init__(self, initial: Optional[SelectionState] = None):
        self.state = initial if initial is not None else SelectionState()
        self._listeners: List[SelectionListener] = []

    def subscribe(self, listener: SelectionListener) -> None:
        """Call ``listener`` with the new state whenever it changes."""
        self._listeners.append(listener)

    def on_snapshot(self, snapshot: MemorySnapshot) -> SelectionState:
        """Reconcile against a freshly delivered snapshot."""
        new_state = reconcile_selection(self.state, snapshot)
        if new_state.selected_tile_index != self.state.selected_tile_index:
            logger.debug(
                "Selection moved from tile %s to %s (block %s)",
                self.state.selected_tile_index,
                new_state.selected_tile_index,
                new_state.selected_block_id,
            )
        self._commit(new_state)
        return new_state

    def on_click(self, index: int, snapshot: MemorySnapshot) -> SelectionState:
        """Select the tile at ``index`` of the snapshot currently painted."""
        new_state = select_tile(self.state, snapshot, index)
        logger.info(
            "Selected block %s at tile %d (lookup %s)",
            new_state.selected_block_id,
            index,
            hex(new_state.lookup_address),
        )
        self._commit(new_state)
        return new_state

    def _commit(self, new_state: SelectionState) -> None:
        changed = new_state != self.state
        self.state = new_state
        if changed:
            for listener in self._listeners:
                listener(new_state)

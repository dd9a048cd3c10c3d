"""
example_usage.py

Console walkthrough of the block map viewer.

Records a small trace, then drives a BlockMapSession synchronously: painting
the map at several points in time, selecting a block, following it across
snapshots and printing its history.
"""

from block_grid import tile_origin
from block_history import InlineExecutor
from block_logging import setup_logger
from block_model import MemoryEventRecord, viewer_config
from block_provider import TraceBlockProvider, TraceBuilder
from block_viewer import BlockMapSession


def show(session: BlockMapSession) -> None:
    layout = session.layout()
    print(session.describe())
    print(session.snapshot.to_console(columns=layout.columns, categories=session.tiles()))
    print()


def main():
    """Run the console example."""
    setup_logger(level="WARNING")

    print("=" * 70)
    print("Block Map Viewer - Console Example")
    print("=" * 70)
    print()

    # Configure display
    viewer_config.left_padding = 0
    viewer_config.right_padding = 0

    builder = TraceBuilder("heap", base_address=0x1000)
    builder, header = builder.malloc(64, "main\nparse_header", ticks=10)
    builder, body = builder.malloc(200, "main\nread_body", ticks=10)
    builder, scratch = builder.malloc(40, "main\ndecode\nscratch", ticks=5)
    builder.free(scratch, "main\ndecode\nscratch", ticks=5)
    builder, table = builder.malloc(96, "main\nbuild_table", ticks=20)
    builder.free(header, "main\ndone_with_header", ticks=5)
    pool = builder.build(block_size=32)

    print("Recorded events:")
    for record in pool.events:
        print(f"  {record.event.timestamp:>2}  {record.kind.value:<10} "
              f"{hex(record.event.address)}  {record.event.size} bytes")
    print()

    session = BlockMapSession(TraceBlockProvider([pool]), executor=InlineExecutor())
    session.resize(64)
    session.toggle_mode()  # operation index
    session.load()

    print("=" * 70)
    print("Scrubbing through operations:")
    print("=" * 70)
    for ts in (1, 3, 5):
        session.scrub(ts)
        show(session)

    print("=" * 70)
    print("Selecting the block at tile 3:")
    print("=" * 70)
    x, y = tile_origin(3, session.layout())
    session.click(x + 1, y + 1)
    state = session.selection.state
    print(f"Selected block {state.selected_block_id} at tile {state.selected_tile_index}, "
          f"lookup address {hex(state.lookup_address)}")
    print()
    print(session.history.format_entries())
    print()

    print("=" * 70)
    print("Growing blocks keeps the selection on the same allocation:")
    print("=" * 70)
    session.grow_blocks()
    show(session)
    state = session.selection.state
    print(f"Selected block {state.selected_block_id} now at tile {state.selected_tile_index}")
    print()

    print("=" * 70)
    print("Wire format of one history entry:")
    print("=" * 70)
    wire = pool.events[0].to_wire()
    print(wire)
    print(MemoryEventRecord.from_wire(wire).to_console())
    print()

    session.shutdown()
    print("Example complete!")


if __name__ == "__main__":
    main()

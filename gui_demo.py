"""
gui_demo.py

Demonstration of the Block Map Viewer GUI over a synthetic trace.

This script records two memory pools, a general heap building and tearing down
a linked list, and a scratch arena with bursty short-lived allocations, and
displays them in the GUI.
"""

from typing import List

from block_gui import visualize_trace
from block_logging import setup_logger
from block_provider import MemoryPool, TraceBlockProvider, TraceBuilder


def create_heap_pool() -> MemoryPool:
    """A linked list pushed, partially popped and freed, with an I/O buffer."""
    builder = TraceBuilder("heap", base_address=0x10000)

    builder, buffer = builder.malloc(4096, "main\nio_init\nmalloc", ticks=40)
    print(f"  heap: io buffer at {hex(buffer)}")

    nodes = []
    for i in range(24):
        builder, node = builder.malloc(48, f"main\nlist_push #{i}\nmalloc", ticks=5)
        nodes.append(node)
        if i % 6 == 5:
            builder, tmp = builder.malloc(200, "main\nlist_dump\nformat_line", ticks=3)
            builder.free(tmp, "main\nlist_dump\nfree", ticks=3)
    print(f"  heap: pushed {len(nodes)} nodes")

    builder.advance(500)
    for node in nodes[::2]:
        builder.free(node, "main\nlist_remove_even\nfree", ticks=8)

    builder, table = builder.malloc(1024, "main\nbuild_index\ncalloc", ticks=20)
    builder.advance(300)

    for node in nodes[1::2]:
        builder.free(node, "main\nlist_clear\nfree", ticks=2)
    builder.free(table, "main\nbuild_index\nfree")
    builder.free(buffer, "main\nio_shutdown\nfree")
    return builder.build()


def create_arena_pool() -> MemoryPool:
    """Short-lived allocations in bursts, leaving a fragmented arena."""
    builder = TraceBuilder("scratch arena", base_address=0x80000, start_time=100)

    survivors = []
    for burst in range(6):
        live = []
        for i in range(10):
            size = 16 * (1 + (burst + i) % 5)
            builder, addr = builder.malloc(size, f"worker\nburst {burst}\nalloc {i}", ticks=1)
            live.append(addr)
        for i, addr in enumerate(live):
            if i % 3 == 0:
                survivors.append(addr)
            else:
                builder.free(addr, f"worker\nburst {burst}\nrelease", ticks=1)
        builder.advance(250)
    print(f"  arena: {len(survivors)} survivors")

    for addr in survivors:
        builder.free(addr, "worker\nshutdown\nrelease", ticks=4)
    return builder.build()


def create_demo_pools() -> List[MemoryPool]:
    print("Recording pools for visualization...")
    pools = [create_heap_pool(), create_arena_pool()]
    for pool in pools:
        print(f"  {pool.name}: {len(pool.events)} events")
    return pools


def main():
    """Run the GUI demo."""
    setup_logger()

    print("=" * 70)
    print("Block Map Viewer GUI Demo")
    print("=" * 70)
    print()
    print("Controls:")
    print("  - Click a tile to select its block and list its history")
    print("  - Drag the slider to move through time")
    print("  - TIME / OP # switches between wall-clock and operation index")
    print("  - Block +/- changes the bytes per block, Tile +/- the tile size")
    print("  - Pick another pool from the pool selector")
    print()

    pools = create_demo_pools()

    print()
    print("=" * 70)
    print("Launching GUI...")
    print("=" * 70)
    print()

    visualize_trace(TraceBlockProvider(pools))


if __name__ == "__main__":
    main()

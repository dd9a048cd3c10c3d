"""
conftest.py

Shared fixtures for the block map viewer tests.
"""

from concurrent.futures import Executor, Future
from typing import Any, Callable, List, Tuple

import pytest

from block_provider import MemoryPool, TraceBuilder


class ManualExecutor(Executor):
    """Executor that only runs submitted calls when a test says so.

    Lets tests complete fetches in any order to simulate late responses.
    """

    def __init__(self):
        self.pending: List[Tuple[Future, Callable[..., Any], tuple, dict]] = []

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run(self, index: int = 0) -> Future:
        """Run the pending call at ``index`` and resolve its future."""
        future, fn, args, kwargs = self.pending.pop(index)
        try:
            result = fn(*args, **kwargs)
        except Exception as e:
            future.set_exception(e)
        else:
            future.set_result(result)
        return future

    def run_all(self) -> None:
        """Run pending calls in submission order, including ones they submit."""
        while self.pending:
            self.run(0)


@pytest.fixture
def manual_executor():
    return ManualExecutor()


@pytest.fixture
def small_pool() -> MemoryPool:
    """Three operations over three 32-byte blocks.

    op 0: 64 bytes at 0x1000 (blocks 0 and 1), wall clock 0
    op 1: 16 bytes at 0x1040 (half of block 2), wall clock 1
    op 2: free of 0x1000, wall clock 102
    """
    builder = TraceBuilder("heap", base_address=0x1000)
    builder, first = builder.malloc(64, "main\nalloc_first")
    builder, _second = builder.malloc(16, "main\nalloc_second")
    builder.advance(100).free(first, "main\nfree_first")
    return builder.build(block_size=32)


@pytest.fixture
def arena_pool() -> MemoryPool:
    builder = TraceBuilder("arena", base_address=0x8000, start_time=10)
    builder, a = builder.malloc(32, "worker")
    builder, b = builder.malloc(32, "worker")
    builder.free(a, "worker")
    return builder.build(block_size=32)

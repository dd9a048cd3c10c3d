"""
block_logging.py

Console logging setup for the block map viewer.

Modules log through ``logging.getLogger(__name__)``; demos and front ends call
``setup_logger()`` once to get output on stdout. The default level comes from
the ``BLOCKMAP_LOG_LEVEL`` environment variable.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional, Union

_DEFAULT_LEVEL = os.getenv("BLOCKMAP_LOG_LEVEL", "INFO").upper()


def setup_logger(name: Optional[str] = None, level: Union[str, int, None] = None) -> logging.Logger:
    """Attach a stdout handler to ``name`` (the root logger when None).

    Calling it again for a logger that already has handlers is a no-op.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    resolved_level = level if level is not None else _DEFAULT_LEVEL
    logger.setLevel(resolved_level)

    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False
    return logger

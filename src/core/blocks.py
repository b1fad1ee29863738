# Copyright 2023 - Compute Heavy Industries Incorporated
# This work is released, distributed, and licensed under AGPLv3.

BLOCK_SIZE = 4096
"""Default size in bytes of a buffered block."""

def block_index(offset: int, block_size: int = BLOCK_SIZE) -> int:
    """Index of the block containing ``offset``. ``-1`` maps to ``-1``."""
    return offset // block_size

def block_offset(index: int, block_size: int = BLOCK_SIZE) -> int:
    """Stream offset of the first byte of block ``index``."""
    return index * block_size

def valid_length(index: int, length: int, block_size: int = BLOCK_SIZE) -> int:
    """Number of bytes of block ``index`` that lie inside a stream of
    ``length`` bytes. Zero when the block starts at or past the end."""
    remaining = length - block_offset(index, block_size)
    return max(0, min(block_size, remaining))

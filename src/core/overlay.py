# Copyright 2023 - Compute Heavy Industries Incorporated
# This work is released, distributed, and licensed under AGPLv3.

import typing
import logging

from defercommit.core import blocks

logger = logging.getLogger(__name__)

class Overlay:
    """Sparse in-memory store of pending blocks keyed by block index.

    Holds exactly the blocks written since the last commit. Iteration is in
    ascending block index order so that flushing is sequential and
    deterministic."""
    def __init__(self, block_size: int = blocks.BLOCK_SIZE):
        if block_size <= 0:
            raise ValueError("block size must be a positive integer")

        self.block_size: int = block_size
        """Size in bytes of every stored block."""
        self.blocks: dict[int, bytearray] = {}
        """Pending blocks by block index."""
        self._last: int = -1

    def __len__(self) -> int:
        return len(self.blocks)

    def __contains__(self, index: int) -> bool:
        return index in self.blocks

    def __iter__(self) -> typing.Iterator[tuple[int, bytearray]]:
        for index in sorted(self.blocks):
            yield index, self.blocks[index]

    def get(self, index: int) -> bytearray | None:
        """Return the pending block at ``index`` or None."""
        return self.blocks.get(index)

    def last_index(self) -> int:
        """Highest overlaid block index, ``-1`` when empty."""
        return self._last

    def materialize(self, index: int,
        loader: typing.Callable[[int, bytearray], None]) -> bytearray:
        """Return the block at ``index``, creating it first if needed.

        A new block starts zero-filled and is handed to ``loader`` together
        with its index so the current content can be copied in."""
        if index < 0:
            raise ValueError("block index must be a non-negative integer")

        block = self.blocks.get(index)
        if block is not None:
            return block

        block = bytearray(self.block_size)
        loader(index, block)
        self.blocks[index] = block
        self._last = max(self._last, index)
        return block

    def clear(self):
        """Drop every pending block."""
        self.blocks.clear()
        self._last = -1

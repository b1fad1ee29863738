# Copyright 2023 - Compute Heavy Industries Incorporated
# This work is released, distributed, and licensed under AGPLv3.

import pathlib
import logging

from defercommit.core import blocks
from defercommit.core import stream

logger = logging.getLogger(__name__)

def open_path(path: pathlib.Path | str, writable: bool = True,
    create: bool = False,
    block_size: int = blocks.BLOCK_SIZE) -> stream.DeferredCommitStream:
    """Open a file as a :class:`defercommit.core.stream.DeferredCommitStream`.

    The stream owns the file, closing the stream closes it. Opened
    read-only when ``writable`` is False, in which case
    :meth:`~defercommit.core.stream.DeferredCommitStream.commit` raises.

    Args:
        path: File to edit.
        writable: Open the file for update (``r+b``) rather than ``rb``.
        create: Create an empty file first if it does not exist.
        block_size: Passed through to the stream.

    Raises:
        ValueError: Parent directory does not exist.
        FileNotFoundError: ``path`` does not exist and ``create`` is False.
    """
    path = pathlib.Path(path)
    if not path.parent.exists():
        raise ValueError("parent directory does not exist")

    if create and not path.exists():
        path.touch()

    mode = "r+b" if writable else "rb"
    f = path.open(mode=mode)
    try:
        deferred = stream.DeferredCommitStream(
            f, leave_open=False, block_size=block_size)
    except Exception:
        f.close()
        raise

    logger.debug("opened %s (%s)", path, mode)
    return deferred

# Copyright 2023 - Compute Heavy Industries Incorporated
# This work is released, distributed, and licensed under AGPLv3.

import io
import typing
import logging

from defercommit.core import exceptions
from defercommit.core import overlay
from defercommit.core import blocks

logger = logging.getLogger(__name__)

class DeferredCommitStream(io.RawIOBase):
    """Stream that keeps every write in memory until :meth:`commit`.

    Wraps a seekable, readable binary sink (a file opened ``rb``/``r+b``, an
    :class:`io.BytesIO`, ...). Reads see pending writes immediately while the
    sink itself stays untouched until :meth:`commit` is called. Closing the
    stream discards uncommitted writes.

    Args:
        sink: The underlying binary stream. Must be seekable and readable;
            :meth:`commit` additionally requires it to be writable.
        leave_open: Leave ``sink`` open when this stream is closed.
        block_size: Size of the in-memory blocks writes are buffered in.

    Raises:
        ValueError: ``sink`` is None, closed, not seekable or not readable.
    """
    def __init__(self, sink: typing.BinaryIO, leave_open: bool = False,
        block_size: int = blocks.BLOCK_SIZE):
        super().__init__()
        self._sink: typing.BinaryIO | None = None

        if sink is None:
            raise ValueError("sink cannot be None")

        if sink.closed:
            raise ValueError("sink is already closed")

        if not sink.seekable() or not sink.readable():
            raise ValueError("sink must be seekable and readable")

        self._overlay = overlay.Overlay(block_size)
        self._sink = sink
        self._leave_open: bool = leave_open
        self._block_size: int = block_size
        self._sink_length: int = sink.seek(0, io.SEEK_END)
        self._length: int = self._sink_length
        self._position: int = 0

        logger.debug("wrapped sink of %d bytes (block size %d)",
            self._sink_length, self._block_size)

    def _check_disposed(self):
        if self.closed:
            raise exceptions.DisposedError(
                f"{self.__class__.__name__} has been closed")

    ### Capabilities ###
    def readable(self) -> bool:
        return not self.closed

    def seekable(self) -> bool:
        return not self.closed

    def writable(self) -> bool:
        """Always True while open, the sink's writability is only checked
        by :meth:`commit`."""
        return not self.closed

    ### Cursor and length ###
    @property
    def length(self) -> int:
        """Logical length including pending writes."""
        self._check_disposed()
        return self._length

    @property
    def position(self) -> int:
        """Current cursor. Assignment follows :meth:`seek` rules."""
        self._check_disposed()
        return self._position

    @position.setter
    def position(self, value: int):
        self.seek(value, io.SEEK_SET)

    @property
    def pending(self) -> int:
        """Number of blocks waiting to be committed."""
        self._check_disposed()
        return len(self._overlay)

    def tell(self) -> int:
        self._check_disposed()
        return self._position

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        """Move the cursor. Seeking past the end stops at the end, only
        :meth:`write` and :meth:`set_length` grow the stream.

        Raises:
            ValueError: Invalid ``whence``.
            OSError: The resolved offset is negative."""
        self._check_disposed()

        if whence == io.SEEK_CUR:
            offset = self._position + offset
        elif whence == io.SEEK_END:
            offset = self._length + offset
        elif whence != io.SEEK_SET:
            raise ValueError(f"invalid whence ({whence})")

        if offset < 0:
            raise OSError("seek before start of stream")

        self._position = min(self._length, offset)
        return self._position

    def set_length(self, value: int):
        """Enlarge the stream to ``value`` bytes. New bytes read as zero.

        Raises:
            InvalidOperationError: ``value`` is less than the length."""
        self._check_disposed()

        if value < self._length:
            raise exceptions.InvalidOperationError("cannot shrink the stream")

        if value > self._length:
            self._gap_fill(value - 1)
            self._length = value

    def truncate(self, size: int | None = None) -> int:
        """:meth:`set_length` under its :mod:`io` name. Defaults to the
        current position, which is never beyond the end."""
        self._check_disposed()
        if size is None:
            size = self._position

        self.set_length(size)
        return self._length

    def flush(self):
        """Does not commit. Use :meth:`commit` to write to the sink."""
        self._check_disposed()

    ### Block access ###
    def _read_sink(self, index: int, block: memoryview) -> int:
        start = blocks.block_offset(index, self._block_size)
        size = min(len(block), self._sink_length - start)
        if size <= 0:
            return 0

        self._sink.seek(start, io.SEEK_SET)
        total = 0
        while total < size:
            chunk = self._sink.read(size - total)
            if not chunk:
                break
            block[total:total + len(chunk)] = chunk
            total += len(chunk)

        return total

    def _load_block(self, index: int, block: bytearray):
        self._read_sink(index, memoryview(block))

    def _materialize(self, index: int) -> bytearray:
        return self._overlay.materialize(index, self._load_block)

    def _gap_fill(self, end: int):
        """Make sure every block up to the one holding offset ``end`` is
        overlaid, so that extending the stream never leaves holes. The
        sink's final block may be partial and is copied, blocks past the
        sink are zero."""
        target = blocks.block_index(end, self._block_size)
        first = max(self._overlay.last_index() + 1,
            blocks.block_index(self._sink_length - 1, self._block_size), 0)

        for index in range(first, target + 1):
            self._materialize(index)

        if target >= first:
            logger.debug("gap fill materialized blocks %d..%d", first, target)

    ### Read / write ###
    def readinto(self, b) -> int:
        """Read up to ``len(b)`` bytes at the cursor into ``b``.

        Returns:
            The number of bytes read, ``0`` at the end of the stream."""
        self._check_disposed()

        view = memoryview(b).cast("B")
        count = len(view)
        done = 0
        scratch = None

        while done < count and self._position < self._length:
            index = blocks.block_index(self._position, self._block_size)
            in_block = self._position - blocks.block_offset(
                index, self._block_size)
            available = blocks.valid_length(
                index, self._length, self._block_size)

            block = self._overlay.get(index)
            if block is None:
                if scratch is None:
                    scratch = bytearray(self._block_size)
                available = min(available,
                    self._read_sink(index, memoryview(scratch)))
                block = scratch

            n = min(count - done, available - in_block)
            if n <= 0:
                break

            view[done:done + n] = block[in_block:in_block + n]
            done += n
            self._position += n

        return done

    def write(self, b, offset: int = 0, count: int | None = None) -> int:
        """Write ``count`` bytes of ``b`` starting at ``b[offset]`` to the
        cursor. Nothing reaches the sink before :meth:`commit`.

        Returns:
            The number of bytes written.

        Raises:
            ValueError: ``b`` is None or ``offset``/``count`` fall outside
                of ``b``."""
        if b is None:
            raise ValueError("buffer cannot be None")

        view = memoryview(b).cast("B")
        if offset < 0:
            raise ValueError("offset must be a non-negative integer")

        if count is None:
            count = len(view) - offset

        if count < 0:
            raise ValueError("count must be a non-negative integer")

        if len(view) - offset < count:
            raise ValueError("offset and count exceed the buffer")

        self._check_disposed()

        if count == 0:
            return 0

        end = self._position + count
        if end >= self._length:
            self._gap_fill(end - 1)

        copied = 0
        while copied < count:
            index = blocks.block_index(self._position, self._block_size)
            in_block = self._position - blocks.block_offset(
                index, self._block_size)
            n = min(count - copied, self._block_size - in_block)

            block = self._materialize(index)
            block[in_block:in_block + n] = view[
                offset + copied:offset + copied + n]

            copied += n
            self._position += n
            if self._position > self._length:
                self._length = self._position

        return count

    ### Commit ###
    def commit(self):
        """Write every pending block to the sink in ascending order.

        Afterwards the sink holds exactly the logical content and nothing
        is pending.

        Raises:
            InvalidOperationError: The sink is not writable.
            DisposedError: The stream has been closed."""
        self._check_disposed()

        if not self._sink.writable():
            raise exceptions.InvalidOperationError("sink is read-only")

        written = 0
        for index, block in self._overlay:
            size = blocks.valid_length(index, self._length, self._block_size)
            if size == 0:
                continue

            self._sink.seek(
                blocks.block_offset(index, self._block_size), io.SEEK_SET)
            data = memoryview(block)[:size]
            while len(data) > 0:
                n = self._sink.write(data)
                if n is None:
                    raise OSError("sink would block")
                data = data[n:]
            written += 1

        self._sink.flush()
        self._overlay.clear()
        self._sink_length = self._length

        logger.debug("committed %d blocks, sink length %d",
            written, self._sink_length)

    ### Disposal ###
    def close(self):
        """Discard pending writes and close the sink unless it was left
        open. Safe to call more than once."""
        if self.closed:
            return

        super().close()

        # construction failed, nothing is owned
        if self._sink is None:
            return

        if len(self._overlay) > 0:
            logger.debug("discarding %d uncommitted blocks",
                len(self._overlay))
        self._overlay.clear()

        if not self._leave_open:
            self._sink.close()

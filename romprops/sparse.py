"""Sparse / compressed block reader base class.

Container formats such as CISO, WBFS and GCZ store a disc image as a table
of fixed-size blocks. :class:`SparseBlockReader` turns such a container into
a plain seekable :class:`~romprops.stream.ByteStream` over the logical disc.
Subclasses supply one mapping, :meth:`SparseBlockReader.phys_block_addr`,
and optionally override :meth:`SparseBlockReader.read_block` to decompress.
"""

from __future__ import annotations

import copy
import logging
from abc import abstractmethod
from typing import Optional

from .format import is_pow2
from .stream import ByteStream, StreamError

logger = logging.getLogger("romprops")

# Special physical addresses returned by phys_block_addr().
BLOCK_EMPTY = 0          # sparse hole, reads back as zeros
BLOCK_INVALID = -1       # past the end of the mapped address space

MAX_BLOCK_INDEX = 0xFFFFFFFF


class SparseBlockReader(ByteStream):
    """Logical disc view over a block-addressed container.

    The backing stream is duplicated on construction, so the reader has its
    own cursor and the caller keeps ownership of the stream it passed in.
    A reader instance is not thread-safe; use :meth:`dup` per thread.
    """

    def __init__(self, stream: ByteStream, block_size: int = 0, disc_size: int = 0) -> None:
        super().__init__()
        if stream is None or not stream.is_open():
            raise StreamError("backing stream is not open")
        self._file: Optional[ByteStream] = stream.dup()
        self._block_size = 0
        self._disc_size = 0

        # Current-block cache for subclasses that decode whole blocks.
        self._cache_idx = -1
        self._cache_data = b""

        if block_size or disc_size:
            self._set_geometry(block_size, disc_size)

    def _set_geometry(self, block_size: int, disc_size: int) -> bool:
        """Validate and set the block size and logical size. Return success."""
        if not is_pow2(block_size):
            logger.debug("%s: block size %d is not a power of two", type(self).__name__, block_size)
            return False
        if disc_size <= 0:
            logger.debug("%s: invalid logical size %d", type(self).__name__, disc_size)
            return False
        self._block_size = block_size
        self._disc_size = disc_size
        return True

    # ── Public properties ────────────────────────────────────────────────

    @property
    def block_size(self) -> int:
        return self._block_size

    # ── Subclass hooks ───────────────────────────────────────────────────

    @abstractmethod
    def phys_block_addr(self, block_idx: int) -> int:
        """Return the physical address of logical block *block_idx*.

        ``0`` means the block is an empty hole and ``-1`` means the index is
        past the mapped range. Any other value is the byte offset of the
        block's stored data in the backing stream.
        """

    def read_block(self, block_idx: int, pos: int, size: int) -> Optional[bytes]:
        """Read *size* bytes of block *block_idx*, starting at *pos* in the block.

        Returns ``None`` if the block index is invalid. A result shorter than
        *size* means the backing stream ran out or failed.
        """
        if pos < 0 or size < 0 or pos + size > self._block_size:
            return None
        if size == 0:
            return b""

        phys = self.phys_block_addr(block_idx)
        if phys < 0:
            return None
        if phys == BLOCK_EMPTY:
            return bytes(size)
        return self._file.seek_and_read(phys + pos, size)

    # ── ByteStream ───────────────────────────────────────────────────────

    def is_open(self) -> bool:
        return (
            self._file is not None
            and self._file.is_open()
            and self._block_size > 0
            and self._disc_size > 0
        )

    def is_device(self) -> bool:
        return self._file is not None and self._file.is_device()

    def size(self) -> int:
        if not self.is_open():
            return -1
        return self._disc_size

    def read(self, size: int = -1) -> bytes:
        if not self.is_open() or self._pos >= self._disc_size:
            return b""

        remaining = self._disc_size - self._pos
        if 0 <= size < remaining:
            remaining = size

        out = bytearray()
        while remaining > 0:
            block_idx, in_block = divmod(self._pos, self._block_size)
            if block_idx > MAX_BLOCK_INDEX:
                break
            chunk = min(self._block_size - in_block, remaining)
            data = self.read_block(block_idx, in_block, chunk)
            if data is None:
                # End of mapped data.
                break
            out += data
            self._pos += len(data)
            remaining -= len(data)
            if len(data) != chunk:
                logger.debug(
                    "%s: short read in block %d (%d of %d bytes)",
                    type(self).__name__, block_idx, len(data), chunk,
                )
                break
        return bytes(out)

    def dup(self) -> SparseBlockReader:
        if self._file is None:
            raise StreamError("dup of a closed stream")
        other = copy.copy(self)
        other._file = self._file.dup()
        other._cache_idx = -1
        other._cache_data = b""
        return other

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
        self._cache_idx = -1
        self._cache_data = b""

"""Concrete sparse / compressed disc containers.

Each reader validates its header in the constructor. On any header problem
it logs why and stays unopened (``is_open()`` is False) instead of raising,
so callers can probe formats one after another.
"""

from __future__ import annotations

import logging
import struct
import zlib
from typing import Optional

from .format import (
    CISO_BLOCK_SIZE_MAX,
    CISO_BLOCK_SIZE_MIN,
    CISO_HEADER_FMT,
    CISO_HEADER_SIZE,
    CISO_MAGIC,
    GCZ_BLOCK_SIZE_MAX,
    GCZ_BLOCK_SIZE_MIN,
    GCZ_FLAG_UNCOMPRESSED,
    GCZ_HEADER_FMT,
    GCZ_HEADER_SIZE,
    GCZ_MAGIC,
    MAX_GCZ_BLOCKS,
    WBFS_DISC_HEADER_COPY_SIZE,
    WBFS_HEAD_FMT,
    WBFS_HEAD_SIZE,
    WBFS_MAGIC,
    WII_SEC_PER_DISC,
    WII_SEC_SZ_S,
    XDVDFS_BLOCK_SIZE,
    align,
    is_pow2,
)
from .sparse import BLOCK_EMPTY, BLOCK_INVALID, MAX_BLOCK_INDEX, SparseBlockReader
from .stream import ByteStream

logger = logging.getLogger("romprops")


# ── CISO ────────────────────────────────────────────────────────────────────


class CisoReader(SparseBlockReader):
    """GameCube / Wii CISO image: a used-block bitmap followed by the used blocks."""

    def __init__(self, stream: ByteStream) -> None:
        super().__init__(stream)
        self._block_map: list[int] = []

        raw = self._file.seek_and_read(0, CISO_HEADER_SIZE)
        if len(raw) != CISO_HEADER_SIZE or not self.is_supported(raw):
            logger.debug("CISO: bad magic or short header")
            return
        _magic, block_size, table = struct.unpack(CISO_HEADER_FMT, raw)
        if not (is_pow2(block_size) and CISO_BLOCK_SIZE_MIN <= block_size <= CISO_BLOCK_SIZE_MAX):
            logger.debug("CISO: unsupported block size %d", block_size)
            return

        # Logical block -> physical block index, -1 for empty.
        block_map = []
        phys_idx = 0
        max_used = -1
        for i, entry in enumerate(table):
            if entry == 1:
                block_map.append(phys_idx)
                phys_idx += 1
                max_used = i
            elif entry == 0:
                block_map.append(-1)
            else:
                logger.warning("CISO: invalid map entry 0x%02X at block %d", entry, i)
                return
        if max_used < 0:
            logger.debug("CISO: no used blocks")
            return

        self._block_map = block_map[: max_used + 1]
        self._set_geometry(block_size, (max_used + 1) * block_size)

    @staticmethod
    def is_supported(header: bytes) -> bool:
        return len(header) >= 8 and header[:4] == CISO_MAGIC

    def phys_block_addr(self, block_idx: int) -> int:
        if block_idx < 0 or block_idx >= len(self._block_map):
            return BLOCK_INVALID
        phys_idx = self._block_map[block_idx]
        if phys_idx < 0:
            return BLOCK_EMPTY
        return CISO_HEADER_SIZE + phys_idx * self._block_size


# ── WBFS ────────────────────────────────────────────────────────────────────


class WbfsReader(SparseBlockReader):
    """First disc of a WBFS partition image.

    WBFS is the one big-endian container here; its header and block table
    are decoded with ``">"`` formats.
    """

    def __init__(self, stream: ByteStream) -> None:
        super().__init__(stream)
        self._wlba_table: tuple[int, ...] = ()
        self.slot = -1

        head = self._file.seek_and_read(0, WBFS_HEAD_SIZE)
        if not self.is_supported(head):
            logger.debug("WBFS: bad magic or short header")
            return
        _magic, n_hd_sec, hd_sec_sz_s, wbfs_sec_sz_s, _pad = struct.unpack(WBFS_HEAD_FMT, head)
        if not (9 <= hd_sec_sz_s <= 16) or not (WII_SEC_SZ_S <= wbfs_sec_sz_s <= 30):
            logger.debug("WBFS: implausible sector sizes 2^%d / 2^%d", hd_sec_sz_s, wbfs_sec_sz_s)
            return
        if n_hd_sec == 0:
            logger.debug("WBFS: empty partition")
            return

        hd_sec_sz = 1 << hd_sec_sz_s
        wbfs_sec_sz = 1 << wbfs_sec_sz_s
        n_wbfs_sec_per_disc = WII_SEC_PER_DISC >> (wbfs_sec_sz_s - WII_SEC_SZ_S)
        disc_info_sz = align(WBFS_DISC_HEADER_COPY_SIZE + n_wbfs_sec_per_disc * 2, hd_sec_sz)

        # Disc slot table fills the rest of the first HD sector.
        disc_table = self._file.seek_and_read(WBFS_HEAD_SIZE, hd_sec_sz - WBFS_HEAD_SIZE)
        slot = next((i for i, used in enumerate(disc_table) if used), -1)
        if slot < 0:
            logger.debug("WBFS: no disc in any slot")
            return

        info_addr = hd_sec_sz + slot * disc_info_sz
        raw_table = self._file.seek_and_read(
            info_addr + WBFS_DISC_HEADER_COPY_SIZE, n_wbfs_sec_per_disc * 2
        )
        if len(raw_table) != n_wbfs_sec_per_disc * 2:
            logger.warning("WBFS: truncated block table for slot %d", slot)
            return
        wlba_table = struct.unpack(f">{n_wbfs_sec_per_disc}H", raw_table)

        last_used = max((i for i, wlba in enumerate(wlba_table) if wlba), default=-1)
        if last_used < 0:
            logger.debug("WBFS: slot %d has no allocated sectors", slot)
            return

        self.slot = slot
        self._wlba_table = wlba_table
        self._set_geometry(wbfs_sec_sz, (last_used + 1) * wbfs_sec_sz)

    @staticmethod
    def is_supported(header: bytes) -> bool:
        return len(header) >= WBFS_HEAD_SIZE and header[:4] == WBFS_MAGIC

    def phys_block_addr(self, block_idx: int) -> int:
        if block_idx < 0 or block_idx >= len(self._wlba_table):
            return BLOCK_INVALID
        wlba = self._wlba_table[block_idx]
        if wlba == 0:
            return BLOCK_EMPTY
        return wlba * self._block_size


# ── GCZ ─────────────────────────────────────────────────────────────────────


class GczReader(SparseBlockReader):
    """Dolphin GCZ image: individually zlib-compressed blocks."""

    def __init__(self, stream: ByteStream, verify_hashes: bool = True) -> None:
        super().__init__(stream)
        self.verify_hashes = verify_hashes
        self._pointers: tuple[int, ...] = ()
        self._hashes: tuple[int, ...] = ()
        self._data_offset = 0
        self._compressed_size = 0

        raw = self._file.seek_and_read(0, GCZ_HEADER_SIZE)
        if not self.is_supported(raw):
            logger.debug("GCZ: bad magic or short header")
            return
        (
            _magic,
            _sub_type,
            compressed_size,
            data_size,
            block_size,
            num_blocks,
        ) = struct.unpack(GCZ_HEADER_FMT, raw)

        if not (is_pow2(block_size) and GCZ_BLOCK_SIZE_MIN <= block_size <= GCZ_BLOCK_SIZE_MAX):
            logger.debug("GCZ: unsupported block size %d", block_size)
            return
        if num_blocks == 0 or num_blocks > MAX_GCZ_BLOCKS:
            logger.debug("GCZ: unsupported block count %d", num_blocks)
            return
        if data_size == 0 or data_size > num_blocks * block_size:
            logger.debug("GCZ: data size %d does not fit %d blocks", data_size, num_blocks)
            return

        tables = self._file.seek_and_read(GCZ_HEADER_SIZE, num_blocks * 12)
        if len(tables) != num_blocks * 12:
            logger.warning("GCZ: truncated block tables")
            return
        self._pointers = struct.unpack(f"<{num_blocks}Q", tables[: num_blocks * 8])
        self._hashes = struct.unpack(f"<{num_blocks}I", tables[num_blocks * 8 :])
        self._data_offset = GCZ_HEADER_SIZE + num_blocks * 12
        self._compressed_size = compressed_size
        self._set_geometry(block_size, data_size)

    @staticmethod
    def is_supported(header: bytes) -> bool:
        return len(header) >= 4 and struct.unpack_from("<I", header)[0] == GCZ_MAGIC

    def phys_block_addr(self, block_idx: int) -> int:
        if block_idx < 0 or block_idx >= len(self._pointers):
            return BLOCK_INVALID
        return self._data_offset + (self._pointers[block_idx] & ~GCZ_FLAG_UNCOMPRESSED)

    def _stored_size(self, block_idx: int) -> int:
        start = self._pointers[block_idx] & ~GCZ_FLAG_UNCOMPRESSED
        if block_idx + 1 < len(self._pointers):
            end = self._pointers[block_idx + 1] & ~GCZ_FLAG_UNCOMPRESSED
        else:
            end = self._compressed_size
        return end - start

    def _load_block(self, block_idx: int) -> Optional[bytes]:
        """Read, verify and decompress one block. ``None`` on any failure."""
        stored_size = self._stored_size(block_idx)
        if stored_size <= 0 or stored_size > self._block_size:
            logger.warning("GCZ: block %d has invalid stored size %d", block_idx, stored_size)
            return None

        stored = self._file.seek_and_read(self.phys_block_addr(block_idx), stored_size)
        if len(stored) != stored_size:
            logger.warning("GCZ: block %d truncated", block_idx)
            return None
        if self.verify_hashes and zlib.adler32(stored) != self._hashes[block_idx]:
            logger.warning("GCZ: block %d hash mismatch", block_idx)
            return None

        if self._pointers[block_idx] & GCZ_FLAG_UNCOMPRESSED:
            return stored
        try:
            d = zlib.decompressobj()
            return d.decompress(stored, self._block_size)
        except zlib.error as exc:
            logger.warning("GCZ: block %d failed to decompress: %s", block_idx, exc)
            return None

    def read_block(self, block_idx: int, pos: int, size: int) -> Optional[bytes]:
        if pos < 0 or size < 0 or pos + size > self._block_size:
            return None
        if block_idx < 0 or block_idx >= len(self._pointers):
            return None
        if size == 0:
            return b""

        if block_idx != self._cache_idx:
            data = self._load_block(block_idx)
            if data is None:
                return b""
            self._cache_idx = block_idx
            self._cache_data = data
        return self._cache_data[pos : pos + size]


# ── XDVDFS partition ────────────────────────────────────────────────────────


class XdvdfsPartition(SparseBlockReader):
    """Linear 2048-byte-block window onto an Xbox disc's XDVDFS partition."""

    def __init__(self, stream: ByteStream, base_offset: int, size: Optional[int] = None) -> None:
        super().__init__(stream)
        self.base_offset = base_offset
        self._sized = True
        if size is None:
            total = self._file.size()
            if total >= 0:
                size = total - base_offset
            else:
                # Unknown backing size: reads end at the first short read.
                size = (MAX_BLOCK_INDEX + 1) * XDVDFS_BLOCK_SIZE
                self._sized = False
        if base_offset < 0 or size <= 0:
            logger.debug("XDVDFS: no partition at offset 0x%X", base_offset)
            return
        self._set_geometry(XDVDFS_BLOCK_SIZE, size)

    def phys_block_addr(self, block_idx: int) -> int:
        if block_idx < 0 or block_idx * self._block_size >= self._disc_size:
            return BLOCK_INVALID
        return self.base_offset + block_idx * self._block_size

    def size(self) -> int:
        if not self._sized and self.is_open():
            return -1
        return super().size()

    def read_block(self, block_idx: int, pos: int, size: int) -> Optional[bytes]:
        # No holes: a base offset of 0 is a real address.
        if pos < 0 or size < 0 or pos + size > self._block_size:
            return None
        phys = self.phys_block_addr(block_idx)
        if phys < 0:
            return None
        return self._file.seek_and_read(phys + pos, size)


# ── Factory ─────────────────────────────────────────────────────────────────


def open_container(stream: ByteStream, config=None) -> Optional[SparseBlockReader]:
    """Return a reader for a recognised container in *stream*, or ``None``.

    The caller's stream position is left untouched.
    """
    with stream.dup() as probe:
        header = probe.seek_and_read(0, WBFS_HEAD_SIZE)

    if CisoReader.is_supported(header):
        reader: SparseBlockReader = CisoReader(stream)
    elif WbfsReader.is_supported(header):
        reader = WbfsReader(stream)
    elif GczReader.is_supported(header):
        verify = True if config is None else config.verify_gcz_hashes
        reader = GczReader(stream, verify_hashes=verify)
    else:
        return None

    if not reader.is_open():
        logger.info("%s header found but container is unusable", type(reader).__name__)
        reader.close()
        return None
    logger.debug("opened %s, logical size %d", type(reader).__name__, reader.size())
    return reader

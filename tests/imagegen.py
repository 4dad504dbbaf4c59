"""Synthetic image builders shared by the test modules."""

from __future__ import annotations

import struct
import zlib
from typing import Optional

import numpy as np

from romprops.format import (
    CISO_HEADER_SIZE,
    CISO_MAP_SIZE,
    FILETIME_1970,
    GCZ_FLAG_UNCOMPRESSED,
    GCZ_MAGIC,
    ISO_PVD_ADDRESS_2048,
    SNES_LOROM_HEADER_ADDRESS,
    WII_SEC_PER_DISC,
    WII_SEC_SZ_S,
    XDVDFS_BLOCK_SIZE,
    XDVDFS_HEADER_LBA_OFFSET,
    XDVDFS_MAGIC,
    align,
)
from romprops.stream import ByteStream, StreamError


def payload(size: int, seed: int = 0) -> bytes:
    """Deterministic pseudo-random bytes."""
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=size, dtype=np.uint8).tobytes()


# ── Sparse in-memory stream ─────────────────────────────────────────────────


class RegionStream(ByteStream):
    """Large logical stream that stores only a few written regions."""

    def __init__(self, size: int, regions: Optional[dict[int, bytes]] = None) -> None:
        super().__init__()
        self._size = size
        self._regions = dict(regions or {})
        self._open = True

    def size(self) -> int:
        return self._size if self._open else -1

    def is_open(self) -> bool:
        return self._open

    def read(self, size: int = -1) -> bytes:
        if not self._open:
            return b""
        length = self._clamp(size)
        start, end = self._pos, self._pos + length
        out = bytearray(length)
        for off, data in self._regions.items():
            lo, hi = max(start, off), min(end, off + len(data))
            if lo < hi:
                out[lo - start : hi - start] = data[lo - off : hi - off]
        self._pos = end
        return bytes(out)

    def dup(self) -> RegionStream:
        if not self._open:
            raise StreamError("dup of a closed stream")
        other = RegionStream(self._size, self._regions)
        other._pos = self._pos
        return other

    def close(self) -> None:
        self._open = False


class UnsizedStream(ByteStream):
    """Wraps another stream but reports its size as unknown, like a server
    that sends no Content-Length."""

    def __init__(self, inner: ByteStream) -> None:
        super().__init__()
        self._inner = inner

    def size(self) -> int:
        return -1

    def is_open(self) -> bool:
        return self._inner.is_open()

    def read(self, size: int = -1) -> bytes:
        data = self._inner.seek_and_read(self._pos, size)
        self._pos += len(data)
        return data

    def dup(self) -> UnsizedStream:
        other = UnsizedStream(self._inner.dup())
        other._pos = self._pos
        return other

    def close(self) -> None:
        self._inner.close()


# ── ISO-9660 ────────────────────────────────────────────────────────────────


def pvd_time(digits: str, tz: int = 0) -> bytes:
    return digits.encode("ascii") + struct.pack("<b", tz)


def make_pvd(
    btime: bytes = pvd_time("2019010112000000"),
    volume_id: bytes = b"TEST_VOLUME",
    system_id: bytes = b"LINUX",
    publisher: bytes = b"ACME",
    volume_blocks: int = 64,
) -> bytes:
    pvd = bytearray(2048)
    pvd[0] = 1
    pvd[1:6] = b"CD001"
    pvd[6] = 1
    pvd[8:40] = system_id.ljust(32, b" ")
    pvd[40:72] = volume_id.ljust(32, b" ")
    pvd[80:88] = struct.pack("<I", volume_blocks) + struct.pack(">I", volume_blocks)
    pvd[120:124] = struct.pack("<H", 1) + struct.pack(">H", 1)
    pvd[124:128] = struct.pack("<H", 1) + struct.pack(">H", 1)
    pvd[128:132] = struct.pack("<H", 2048) + struct.pack(">H", 2048)
    pvd[318:446] = publisher.ljust(128, b" ")
    pvd[813:830] = btime
    pvd[830:847] = btime
    pvd[847:864] = pvd_time("0000000000000000")
    pvd[864:881] = pvd_time("0000000000000000")
    pvd[881] = 1
    return bytes(pvd)


def make_iso(pvd: Optional[bytes] = None, size: int = 0x10000) -> bytes:
    img = bytearray(size)
    img[ISO_PVD_ADDRESS_2048 : ISO_PVD_ADDRESS_2048 + 2048] = pvd or make_pvd()
    return bytes(img)


# ── Xbox ────────────────────────────────────────────────────────────────────

XGD1_BTIME = pvd_time("2001091310425500", 48)      # +12:00
XGD2_W1_BTIME = pvd_time("2005100712184600", -32)  # -08:00
XGD3_BTIME = pvd_time("2011112517000000", -28)     # -07:00

XDVDFS_UNIX_TIME = 1234567890


def make_xdvdfs_header(
    unix_time: int = XDVDFS_UNIX_TIME,
    magic: bytes = XDVDFS_MAGIC,
    filetime: Optional[int] = None,
) -> bytes:
    if filetime is None:
        filetime = unix_time * 10_000_000 + FILETIME_1970
    return struct.pack("<20sIIQ1992s20s", magic, 0x100, 0x800, filetime, bytes(1992), magic)


def make_xbox_stream(
    btime: Optional[bytes],
    base_lba: int,
    header: Optional[bytes] = None,
) -> RegionStream:
    """Xbox disc image with a PVD (unless *btime* is None) and an XDVDFS header."""
    base = base_lba * XDVDFS_BLOCK_SIZE
    header_addr = base + XDVDFS_HEADER_LBA_OFFSET * XDVDFS_BLOCK_SIZE
    regions = {header_addr: header or make_xdvdfs_header()}
    if btime is not None:
        regions[ISO_PVD_ADDRESS_2048] = make_pvd(btime=btime, volume_id=b"XBOX_GAME")
    size = max(header_addr + 64 * XDVDFS_BLOCK_SIZE, 0x10000)
    return RegionStream(size, regions)


# ── SNES ────────────────────────────────────────────────────────────────────


def make_snes_header(
    title: bytes = b"TEST CART",
    mapping: int = 0x20,
    rom_type: int = 0x02,
    rom_size: int = 0x08,
    sram_size: int = 0x03,
    destination: int = 0x01,
    old_publisher: int = 0x01,
    version: int = 0,
    checksum: int = 0x1234,
    complement: Optional[int] = None,
    ext: bytes = bytes(16),
) -> bytes:
    if complement is None:
        complement = checksum ^ 0xFFFF
    layout = ext + struct.pack(
        "<21sBBBBBBBHH",
        title.ljust(21, b" "), mapping, rom_type, rom_size, sram_size,
        destination, old_publisher, version, complement, checksum,
    )
    vectors = struct.pack("<4sHHHHHH4sH2sHHHH", bytes(4), 1, 2, 3, 4, 0x8000, 6,
                          bytes(4), 7, bytes(2), 8, 9, 0x8000, 10)
    return layout + vectors


def make_bsx_header(
    title: bytes = b"BS TEST",
    mapping: int = 0x20,
    month: int = 3,
    day: int = 10,
    program_type: int = 0x100,
    checksum: int = 0x4321,
) -> bytes:
    layout = struct.pack(
        "<2sI10s16sIHBBBBBBHH",
        b"01", program_type, bytes(10), title.ljust(16, b" "), 0, 0,
        month << 4, day << 3, mapping, 0, 0x33, 0x00, checksum ^ 0xFFFF, checksum,
    )
    return layout + bytes(32)


def make_snes_rom(header: bytes, hirom: bool = False, copier: bool = False) -> bytes:
    rom = bytearray(0x10000 if hirom else 0x8000)
    address = SNES_LOROM_HEADER_ADDRESS | (0x8000 if hirom else 0)
    rom[address : address + len(header)] = header
    if copier:
        return bytes(512) + bytes(rom)
    return bytes(rom)


# ── CISO ────────────────────────────────────────────────────────────────────


def make_ciso(blocks: list[Optional[bytes]], block_size: int = 0x8000) -> bytes:
    """CISO image; ``None`` entries are holes."""
    table = bytearray(CISO_MAP_SIZE)
    data = bytearray()
    for i, blk in enumerate(blocks):
        if blk is not None:
            assert len(blk) == block_size
            table[i] = 1
            data += blk
    header = b"CISO" + struct.pack("<I", block_size) + bytes(table)
    assert len(header) == CISO_HEADER_SIZE
    return header + bytes(data)


# ── WBFS ────────────────────────────────────────────────────────────────────


def make_wbfs(blocks: list[Optional[bytes]], hd_sec_sz_s: int = 9, slot: int = 0) -> bytes:
    """WBFS partition with one disc in *slot*; 32 KiB WBFS sectors."""
    wbfs_sec_sz_s = WII_SEC_SZ_S
    hd_sec_sz = 1 << hd_sec_sz_s
    wbfs_sec_sz = 1 << wbfs_sec_sz_s
    n_wbfs_sec = WII_SEC_PER_DISC >> (wbfs_sec_sz_s - WII_SEC_SZ_S)
    disc_info_sz = align(0x100 + n_wbfs_sec * 2, hd_sec_sz)

    info_end = hd_sec_sz + (slot + 1) * disc_info_sz
    first_data = (info_end + wbfs_sec_sz - 1) // wbfs_sec_sz

    wlba = [0] * n_wbfs_sec
    data_secs = []
    for i, blk in enumerate(blocks):
        if blk is not None:
            assert len(blk) == wbfs_sec_sz
            wlba[i] = first_data + len(data_secs)
            data_secs.append(blk)

    img = bytearray((first_data + len(data_secs)) * wbfs_sec_sz)
    img[0:12] = struct.pack(">4sIBB2s", b"WBFS", len(img) // hd_sec_sz,
                            hd_sec_sz_s, wbfs_sec_sz_s, bytes(2))
    img[12 + slot] = 1
    info = hd_sec_sz + slot * disc_info_sz
    img[info : info + 6] = b"RTEST0"
    img[info + 0x100 : info + 0x100 + n_wbfs_sec * 2] = struct.pack(f">{n_wbfs_sec}H", *wlba)
    for i, blk in enumerate(data_secs):
        off = (first_data + i) * wbfs_sec_sz
        img[off : off + wbfs_sec_sz] = blk
    return bytes(img)


# ── GCZ ─────────────────────────────────────────────────────────────────────


def make_gcz(data: bytes, block_size: int = 0x1000, raw_blocks: tuple[int, ...] = ()) -> bytes:
    """Dolphin GCZ image; blocks listed in *raw_blocks* are stored uncompressed."""
    num_blocks = (len(data) + block_size - 1) // block_size
    padded = data.ljust(num_blocks * block_size, b"\0")

    pointers, hashes, stored = [], [], bytearray()
    for i in range(num_blocks):
        blk = padded[i * block_size : (i + 1) * block_size]
        comp = zlib.compress(blk)
        if i in raw_blocks or len(comp) >= block_size:
            pointers.append(len(stored) | GCZ_FLAG_UNCOMPRESSED)
            chunk = blk
        else:
            pointers.append(len(stored))
            chunk = comp
        hashes.append(zlib.adler32(chunk))
        stored += chunk

    header = struct.pack("<IIQQII", GCZ_MAGIC, 0, len(stored), len(data), block_size, num_blocks)
    return (
        header
        + struct.pack(f"<{num_blocks}Q", *pointers)
        + struct.pack(f"<{num_blocks}I", *hashes)
        + bytes(stored)
    )


def gcz_data_offset(num_blocks: int) -> int:
    return 32 + num_blocks * 12

"""Fixed-layout header records.

Each record decodes exactly one on-disk structure from raw bytes of the
exact expected length and packs back to the identical bytes. All numeric
fields are little-endian on disk and unpacked with ``"<"`` formats, so the
host byte order never matters. Text fields are kept as fixed-width ``bytes``
(not necessarily NUL-terminated); use :func:`decode_text` to read them.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, fields
from typing import ClassVar, Union

from .format import (
    FILETIME_1970,
    HECTONANOSEC_PER_SEC,
    ISO_MAGIC,
    ISO_PVD_FMT,
    ISO_PVD_SIZE,
    ISO_PVD_TIME_FMT,
    ISO_PVD_TIME_SIZE,
    ISO_VD_TYPE_PRIMARY,
    SNES_BSX_EXT_INVALID,
    SNES_BSX_FMT,
    SNES_CART_FMT,
    SNES_EXT_HEADER_PRESENT,
    SNES_HEADER_SIZE,
    SNES_LAYOUT_SIZE,
    SNES_VECTORS_FMT,
    XDVDFS_HEADER_FMT,
    XDVDFS_HEADER_SIZE,
    XDVDFS_MAGIC,
)


def decode_text(raw: bytes, encoding: str = "ascii") -> str:
    """Decode a fixed-width text field, stopping at NUL and trimming padding."""
    return raw.split(b"\0", 1)[0].rstrip(b" ").decode(encoding, errors="replace")


class _Record:
    """Flat dataclass record mapped one-to-one onto a struct format."""

    _FMT: ClassVar[str]
    _SIZE: ClassVar[int]

    @classmethod
    def unpack(cls, raw: bytes):
        if len(raw) != cls._SIZE:
            raise ValueError(f"{cls.__name__} needs {cls._SIZE} bytes, got {len(raw)}")
        return cls(*struct.unpack(cls._FMT, raw))

    def pack(self) -> bytes:
        return struct.pack(self._FMT, *(getattr(self, f.name) for f in fields(self)))


# ── ISO-9660 ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PvdTime(_Record):
    """ISO-9660 volume descriptor timestamp (17 B)."""

    _FMT: ClassVar[str] = ISO_PVD_TIME_FMT
    _SIZE: ClassVar[int] = ISO_PVD_TIME_SIZE

    full: bytes        # "YYYYMMDDHHMMSScc", ASCII digits
    tz_offset: int     # signed, 15-minute intervals from GMT


# Big-endian halves of both-endian fields, with their on-disk width.
_PVD_BE_FIELDS = {
    "volume_space_size_be": 4,
    "volume_set_size_be": 2,
    "volume_seq_number_be": 2,
    "logical_block_size_be": 2,
    "path_table_size_be": 4,
    "path_table_m": 4,
    "opt_path_table_m": 4,
}
_PVD_TIME_FIELDS = frozenset({"btime", "mtime", "exptime", "efftime"})


@dataclass(frozen=True)
class IsoPvd:
    """ISO-9660 Primary Volume Descriptor (2048 B)."""

    type: int
    identifier: bytes
    version: int
    unused1: bytes
    system_id: bytes
    volume_id: bytes
    unused2: bytes
    volume_space_size: int
    volume_space_size_be: int
    unused3: bytes
    volume_set_size: int
    volume_set_size_be: int
    volume_seq_number: int
    volume_seq_number_be: int
    logical_block_size: int
    logical_block_size_be: int
    path_table_size: int
    path_table_size_be: int
    path_table_l: int
    opt_path_table_l: int
    path_table_m: int
    opt_path_table_m: int
    root_dir_record: bytes
    volume_set_id: bytes
    publisher: bytes
    data_preparer: bytes
    application: bytes
    copyright_file: bytes
    abstract_file: bytes
    bibliographic_file: bytes
    btime: PvdTime
    mtime: PvdTime
    exptime: PvdTime
    efftime: PvdTime
    file_structure_version: int
    reserved1: bytes
    application_data: bytes
    reserved2: bytes

    @classmethod
    def unpack(cls, raw: bytes) -> IsoPvd:
        if len(raw) != ISO_PVD_SIZE:
            raise ValueError(f"IsoPvd needs {ISO_PVD_SIZE} bytes, got {len(raw)}")
        kwargs = {}
        for f, value in zip(fields(cls), struct.unpack(ISO_PVD_FMT, raw)):
            if f.name in _PVD_BE_FIELDS:
                value = int.from_bytes(value, "big")
            elif f.name in _PVD_TIME_FIELDS:
                value = PvdTime.unpack(value)
            kwargs[f.name] = value
        return cls(**kwargs)

    def pack(self) -> bytes:
        values = []
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in _PVD_BE_FIELDS:
                value = value.to_bytes(_PVD_BE_FIELDS[f.name], "big")
            elif f.name in _PVD_TIME_FIELDS:
                value = value.pack()
            values.append(value)
        return struct.pack(ISO_PVD_FMT, *values)

    def is_primary(self) -> bool:
        """True if this sector really is a Primary Volume Descriptor."""
        return (
            self.type == ISO_VD_TYPE_PRIMARY
            and self.identifier == ISO_MAGIC
            and self.version == 1
        )

    @property
    def volume_size_bytes(self) -> int:
        return self.volume_space_size * self.logical_block_size


# ── XDVDFS ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class XdvdfsHeader(_Record):
    """Xbox XDVDFS volume header (one 2048-byte block)."""

    _FMT: ClassVar[str] = XDVDFS_HEADER_FMT
    _SIZE: ClassVar[int] = XDVDFS_HEADER_SIZE

    magic: bytes
    root_dir_sector: int
    root_dir_size: int
    timestamp: int          # Windows FILETIME
    unused: bytes
    magic_footer: bytes

    @property
    def is_magic_valid(self) -> bool:
        return self.magic == XDVDFS_MAGIC and self.magic_footer == XDVDFS_MAGIC

    @property
    def unix_timestamp(self) -> int:
        """FILETIME converted to Unix seconds, truncated toward zero."""
        ticks = self.timestamp - FILETIME_1970
        if ticks >= 0:
            return ticks // HECTONANOSEC_PER_SEC
        return -(-ticks // HECTONANOSEC_PER_SEC)


# ── SNES ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SnesCartHeader(_Record):
    """Standard SNES cartridge header layout (0x7FB0..0x7FDF in LoROM)."""

    _FMT: ClassVar[str] = SNES_CART_FMT
    _SIZE: ClassVar[int] = SNES_LAYOUT_SIZE
    is_bsx: ClassVar[bool] = False

    # Extended header; only meaningful if has_ext.
    new_publisher_code: bytes
    id4: bytes
    reserved: bytes
    exp_flash_size: int
    exp_ram_size: int
    special_version: int
    cart_type: int

    title: bytes                # 21 B, ASCII or Shift-JIS
    rom_mapping: int
    rom_type: int
    rom_size: int               # 1024 << rom_size bytes
    sram_size: int              # 1024 << sram_size bytes, 0 = none
    destination_code: int
    old_publisher_code: int
    version: int
    checksum_complement: int
    checksum: int

    @property
    def has_ext(self) -> bool:
        return self.old_publisher_code == SNES_EXT_HEADER_PRESENT


@dataclass(frozen=True)
class BsxHeader(_Record):
    """Satellaview (BS-X) memory pack header layout."""

    _FMT: ClassVar[str] = SNES_BSX_FMT
    _SIZE: ClassVar[int] = SNES_LAYOUT_SIZE
    is_bsx: ClassVar[bool] = True

    new_publisher_code: bytes
    program_type: int
    reserved: bytes

    title: bytes                # 16 B, Shift-JIS
    block_alloc: int
    limited_starts: int
    month: int                  # bits 7-4
    day: int                    # bits 7-3
    rom_mapping: int
    file_type: int
    old_publisher_code: int     # 0x33 if valid, 0x00 if deleted
    x7FDB: int
    checksum_complement: int
    checksum: int

    @property
    def has_ext(self) -> bool:
        return self.x7FDB != SNES_BSX_EXT_INVALID

    @property
    def broadcast_month(self) -> int:
        return self.month >> 4

    @property
    def broadcast_day(self) -> int:
        return self.day >> 3


@dataclass(frozen=True)
class SnesVectors(_Record):
    """65C816 interrupt vectors: native mode, then 6502 emulation mode."""

    _FMT: ClassVar[str] = SNES_VECTORS_FMT
    _SIZE: ClassVar[int] = SNES_HEADER_SIZE - SNES_LAYOUT_SIZE

    native_reserved: bytes
    native_cop: int
    native_brk: int
    native_abort: int
    native_nmi: int
    native_reset: int
    native_irq: int
    emu_reserved1: bytes
    emu_cop: int
    emu_reserved2: bytes
    emu_abort: int
    emu_nmi: int
    emu_reset: int
    emu_irq_brk: int            # IRQ and BRK share a vector in emulation mode


SnesHeader = Union[SnesCartHeader, BsxHeader]


def decode_snes_header(raw: bytes, bsx: bool = False) -> tuple[SnesHeader, SnesVectors]:
    """Decode an 80-byte SNES header as either the standard or BS-X layout."""
    if len(raw) != SNES_HEADER_SIZE:
        raise ValueError(f"SNES header needs {SNES_HEADER_SIZE} bytes, got {len(raw)}")
    layout = BsxHeader if bsx else SnesCartHeader
    return layout.unpack(raw[:SNES_LAYOUT_SIZE]), SnesVectors.unpack(raw[SNES_LAYOUT_SIZE:])


def pack_snes_header(header: SnesHeader, vectors: SnesVectors) -> bytes:
    return header.pack() + vectors.pack()

"""On-disk constants, struct layouts, and enums for the supported image formats."""

import struct
from enum import IntEnum, IntFlag

# ── ISO-9660 ───────────────────────────────────────────────────────────────

ISO_MAGIC = b"CD001"
ISO_VD_TYPE_PRIMARY = 1
ISO_PVD_LBA = 16

ISO_SECTOR_SIZE_COOKED = 2048        # Mode 1 / DVD user data
ISO_SECTOR_SIZE_RAW = 2352           # raw CD sector
ISO_RAW_DATA_OFFSET = 16             # sync[12] + header[4] before Mode 1 data

ISO_PVD_ADDRESS_2048 = ISO_PVD_LBA * ISO_SECTOR_SIZE_COOKED
ISO_PVD_ADDRESS_2352 = ISO_PVD_LBA * ISO_SECTOR_SIZE_RAW + ISO_RAW_DATA_OFFSET

ISO_PVD_SIZE = 2048
ISO_PVD_TIME_SIZE = 17

# Primary Volume Descriptor (2048 B). Both-endian fields are the LE half
# followed by the BE half; struct can't mix byte orders, so BE halves (and
# the M path tables) are unpacked as raw bytes and converted separately.
#
#   type(u8) id[5] version(u8) unused1[1]
#   sysID[32] volID[32] unused2[8]
#   volume_space_size(u32 LE + u32 BE) unused3[32]
#   volume_set_size(u16 LE+BE) volume_seq_number(u16 LE+BE)
#   logical_block_size(u16 LE+BE) path_table_size(u32 LE+BE)
#   path_table_L(u32 LE) opt_path_table_L(u32 LE)
#   path_table_M(u32 BE) opt_path_table_M(u32 BE)
#   root_dir_record[34]
#   volume_set_id[128] publisher[128] data_preparer[128] application[128]
#   copyright_file[37] abstract_file[37] bibliographic_file[37]
#   btime[17] mtime[17] exptime[17] efftime[17]
#   file_structure_version(u8) reserved1[1] application_data[512] reserved2[653]

ISO_PVD_FMT = (
    "<B5sBs32s32s8s"
    "I4s32s"
    "H2sH2sH2sI4s"
    "II4s4s"
    "34s"
    "128s128s128s128s"
    "37s37s37s"
    "17s17s17s17s"
    "Bs512s653s"
)

# ISO-9660 timestamp: "YYYYMMDDHHMMSScc" + tz offset (s8, 15-minute units)
ISO_PVD_TIME_FMT = "<16sb"

assert struct.calcsize(ISO_PVD_FMT) == ISO_PVD_SIZE
assert struct.calcsize(ISO_PVD_TIME_FMT) == ISO_PVD_TIME_SIZE

# ── XDVDFS (Xbox) ──────────────────────────────────────────────────────────

XDVDFS_MAGIC = b"MICROSOFT*XBOX*MEDIA"
XDVDFS_BLOCK_SIZE = 2048
XDVDFS_HEADER_LBA_OFFSET = 32        # header block, relative to the partition
XDVDFS_HEADER_SIZE = 2048

# Partition start, in XDVDFS blocks, per disc generation.
XDVDFS_LBA_OFFSET_XGD1 = 0x30600
XDVDFS_LBA_OFFSET_XGD2 = 0x1FB20
XDVDFS_LBA_OFFSET_XGD3 = 0x4100

# magic[20] root_dir_sector(u32) root_dir_size(u32) timestamp(u64 FILETIME)
# unused[1992] magic_footer[20]
XDVDFS_HEADER_FMT = "<20sIIQ1992s20s"

assert struct.calcsize(XDVDFS_HEADER_FMT) == XDVDFS_HEADER_SIZE

FILETIME_1970 = 116444736000000000   # 100 ns ticks between 1601-01-01 and 1970-01-01
HECTONANOSEC_PER_SEC = 10_000_000


class DiscType(IntEnum):
    UNKNOWN = -1
    EXTRACTED = 0    # bare XDVDFS, no disc wrapper
    XGD1 = 1         # original Xbox
    XGD2 = 2         # Xbox 360
    XGD3 = 3         # Xbox 360


XDVDFS_LBA_OFFSETS: dict[int, int] = {
    DiscType.XGD1: XDVDFS_LBA_OFFSET_XGD1,
    DiscType.XGD2: XDVDFS_LBA_OFFSET_XGD2,
    DiscType.XGD3: XDVDFS_LBA_OFFSET_XGD3,
}

# (generation, wave, PVD creation time as Unix epoch seconds)
XGD_PVD_TIMES: tuple[tuple[int, int, int], ...] = (
    (1, 0, 1000334575),   # 2001-09-13 10:42:55.00 +12:00
    (2, 1, 1128716326),   # 2005-10-07 12:18:46.00 -08:00
    (2, 2, 1141708147),   # 2006-03-06 21:09:07.00 -08:00
    (2, 3, 1231977600),   # 2009-01-14 16:00:00.00 -08:00
    (2, 4, 1251158400),   # 2009-08-24 17:00:00.00 -07:00
    (2, 5, 1254787200),   # 2009-10-05 17:00:00.00 -07:00
    (2, 6, 1256860800),   # 2009-10-29 17:00:00.00 -07:00
    (2, 7, 1266796800),   # 2010-02-21 16:00:00.00 -08:00
    (2, 8, 1283644800),   # 2010-09-04 17:00:00.00 -07:00
    (2, 9, 1284595200),   # 2010-09-15 17:00:00.00 -07:00
    (2, 10, 1288310400),  # 2010-10-28 17:00:00.00 -07:00
    (2, 11, 1295395200),  # 2011-01-18 16:00:00.00 -08:00
    (2, 12, 1307923200),  # 2011-06-12 17:00:00.00 -07:00
    (2, 13, 1310515200),  # 2011-07-12 17:00:00.00 -07:00
    (2, 14, 1323302400),  # 2011-12-07 16:00:00.00 -08:00
    (2, 15, 1329868800),  # 2012-02-21 16:00:00.00 -08:00
    (2, 16, 1340323200),  # 2012-06-21 17:00:00.00 -07:00
    (2, 17, 1352332800),  # 2012-11-07 16:00:00.00 -08:00
    (2, 18, 1353283200),  # 2012-11-18 16:00:00.00 -08:00
    (2, 19, 1377561600),  # 2013-08-26 17:00:00.00 -07:00
    (2, 20, 1430092800),  # 2015-04-26 17:00:00.00 -07:00
)

# XGD3 discs have no shared per-wave PVD, but the time of day and timezone
# always match one of these. Compared against the last 9 bytes of the
# encoded creation time ("HHMMSScc" + tz offset byte).
XGD3_PVD_TIME_SUFFIXES: tuple[bytes, ...] = (
    b"17000000\xe4",   # 17:00:00.00 -07:00
    b"16000000\xe0",   # 16:00:00.00 -08:00
)

# ── SNES ───────────────────────────────────────────────────────────────────

SNES_HEADER_SIZE = 80
SNES_LOROM_HEADER_ADDRESS = 0x7FB0
SNES_HIROM_HEADER_ADDRESS = 0xFFB0
SNES_COPIER_HEADER_SIZE = 512

# Standard cartridge layout (first 48 B):
#   ext: new_publisher_code[2] id4[4] reserved[6] exp_flash_size(u8)
#        exp_ram_size(u8) special_version(u8) cart_type(u8)
#   title[21] rom_mapping rom_type rom_size sram_size destination_code
#   old_publisher_code version checksum_complement(u16) checksum(u16)
SNES_CART_FMT = "<2s4s6sBBBB21sBBBBBBBHH"

# Satellaview (BS-X) layout (first 48 B):
#   ext: new_publisher_code[2] program_type(u32) reserved[10]
#   title[16] block_alloc(u32) limited_starts(u16) month day
#   rom_mapping file_type old_publisher_code x7FDB
#   checksum_complement(u16) checksum(u16)
SNES_BSX_FMT = "<2sI10s16sIHBBBBBBHH"

# Interrupt vectors (last 32 B): native then 6502 emulation mode.
SNES_VECTORS_FMT = "<4sHHHHHH4sH2sHHHH"

SNES_LAYOUT_SIZE = 48
SNES_VECTORS_SIZE = 32

assert struct.calcsize(SNES_CART_FMT) == SNES_LAYOUT_SIZE
assert struct.calcsize(SNES_BSX_FMT) == SNES_LAYOUT_SIZE
assert struct.calcsize(SNES_VECTORS_FMT) == SNES_VECTORS_SIZE
assert SNES_LAYOUT_SIZE + SNES_VECTORS_SIZE == SNES_HEADER_SIZE

SNES_EXT_HEADER_PRESENT = 0x33       # old_publisher_code value
SNES_BSX_EXT_INVALID = 0x01          # x7FDB value


class SnesRomMapping(IntEnum):
    LoROM = 0x20
    HiROM = 0x21
    LoROM_S_DD1 = 0x22
    LoROM_SA_1 = 0x23
    ExHiROM = 0x25
    LoROM_FastROM = 0x30
    HiROM_FastROM = 0x31
    ExLoROM_FastROM = 0x32
    ExHiROM_FastROM = 0x35


SNES_LOROM_MAPPINGS = frozenset({
    SnesRomMapping.LoROM, SnesRomMapping.LoROM_S_DD1, SnesRomMapping.LoROM_SA_1,
    SnesRomMapping.LoROM_FastROM, SnesRomMapping.ExLoROM_FastROM,
})
SNES_HIROM_MAPPINGS = frozenset({
    SnesRomMapping.HiROM, SnesRomMapping.ExHiROM,
    SnesRomMapping.HiROM_FastROM, SnesRomMapping.ExHiROM_FastROM,
})
SNES_BSX_LOROM_MAPPINGS = frozenset({SnesRomMapping.LoROM, SnesRomMapping.LoROM_FastROM})
SNES_BSX_HIROM_MAPPINGS = frozenset({SnesRomMapping.HiROM, SnesRomMapping.HiROM_FastROM})

SNES_ROM_MAPPING_NAMES: dict[int, str] = {
    SnesRomMapping.LoROM: "LoROM",
    SnesRomMapping.HiROM: "HiROM",
    SnesRomMapping.LoROM_S_DD1: "LoROM + S-DD1",
    SnesRomMapping.LoROM_SA_1: "LoROM + SA-1",
    SnesRomMapping.ExHiROM: "ExHiROM",
    SnesRomMapping.LoROM_FastROM: "LoROM + FastROM",
    SnesRomMapping.HiROM_FastROM: "HiROM + FastROM",
    SnesRomMapping.ExLoROM_FastROM: "ExLoROM + FastROM",
    SnesRomMapping.ExHiROM_FastROM: "ExHiROM + FastROM",
}

SNES_ROMTYPE_ROM_MASK = 0x0F
SNES_ROMTYPE_ENH_MASK = 0xF0

SNES_ROMTYPE_HW_NAMES: dict[int, str] = {
    0x00: "ROM",
    0x01: "ROM, RAM",
    0x02: "ROM, RAM, Battery",
    0x03: "ROM, {enh}",
    0x04: "ROM, RAM, {enh}",
    0x05: "ROM, RAM, Battery, {enh}",
    0x06: "ROM, Battery, {enh}",
    0x09: "ROM, Battery, RTC-4513, {enh}",
    0x0A: "ROM, Battery, RTC, {enh}",
}

SNES_ENH_CHIP_NAMES: dict[int, str] = {
    0x00: "DSP-1",
    0x10: "Super FX",
    0x20: "OBC1",
    0x30: "SA-1",
    0x40: "S-DD1",
    0x50: "S-RTC",
    0xE0: "Other",
    0xF0: "Custom",
}

SNES_DESTINATION_NAMES: dict[int, str] = {
    0x00: "Japan",
    0x01: "North America",
    0x02: "Europe",
    0x03: "Scandinavia",
    0x06: "France",
    0x07: "Netherlands",
    0x08: "Spain",
    0x09: "Germany",
    0x0A: "Italy",
    0x0B: "China",
    0x0D: "South Korea",
    0x0E: "All",
    0x0F: "Canada",
    0x10: "Brazil",
    0x11: "Australia",
    0x12: "Other (X)",
    0x13: "Other (Y)",
    0x14: "Other (Z)",
}


class SnesBsxProgramType(IntEnum):
    PRG_65C816 = 0x00000000
    SCRIPT = 0x00000100
    SA_1 = 0x00000200


# ── CISO (GameCube / Wii) ──────────────────────────────────────────────────

CISO_MAGIC = b"CISO"
CISO_HEADER_SIZE = 0x8000
CISO_MAP_SIZE = CISO_HEADER_SIZE - 8
CISO_BLOCK_SIZE_MIN = 32 * 1024
CISO_BLOCK_SIZE_MAX = 16 * 1024 * 1024

# magic[4] block_size(u32) map[CISO_MAP_SIZE]
CISO_HEADER_FMT = f"<4sI{CISO_MAP_SIZE}s"

assert struct.calcsize(CISO_HEADER_FMT) == CISO_HEADER_SIZE

# ── WBFS ───────────────────────────────────────────────────────────────────

WBFS_MAGIC = b"WBFS"
WBFS_HEAD_SIZE = 12
WBFS_DISC_HEADER_COPY_SIZE = 0x100
WII_SEC_SZ_S = 15                     # Wii sector: 32 KiB
WII_SEC_PER_DISC = 143432 * 2         # dual-layer disc

# Big-endian: magic[4] n_hd_sec(u32) hd_sec_sz_s(u8) wbfs_sec_sz_s(u8) padding[2]
WBFS_HEAD_FMT = ">4sIBB2s"

assert struct.calcsize(WBFS_HEAD_FMT) == WBFS_HEAD_SIZE

# ── GCZ (Dolphin compressed GameCube / Wii) ────────────────────────────────

GCZ_MAGIC = 0xB10BC001
GCZ_HEADER_SIZE = 32
GCZ_FLAG_UNCOMPRESSED = 1 << 63
GCZ_BLOCK_SIZE_MIN = 512
GCZ_BLOCK_SIZE_MAX = 16 * 1024 * 1024

# magic(u32) sub_type(u32) compressed_data_size(u64) data_size(u64)
# block_size(u32) num_blocks(u32)
GCZ_HEADER_FMT = "<IIQQII"

assert struct.calcsize(GCZ_HEADER_FMT) == GCZ_HEADER_SIZE


# ── Field flags ────────────────────────────────────────────────────────────


class DateTimeFlags(IntFlag):
    HAS_DATE = 0x01
    HAS_TIME = 0x02
    IS_UTC = 0x04


# ── Safety limits ──────────────────────────────────────────────────────────

MAX_GCZ_BLOCKS = 4 * 1024 * 1024      # reject tables above 48 MB
MAX_RANGE_BYTES = 64 * 1024 * 1024    # 64 MB per HTTP request


# ── Helpers ────────────────────────────────────────────────────────────────


def is_pow2(value: int) -> bool:
    return value > 0 and (value & (value - 1)) == 0


def align(offset: int, alignment: int) -> int:
    """Round *offset* up to the next multiple of *alignment* (a power of two)."""
    return (offset + alignment - 1) & ~(alignment - 1)

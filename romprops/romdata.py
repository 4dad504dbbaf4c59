"""Format front-ends: validate an image and expose its decoded fields.

Usage::

    with open_stream("game.iso") as f:
        rom = detect(f)
        if rom is not None:
            for field in rom.fields:
                print(field.label, field.value)
"""

from __future__ import annotations

import errno
import logging
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import Optional

from .classify import SnesMatch, classify_snes, classify_xgd, pvd_time_to_unix
from .config import Config
from .containers import XdvdfsPartition, open_container
from .fields import DateTimeFlags, RomFields
from .format import (
    ISO_PVD_ADDRESS_2048,
    ISO_PVD_ADDRESS_2352,
    ISO_PVD_SIZE,
    ISO_SECTOR_SIZE_COOKED,
    ISO_SECTOR_SIZE_RAW,
    SNES_DESTINATION_NAMES,
    SNES_ENH_CHIP_NAMES,
    SNES_ROM_MAPPING_NAMES,
    SNES_ROMTYPE_ENH_MASK,
    SNES_ROMTYPE_HW_NAMES,
    SNES_ROMTYPE_ROM_MASK,
    XDVDFS_BLOCK_SIZE,
    XDVDFS_HEADER_LBA_OFFSET,
    XDVDFS_HEADER_SIZE,
    XDVDFS_LBA_OFFSETS,
    DiscType,
    SnesBsxProgramType,
)
from .headers import BsxHeader, IsoPvd, XdvdfsHeader, decode_text
from .stream import ByteStream

logger = logging.getLogger("romprops")

_DATETIME = DateTimeFlags.HAS_DATE | DateTimeFlags.HAS_TIME


class SystemNameType(IntEnum):
    LONG = 0
    SHORT = 1
    ABBREVIATION = 2


# ── RomData base ────────────────────────────────────────────────────────────


class RomData(ABC):
    """Base class for a parsed image.

    The constructor duplicates *stream*; the caller keeps ownership of the
    stream it passed in. Check :attr:`is_valid` before using the result.
    """

    SYSTEM_NAMES: tuple[str, str, str] = ("", "", "")

    def __init__(self, stream: Optional[ByteStream], config: Optional[Config] = None) -> None:
        self.config = config or Config()
        self.is_valid = False
        self._fields = RomFields()
        self._loaded = False
        self._file: Optional[ByteStream] = None
        if stream is not None and stream.is_open():
            self._file = stream.dup()

    def is_open(self) -> bool:
        return self._file is not None and self._file.is_open()

    def load_field_data(self) -> int:
        """Decode the fields once.

        Returns the number of fields, ``0`` if they were already loaded, or a
        negative errno: ``-EBADF`` if the stream is not open and ``-EIO`` if
        the image is not valid.
        """
        if self._loaded:
            return 0
        if not self.is_open():
            return -errno.EBADF
        if not self.is_valid:
            return -errno.EIO
        self._add_fields(self._fields)
        self._loaded = True
        return len(self._fields)

    @abstractmethod
    def _add_fields(self, fields: RomFields) -> None:
        """Append this format's fields to *fields*."""

    @property
    def fields(self) -> RomFields:
        self.load_field_data()
        return self._fields

    def system_name(self, name_type: SystemNameType = SystemNameType.LONG) -> Optional[str]:
        if not self.is_valid:
            return None
        return self.SYSTEM_NAMES[name_type]

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> RomData:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


# ── ISO-9660 ────────────────────────────────────────────────────────────────


class IsoImage(RomData):
    """ISO-9660 image with 2048-byte (cooked) or 2352-byte (raw) sectors."""

    SYSTEM_NAMES = ("ISO-9660", "ISO", "ISO")

    def __init__(self, stream: Optional[ByteStream], config: Optional[Config] = None) -> None:
        super().__init__(stream, config)
        self.sector_size = 0
        self.pvd: Optional[IsoPvd] = None
        if self._file is None:
            return

        for address, sector_size in (
            (ISO_PVD_ADDRESS_2048, ISO_SECTOR_SIZE_COOKED),
            (ISO_PVD_ADDRESS_2352, ISO_SECTOR_SIZE_RAW),
        ):
            raw = self._file.seek_and_read(address, ISO_PVD_SIZE)
            if len(raw) != ISO_PVD_SIZE:
                continue
            pvd = IsoPvd.unpack(raw)
            if pvd.is_primary():
                self.pvd = pvd
                self.sector_size = sector_size
                self.is_valid = True
                return
        logger.debug("ISO: no primary volume descriptor")

    def _add_fields(self, fields: RomFields) -> None:
        pvd = self.pvd
        fields.set_tab_name(0, "ISO-9660")
        fields.add_string("Sector Size", str(self.sector_size))
        for label, raw in (
            ("System ID", pvd.system_id),
            ("Volume ID", pvd.volume_id),
            ("Volume Set", pvd.volume_set_id),
            ("Publisher", pvd.publisher),
            ("Data Preparer", pvd.data_preparer),
            ("Application", pvd.application),
            ("Copyright File", pvd.copyright_file),
            ("Abstract File", pvd.abstract_file),
            ("Bibliographic File", pvd.bibliographic_file),
        ):
            fields.add_string(label, decode_text(raw))
        fields.add_string("Volume Size", str(pvd.volume_size_bytes))

        # Unset or malformed timestamps are reported as -1.
        for label, t in (
            ("Creation Time", pvd.btime),
            ("Modification Time", pvd.mtime),
            ("Expiration Time", pvd.exptime),
            ("Effective Time", pvd.efftime),
        ):
            ts = pvd_time_to_unix(t.pack())
            fields.add_datetime(label, -1 if ts is None else ts, _DATETIME)


# ── Xbox disc ───────────────────────────────────────────────────────────────


class XboxDisc(RomData):
    """Xbox / Xbox 360 game disc (XGD1-3) or extracted XDVDFS image."""

    def __init__(self, stream: Optional[ByteStream], config: Optional[Config] = None) -> None:
        super().__init__(stream, config)
        self.disc_type = DiscType.UNKNOWN
        self.wave = 0
        self.header: Optional[XdvdfsHeader] = None
        self.partition: Optional[XdvdfsPartition] = None
        if self._file is None:
            return

        # DVD media: 2048-byte sectors only.
        raw = self._file.seek_and_read(ISO_PVD_ADDRESS_2048, ISO_PVD_SIZE)
        if len(raw) != ISO_PVD_SIZE:
            logger.debug("Xbox: image too small for a PVD")
            return
        hit = classify_xgd(IsoPvd.unpack(raw), xgd3_heuristic=self.config.xgd3_heuristic)
        disc_type = DiscType(hit[0]) if hit else DiscType.UNKNOWN
        base = XDVDFS_LBA_OFFSETS.get(disc_type, 0) * XDVDFS_BLOCK_SIZE

        partition = XdvdfsPartition(self._file, base)
        header_raw = partition.seek_and_read(
            XDVDFS_HEADER_LBA_OFFSET * XDVDFS_BLOCK_SIZE, XDVDFS_HEADER_SIZE
        )
        if len(header_raw) != XDVDFS_HEADER_SIZE:
            logger.debug("Xbox: no XDVDFS header at 0x%X", base)
            partition.close()
            return
        header = XdvdfsHeader.unpack(header_raw)
        if not header.is_magic_valid:
            logger.debug("Xbox: XDVDFS magic mismatch at 0x%X", base)
            partition.close()
            return

        self.disc_type = disc_type if hit else DiscType.EXTRACTED
        self.wave = hit[1] if hit else 0
        self.header = header
        self.partition = partition
        self.is_valid = True

    @property
    def is_xbox360(self) -> bool:
        return self.disc_type >= DiscType.XGD2

    def system_name(self, name_type: SystemNameType = SystemNameType.LONG) -> Optional[str]:
        if not self.is_valid:
            return None
        if self.is_xbox360:
            return ("Microsoft Xbox 360", "Xbox 360", "X360")[name_type]
        return ("Microsoft Xbox", "Xbox", "Xbox")[name_type]

    @property
    def disc_type_name(self) -> str:
        if self.disc_type == DiscType.EXTRACTED:
            return "Extracted XDVDFS"
        if self.disc_type == DiscType.XGD1:
            return "Xbox Game Disc 1"
        if self.disc_type == DiscType.XGD2:
            return f"Xbox Game Disc 2 (Wave {self.wave})"
        if self.disc_type == DiscType.XGD3:
            return "Xbox Game Disc 3"
        return f"Unknown ({self.wave})"

    def _add_fields(self, fields: RomFields) -> None:
        fields.set_tab_name(0, "Xbox 360" if self.is_xbox360 else "Xbox")
        fields.add_string("Disc Type", self.disc_type_name)
        fields.add_datetime("Timestamp", self.header.unix_timestamp, _DATETIME)

        if self.disc_type >= DiscType.XGD1:
            with IsoImage(self._file, self.config) as iso:
                if iso.is_valid:
                    fields.add_fields("ISO-9660", iso.fields)

    def close(self) -> None:
        if self.partition is not None:
            self.partition.close()
            self.partition = None
        super().close()


# ── SNES ────────────────────────────────────────────────────────────────────


def _snes_cart_hw(rom_type: int) -> str:
    hw = SNES_ROMTYPE_HW_NAMES.get(rom_type & SNES_ROMTYPE_ROM_MASK)
    if hw is None:
        return f"Unknown (0x{rom_type:02X})"
    enh = SNES_ENH_CHIP_NAMES.get(rom_type & SNES_ROMTYPE_ENH_MASK, "Unknown")
    return hw.format(enh=enh)


_BSX_PROGRAM_TYPE_NAMES = {
    SnesBsxProgramType.PRG_65C816: "65c816 program",
    SnesBsxProgramType.SCRIPT: "BS-X script",
    SnesBsxProgramType.SA_1: "SA-1 program",
}


def _snes_title(raw: bytes) -> str:
    # Titles are ASCII or Shift-JIS; ASCII is a subset of cp932.
    return decode_text(raw, "cp932")


class SnesRom(RomData):
    """Super Nintendo / Super Famicom cartridge dump, including BS-X packs."""

    SYSTEM_NAMES = ("Super Nintendo Entertainment System", "Super NES", "SNES")

    def __init__(self, stream: Optional[ByteStream], config: Optional[Config] = None) -> None:
        super().__init__(stream, config)
        self.match: Optional[SnesMatch] = None
        if self._file is None:
            return
        self.match = classify_snes(self._file)
        self.is_valid = self.match is not None

    def system_name(self, name_type: SystemNameType = SystemNameType.LONG) -> Optional[str]:
        if not self.is_valid:
            return None
        if self.match.bsx:
            return ("Satellaview BS-X", "Satellaview", "BS-X")[name_type]
        return self.SYSTEM_NAMES[name_type]

    def _add_fields(self, fields: RomFields) -> None:
        header = self.match.header
        fields.set_tab_name(0, "BS-X" if self.match.bsx else "SNES")
        fields.add_string("Title", _snes_title(header.title))

        if isinstance(header, BsxHeader):
            self._add_bsx_fields(fields, header)
        else:
            if header.has_ext:
                fields.add_string("Game ID", decode_text(header.id4))
                fields.add_string("Publisher", decode_text(header.new_publisher_code))
            else:
                fields.add_string("Publisher", f"0x{header.old_publisher_code:02X}")
            fields.add_string("ROM Mapping", SNES_ROM_MAPPING_NAMES.get(
                header.rom_mapping, f"Unknown (0x{header.rom_mapping:02X})"))
            fields.add_string("Cartridge HW", _snes_cart_hw(header.rom_type))
            fields.add_string("Region", SNES_DESTINATION_NAMES.get(
                header.destination_code, f"Unknown (0x{header.destination_code:02X})"))
            fields.add_string("Revision", f"1.{header.version:02d}")

        fields.add_string("Checksum", f"0x{header.checksum:04X}")

    @staticmethod
    def _add_bsx_fields(fields: RomFields, header: BsxHeader) -> None:
        if header.has_ext:
            fields.add_string("Publisher", decode_text(header.new_publisher_code))
        program = _BSX_PROGRAM_TYPE_NAMES.get(
            header.program_type, f"Unknown (0x{header.program_type:08X})")
        fields.add_string("Program Type", program)
        fields.add_string("ROM Mapping", SNES_ROM_MAPPING_NAMES.get(
            header.rom_mapping, f"Unknown (0x{header.rom_mapping:02X})"))
        if header.broadcast_month:
            fields.add_string("Broadcast Date", f"{header.broadcast_month:02d}/{header.broadcast_day:02d}")
        else:
            fields.add_string("Broadcast Date", "Unknown")


# ── Detection ───────────────────────────────────────────────────────────────

# Probe order: first match wins.
_FORMATS: tuple[type[RomData], ...] = (XboxDisc, IsoImage, SnesRom)


def detect(stream: ByteStream, config: Optional[Config] = None) -> Optional[RomData]:
    """Identify the image in *stream* and return an opened :class:`RomData`.

    A recognised sparse container (CISO, WBFS, GCZ) is unwrapped first and
    the formats are probed against its logical disc. Returns ``None`` for an
    unknown format.
    """
    config = config or Config()
    if stream is None or not stream.is_open():
        return None
    container = open_container(stream, config)
    source = container if container is not None else stream
    try:
        for cls in _FORMATS:
            rom = cls(source, config)
            if rom.is_valid:
                logger.debug("detected %s", cls.__name__)
                return rom
            rom.close()
        return None
    finally:
        # Every RomData keeps its own dup of the container.
        if container is not None:
            container.close()

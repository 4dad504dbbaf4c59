"""Format classification heuristics.

Every function here answers "is this that format?" and reports a mismatch
as ``None`` / ``False`` / a zero score, never as an exception: the same
bytes may legitimately belong to a sibling format that the caller tries next.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .format import (
    ISO_PVD_TIME_SIZE,
    SNES_BSX_HIROM_MAPPINGS,
    SNES_BSX_LOROM_MAPPINGS,
    SNES_COPIER_HEADER_SIZE,
    SNES_DESTINATION_NAMES,
    SNES_EXT_HEADER_PRESENT,
    SNES_HEADER_SIZE,
    SNES_HIROM_HEADER_ADDRESS,
    SNES_HIROM_MAPPINGS,
    SNES_LOROM_HEADER_ADDRESS,
    SNES_LOROM_MAPPINGS,
    XGD3_PVD_TIME_SUFFIXES,
    XGD_PVD_TIMES,
    DiscType,
)
from .headers import IsoPvd, PvdTime, SnesHeader, SnesVectors, decode_snes_header
from .stream import ByteStream

logger = logging.getLogger("romprops")

# Minimum SNES score: valid checksum pair plus a mapping byte that agrees
# with the header's location.
SNES_MIN_SCORE = 6


# ── ISO-9660 timestamps ─────────────────────────────────────────────────────


def pvd_time_to_unix(raw: bytes) -> Optional[int]:
    """Convert a 17-byte ISO-9660 timestamp to Unix seconds.

    Returns ``None`` for an unset (all zero) timestamp, non-digit text, an
    impossible date, or a timezone offset outside -48..+52.
    """
    if len(raw) != ISO_PVD_TIME_SIZE:
        return None
    t = PvdTime.unpack(raw)
    digits = t.full
    if not digits.strip(b"\0") or digits == b"0" * 16:
        return None
    if not digits.isdigit():
        return None
    if not -48 <= t.tz_offset <= 52:
        return None

    try:
        dt = datetime(
            int(digits[0:4]), int(digits[4:6]), int(digits[6:8]),
            int(digits[8:10]), int(digits[10:12]), int(digits[12:14]),
            tzinfo=timezone.utc,
        )
    except ValueError:
        return None
    # Centiseconds (digits[14:16]) are dropped.
    return int(dt.timestamp()) - t.tz_offset * 15 * 60


# ── Xbox disc generation ────────────────────────────────────────────────────


def lookup_xgd_wave(btime: int) -> Optional[tuple[int, int]]:
    """Exact-match a PVD creation time against known XGD1/XGD2 waves."""
    for xgd, wave, known in XGD_PVD_TIMES:
        if known == btime:
            return xgd, wave
    return None


def match_xgd3_pattern(raw_btime: bytes) -> bool:
    """Compare the time-of-day + timezone bytes against XGD3 patterns."""
    suffix = raw_btime[-9:]
    return any(suffix == pattern for pattern in XGD3_PVD_TIME_SUFFIXES)


def classify_xgd(pvd: IsoPvd, xgd3_heuristic: bool = True) -> Optional[tuple[int, int]]:
    """Return ``(generation, wave)`` if the PVD identifies an Xbox game disc.

    XGD3 matches come from a best-effort pattern on the encoded time and
    always report wave 0.
    """
    raw_btime = pvd.btime.pack()
    btime = pvd_time_to_unix(raw_btime)
    if btime is None:
        logger.debug("XGD: unparsable PVD creation time %r", raw_btime)
        return None

    hit = lookup_xgd_wave(btime)
    if hit is not None:
        return hit

    if xgd3_heuristic and match_xgd3_pattern(raw_btime):
        return int(DiscType.XGD3), 0

    logger.debug("XGD: PVD creation time %d matches no known wave", btime)
    return None


# ── SNES ────────────────────────────────────────────────────────────────────


def is_snes_checksum_valid(header: SnesHeader) -> bool:
    return (header.checksum ^ header.checksum_complement) == 0xFFFF


def _is_title_plausible(title: bytes) -> bool:
    text = title.rstrip(b"\0 ")
    if not text:
        return False
    # Control characters never appear in real titles; high bytes may be Shift-JIS.
    return all(b >= 0x20 for b in text)


def score_snes_header(raw: bytes, hirom: bool, bsx: bool = False) -> int:
    """Score an 80-byte candidate SNES header; 0 means implausible.

    A checksum / complement mismatch or a mapping byte that disagrees with
    *hirom* is rejected. Points are then added for sane size and region
    fields and a printable title.
    """
    if len(raw) != SNES_HEADER_SIZE:
        return 0
    header, _vectors = decode_snes_header(raw, bsx=bsx)
    if not is_snes_checksum_valid(header):
        return 0

    score = 4
    if bsx:
        mappings = SNES_BSX_HIROM_MAPPINGS if hirom else SNES_BSX_LOROM_MAPPINGS
        if header.old_publisher_code not in (SNES_EXT_HEADER_PRESENT, 0x00):
            return 0
        if header.rom_mapping not in mappings:
            return 0
        score += 2
        if 1 <= header.broadcast_month <= 12 and header.broadcast_day >= 1:
            score += 1
    else:
        mappings = SNES_HIROM_MAPPINGS if hirom else SNES_LOROM_MAPPINGS
        if header.rom_mapping not in mappings:
            return 0
        score += 2
        if 0x07 <= header.rom_size <= 0x0D:
            score += 1
        if header.sram_size <= 0x07:
            score += 1
        if header.destination_code in SNES_DESTINATION_NAMES:
            score += 1

    if _is_title_plausible(header.title):
        score += 1
    return score


@dataclass(frozen=True)
class SnesMatch:
    """Best-scoring SNES header candidate."""

    address: int           # physical file offset of the 80-byte header
    hirom: bool
    bsx: bool
    score: int
    header: SnesHeader
    vectors: SnesVectors


# Tie-break order: LoROM before HiROM, standard layout before BS-X.
_SNES_CANDIDATES = (
    (SNES_LOROM_HEADER_ADDRESS, False, False),
    (SNES_LOROM_HEADER_ADDRESS, False, True),
    (SNES_HIROM_HEADER_ADDRESS, True, False),
    (SNES_HIROM_HEADER_ADDRESS, True, True),
)


def classify_snes(stream: ByteStream) -> Optional[SnesMatch]:
    """Find the most plausible SNES header in *stream*, or ``None``."""
    size = stream.size()
    base = SNES_COPIER_HEADER_SIZE if size >= 0 and size % 1024 == SNES_COPIER_HEADER_SIZE else 0

    best: Optional[SnesMatch] = None
    raw_cache: dict[int, bytes] = {}
    for address, hirom, bsx in _SNES_CANDIDATES:
        phys = base + address
        if phys not in raw_cache:
            raw_cache[phys] = stream.seek_and_read(phys, SNES_HEADER_SIZE)
        raw = raw_cache[phys]
        if len(raw) != SNES_HEADER_SIZE:
            continue

        score = score_snes_header(raw, hirom, bsx)
        if score < SNES_MIN_SCORE:
            continue
        if best is None or score > best.score:
            header, vectors = decode_snes_header(raw, bsx=bsx)
            best = SnesMatch(phys, hirom, bsx, score, header, vectors)

    if best is None:
        logger.debug("SNES: no plausible header candidate")
    return best

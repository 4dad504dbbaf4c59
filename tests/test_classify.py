"""Timestamp conversion, Xbox wave classification and SNES header scoring."""

from __future__ import annotations

import pytest

from romprops.classify import (
    classify_snes,
    classify_xgd,
    is_snes_checksum_valid,
    lookup_xgd_wave,
    match_xgd3_pattern,
    pvd_time_to_unix,
    score_snes_header,
)
from romprops.format import SNES_HIROM_HEADER_ADDRESS, SNES_LOROM_HEADER_ADDRESS, XGD_PVD_TIMES
from romprops.headers import IsoPvd, decode_snes_header
from romprops.stream import MemoryStream

from imagegen import (
    XGD1_BTIME,
    XGD2_W1_BTIME,
    XGD3_BTIME,
    make_bsx_header,
    make_pvd,
    make_snes_header,
    make_snes_rom,
    pvd_time,
)


# ── pvd_time_to_unix ────────────────────────────────────────────────────────


@pytest.mark.parametrize("raw,expected", [
    (pvd_time("1970010100000000", 0), 0),
    (pvd_time("2019010112000000", 0), 1546344000),
    (pvd_time("2019010112000099", 0), 1546344000),      # centiseconds dropped
    (pvd_time("2019010112000000", 4), 1546344000 - 3600),
    (XGD1_BTIME, 1000334575),
    (XGD2_W1_BTIME, 1128716326),
])
def test_pvd_time_to_unix(raw, expected):
    assert pvd_time_to_unix(raw) == expected


@pytest.mark.parametrize("raw", [
    bytes(17),                                  # unset
    pvd_time("0000000000000000", 0),            # unset, ASCII zeros
    pvd_time("20190101120000  ", 0),            # non-digit
    pvd_time("2019133112000000", 0),            # month 13
    pvd_time("2019010112000000", 53),           # tz too far east
    pvd_time("2019010112000000", -49),          # tz too far west
    b"2019",                                    # wrong length
])
def test_pvd_time_malformed(raw):
    assert pvd_time_to_unix(raw) is None


# ── XGD ─────────────────────────────────────────────────────────────────────


def test_xgd_wave_table_lookup():
    assert lookup_xgd_wave(1000334575) == (1, 0)
    assert lookup_xgd_wave(1128716326) == (2, 1)
    assert lookup_xgd_wave(1430092800) == (2, 20)
    assert lookup_xgd_wave(0) is None
    assert lookup_xgd_wave(1000334576) is None


def test_xgd_table_is_unique():
    epochs = [t for _, _, t in XGD_PVD_TIMES]
    assert len(set(epochs)) == len(epochs)
    assert [w for g, w, _ in XGD_PVD_TIMES if g == 2] == list(range(1, 21))


def test_xgd3_pattern():
    assert match_xgd3_pattern(XGD3_BTIME)
    assert match_xgd3_pattern(pvd_time("2013061116000000", -32))
    assert not match_xgd3_pattern(pvd_time("2013061116000000", -28))
    assert not match_xgd3_pattern(pvd_time("2013061117000100", -28))


def _pvd(btime: bytes) -> IsoPvd:
    return IsoPvd.unpack(make_pvd(btime=btime))


def test_classify_xgd():
    assert classify_xgd(_pvd(XGD1_BTIME)) == (1, 0)
    assert classify_xgd(_pvd(XGD2_W1_BTIME)) == (2, 1)
    assert classify_xgd(_pvd(XGD3_BTIME)) == (3, 0)
    assert classify_xgd(_pvd(pvd_time("2019010112000000", 0))) is None
    assert classify_xgd(_pvd(pvd_time("1970010100000000", 0))) is None
    assert classify_xgd(_pvd(bytes(17))) is None


def test_classify_xgd_heuristic_disabled():
    assert classify_xgd(_pvd(XGD3_BTIME), xgd3_heuristic=False) is None
    # Table matches are unaffected.
    assert classify_xgd(_pvd(XGD1_BTIME), xgd3_heuristic=False) == (1, 0)


# ── SNES ────────────────────────────────────────────────────────────────────


def test_snes_checksum_complement():
    ok, _ = decode_snes_header(make_snes_header(checksum=0x1234, complement=0xEDCB))
    bad, _ = decode_snes_header(make_snes_header(checksum=0x1234, complement=0xEDCA))
    assert is_snes_checksum_valid(ok)
    assert not is_snes_checksum_valid(bad)


def test_score_rejects_bad_checksum():
    assert score_snes_header(make_snes_header(complement=0xEDCA), hirom=False) == 0


def test_score_rejects_mapping_mismatch():
    raw = make_snes_header(mapping=0x21)
    assert score_snes_header(raw, hirom=False) == 0
    assert score_snes_header(raw, hirom=True) > 0


def test_score_rewards_plausible_fields():
    good = score_snes_header(make_snes_header(), hirom=False)
    odd = score_snes_header(make_snes_header(rom_size=0x02, destination=0x40, title=b""), hirom=False)
    assert good > odd > 0


def test_score_bsx_broadcast_date():
    dated = score_snes_header(make_bsx_header(month=3, day=10), hirom=False, bsx=True)
    no_day = score_snes_header(make_bsx_header(month=3, day=0), hirom=False, bsx=True)
    no_month = score_snes_header(make_bsx_header(month=0, day=10), hirom=False, bsx=True)
    assert dated == no_day + 1 == no_month + 1


def test_score_wrong_length():
    assert score_snes_header(bytes(79), hirom=False) == 0


def test_classify_snes_lorom():
    m = classify_snes(MemoryStream(make_snes_rom(make_snes_header())))
    assert m is not None
    assert m.address == SNES_LOROM_HEADER_ADDRESS
    assert not m.hirom and not m.bsx
    assert m.header.checksum == 0x1234


def test_classify_snes_hirom():
    rom = make_snes_rom(make_snes_header(mapping=0x31), hirom=True)
    m = classify_snes(MemoryStream(rom))
    assert m.address == SNES_HIROM_HEADER_ADDRESS
    assert m.hirom


def test_classify_snes_copier_header():
    rom = make_snes_rom(make_snes_header(), copier=True)
    assert len(rom) % 1024 == 512
    m = classify_snes(MemoryStream(rom))
    assert m.address == SNES_LOROM_HEADER_ADDRESS + 512


def test_classify_snes_bsx():
    m = classify_snes(MemoryStream(make_snes_rom(make_bsx_header())))
    assert m.bsx
    assert m.header.broadcast_month == 3


def test_classify_snes_tie_prefers_lorom():
    rom = bytearray(make_snes_rom(make_snes_header(mapping=0x21), hirom=True))
    lo = make_snes_header(mapping=0x20)
    rom[SNES_LOROM_HEADER_ADDRESS : SNES_LOROM_HEADER_ADDRESS + 80] = lo
    m = classify_snes(MemoryStream(bytes(rom)))
    assert not m.hirom


def test_classify_snes_better_hirom_wins():
    rom = bytearray(make_snes_rom(make_snes_header(mapping=0x21), hirom=True))
    weak_lo = make_snes_header(mapping=0x20, rom_size=0x01, destination=0x40)
    rom[SNES_LOROM_HEADER_ADDRESS : SNES_LOROM_HEADER_ADDRESS + 80] = weak_lo
    m = classify_snes(MemoryStream(bytes(rom)))
    assert m.hirom


def test_classify_snes_nothing():
    assert classify_snes(MemoryStream(bytes(0x10000))) is None
    assert classify_snes(MemoryStream(b"short")) is None
    bad = make_snes_rom(make_snes_header(complement=0xEDCA))
    assert classify_snes(MemoryStream(bad)) is None

"""romprops – metadata extraction for game disc and cartridge images."""

__version__ = "0.1.0"

from .format import DiscType, DateTimeFlags
from .stream import (
    ByteStream, FileStream, HttpStream, MemoryStream,
    RomPropsError, StreamError, open_stream,
)
from .sparse import SparseBlockReader
from .containers import CisoReader, GczReader, WbfsReader, XdvdfsPartition, open_container
from .headers import (
    BsxHeader, IsoPvd, PvdTime, SnesCartHeader, SnesVectors, XdvdfsHeader,
    decode_snes_header, decode_text,
)
from .classify import classify_snes, classify_xgd, pvd_time_to_unix, score_snes_header
from .fields import Field, FieldType, RomFields
from .config import Config
from .romdata import IsoImage, RomData, SnesRom, SystemNameType, XboxDisc, detect

__all__ = [
    "__version__",
    "DiscType", "DateTimeFlags",
    "ByteStream", "FileStream", "HttpStream", "MemoryStream",
    "RomPropsError", "StreamError", "open_stream",
    "SparseBlockReader",
    "CisoReader", "GczReader", "WbfsReader", "XdvdfsPartition", "open_container",
    "BsxHeader", "IsoPvd", "PvdTime", "SnesCartHeader", "SnesVectors", "XdvdfsHeader",
    "decode_snes_header", "decode_text",
    "classify_snes", "classify_xgd", "pvd_time_to_unix", "score_snes_header",
    "Field", "FieldType", "RomFields",
    "Config",
    "IsoImage", "RomData", "SnesRom", "SystemNameType", "XboxDisc", "detect",
]

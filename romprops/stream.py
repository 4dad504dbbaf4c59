"""Random-access byte streams over local files, raw devices, memory, and HTTP.

Every format reader in this package consumes the :class:`ByteStream`
contract only; it never assumes a file path exists. Each stream owns its
own cursor, and :meth:`ByteStream.dup` hands out another cursor over the
same underlying bytes so independent readers never share a position.
"""

from __future__ import annotations

import copy
import io
import logging
import os
import stat
import threading
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from typing import Optional

from .format import MAX_RANGE_BYTES

logger = logging.getLogger("romprops")

DEFAULT_TIMEOUT = 20                     # seconds


# ── Exceptions ──────────────────────────────────────────────────────────────


class RomPropsError(Exception):
    """Base exception for romprops stream / format errors."""


class StreamError(RomPropsError):
    """Invalid stream operation (closed stream, negative seek, bad geometry)."""


# ── ByteStream contract ─────────────────────────────────────────────────────


class ByteStream(ABC):
    """Abstract random-access byte source.

    ``read`` never raises on end of data or I/O failure; it returns fewer
    bytes than requested and callers treat the short read as "no more data".
    """

    def __init__(self) -> None:
        self._pos = 0

    @abstractmethod
    def read(self, size: int = -1) -> bytes:
        """Read up to *size* bytes from the current position."""

    @abstractmethod
    def size(self) -> int:
        """Return total size in bytes, or -1 if unknown."""

    @abstractmethod
    def is_open(self) -> bool:
        """Return True if the stream can still be read."""

    @abstractmethod
    def dup(self) -> ByteStream:
        """Return an independent cursor over the same data."""

    @abstractmethod
    def close(self) -> None:
        """Release this cursor's resources."""

    def is_device(self) -> bool:
        return False

    def seek(self, pos: int) -> None:
        if not self.is_open():
            raise StreamError("seek on a closed stream")
        if pos < 0:
            raise StreamError(f"negative seek position: {pos}")
        self._pos = pos

    def tell(self) -> int:
        return self._pos

    def write(self, data: bytes) -> int:
        raise io.UnsupportedOperation(f"{type(self).__name__} is read-only")

    def seek_and_read(self, pos: int, size: int) -> bytes:
        """Seek to *pos* and read *size* bytes; ``b""`` if the seek fails."""
        try:
            self.seek(pos)
        except StreamError:
            return b""
        return self.read(size)

    def _clamp(self, size: int) -> int:
        """Clamp a read request to the bytes left before the end of data."""
        total = self.size()
        if total < 0:
            return max(size, 0)
        remaining = max(total - self._pos, 0)
        if size < 0 or size > remaining:
            return remaining
        return size

    def __enter__(self) -> ByteStream:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


# ── FileStream ──────────────────────────────────────────────────────────────


class _SharedFile:
    """OS file handle shared by every duplicated :class:`FileStream` cursor."""

    def __init__(self, path: str) -> None:
        self.path = path
        self.fd = open(path, "rb")  # noqa: SIM115
        self.lock = threading.Lock()
        self.refs = 1
        st = os.fstat(self.fd.fileno())
        self.is_device = stat.S_ISBLK(st.st_mode) or stat.S_ISCHR(st.st_mode)
        if self.is_device:
            # st_size is 0 for devices; ask the driver instead.
            try:
                self.size = self.fd.seek(0, os.SEEK_END)
            except OSError:
                self.size = -1
        else:
            self.size = st.st_size

    def pread(self, offset: int, length: int) -> bytes:
        # Use pread if available (Unix), else seek+read
        if hasattr(os, "pread"):
            return os.pread(self.fd.fileno(), length, offset)
        with self.lock:
            self.fd.seek(offset)
            return self.fd.read(length)

    def ref(self) -> None:
        with self.lock:
            self.refs += 1

    def unref(self) -> None:
        with self.lock:
            self.refs -= 1
            last = self.refs == 0
        if last:
            self.fd.close()


class FileStream(ByteStream):
    """Stream over a local file or raw block/character device."""

    def __init__(self, path: str, _shared: Optional[_SharedFile] = None) -> None:
        super().__init__()
        self.path = path
        if _shared is None:
            _shared = _SharedFile(path)
        else:
            _shared.ref()
        self._file: Optional[_SharedFile] = _shared

    def size(self) -> int:
        if self._file is None:
            return -1
        return self._file.size

    def is_open(self) -> bool:
        return self._file is not None

    def is_device(self) -> bool:
        return self._file is not None and self._file.is_device

    def read(self, size: int = -1) -> bytes:
        if self._file is None:
            return b""
        length = self._clamp(size)
        if length == 0:
            return b""
        try:
            data = self._file.pread(self._pos, length)
        except OSError as exc:
            logger.warning("read error in %r at offset %d: %s", self.path, self._pos, exc)
            return b""
        self._pos += len(data)
        return data

    def dup(self) -> FileStream:
        if self._file is None:
            raise StreamError("dup of a closed stream")
        other = FileStream(self.path, _shared=self._file)
        other._pos = self._pos
        return other

    def close(self) -> None:
        if self._file is not None:
            self._file.unref()
            self._file = None


# ── MemoryStream ────────────────────────────────────────────────────────────


class MemoryStream(ByteStream):
    """Stream over an in-memory buffer."""

    def __init__(self, data: bytes) -> None:
        super().__init__()
        self._data: Optional[bytes] = bytes(data)

    def size(self) -> int:
        if self._data is None:
            return -1
        return len(self._data)

    def is_open(self) -> bool:
        return self._data is not None

    def read(self, size: int = -1) -> bytes:
        if self._data is None:
            return b""
        length = self._clamp(size)
        data = self._data[self._pos : self._pos + length]
        self._pos += len(data)
        return data

    def dup(self) -> MemoryStream:
        if self._data is None:
            raise StreamError("dup of a closed stream")
        other = MemoryStream(self._data)
        other._pos = self._pos
        return other

    def close(self) -> None:
        self._data = None


# ── HttpStream ──────────────────────────────────────────────────────────────


class HttpStream(ByteStream):
    """Stream over an HTTP(S) URL using ``Range`` requests."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Optional[dict] = None,
        max_range_bytes: int = MAX_RANGE_BYTES,
    ) -> None:
        super().__init__()
        self.url = url
        self.timeout = timeout
        self.headers = headers or {}
        self.max_range_bytes = max_range_bytes
        self._size = -1
        self._supports_range = False
        self._open = True
        self._probe()

    def _probe(self) -> None:
        """Send HEAD request to determine size and Range support."""
        req = urllib.request.Request(self.url, method="HEAD", headers=self.headers)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                self._size = int(resp.headers.get("Content-Length", 0)) or -1
                accept_ranges = resp.headers.get("Accept-Ranges", "").lower()
                self._supports_range = accept_ranges == "bytes"
        except urllib.error.URLError as exc:
            # HEAD may fail; GET with Range is still attempted on read.
            logger.debug("HEAD %s failed: %s", self.url, exc)

    def size(self) -> int:
        return self._size

    def is_open(self) -> bool:
        return self._open

    def read(self, size: int = -1) -> bytes:
        if not self._open:
            return b""
        length = self._clamp(size)
        if length == 0:
            return b""
        chunks = []
        offset = self._pos
        remaining = length
        try:
            while remaining > 0:
                chunk_len = min(remaining, self.max_range_bytes)
                chunk = self._fetch_range(offset, chunk_len)
                chunks.append(chunk)
                offset += len(chunk)
                remaining -= len(chunk)
                if len(chunk) != chunk_len:
                    break
        except OSError as exc:
            logger.warning("HTTP read of %s at offset %d failed: %s", self.url, offset, exc)
        data = b"".join(chunks)
        self._pos += len(data)
        return data

    def _fetch_range(self, start: int, length: int) -> bytes:
        """Fetch a single range via HTTP Range header."""
        end = start + length - 1
        headers = dict(self.headers)
        headers["Range"] = f"bytes={start}-{end}"

        req = urllib.request.Request(self.url, headers=headers)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                if resp.status == 206:
                    return resp.read(length)
                elif resp.status == 200:
                    # Server ignores Range; read and slice
                    if self._size < 0 or self._size > self.max_range_bytes:
                        raise OSError(
                            "server does not support Range requests and "
                            "the resource exceeds the safety cap"
                        )
                    data = resp.read()
                    return data[start : start + length]
                else:
                    raise OSError(f"unexpected HTTP status {resp.status}")
        except urllib.error.URLError as e:
            raise OSError(f"HTTP request failed: {e}") from e

    def dup(self) -> HttpStream:
        if not self._open:
            raise StreamError("dup of a closed stream")
        # Shares url/size/headers; no second HEAD request.
        return copy.copy(self)

    def close(self) -> None:
        self._open = False


# ── Factory ─────────────────────────────────────────────────────────────────


def open_stream(path_or_url: str, config=None) -> ByteStream:
    """Open a ByteStream for a local path or HTTP(S) URL."""
    if path_or_url.startswith("http://") or path_or_url.startswith("https://"):
        if config is None:
            return HttpStream(path_or_url)
        return HttpStream(
            path_or_url,
            timeout=config.http_timeout,
            max_range_bytes=config.max_range_bytes,
        )
    return FileStream(path_or_url)

"""Explicit configuration passed to stream openers and format readers."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .format import MAX_RANGE_BYTES
from .stream import DEFAULT_TIMEOUT

logger = logging.getLogger("romprops")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Config:
    """Reader settings.

    There is no process-wide instance: build one (or use the defaults) and
    hand it to :func:`romprops.detect` / :func:`romprops.open_stream`.
    """

    http_timeout: float = DEFAULT_TIMEOUT
    max_range_bytes: int = MAX_RANGE_BYTES
    verify_gcz_hashes: bool = True
    xgd3_heuristic: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Config:
        """Build a Config from ``ROMPROPS_*`` environment variables.

        Unparsable values are logged and the default is kept.
        """
        env = os.environ if environ is None else environ
        kwargs: dict = {}

        timeout = _parse(env, "ROMPROPS_HTTP_TIMEOUT", float)
        if timeout is not None and timeout > 0:
            kwargs["http_timeout"] = timeout

        max_mb = _parse(env, "ROMPROPS_MAX_RANGE_MB", int)
        if max_mb is not None and max_mb > 0:
            kwargs["max_range_bytes"] = max_mb * 1024 * 1024

        verify = _parse(env, "ROMPROPS_VERIFY_GCZ", _to_bool)
        if verify is not None:
            kwargs["verify_gcz_hashes"] = verify

        xgd3 = _parse(env, "ROMPROPS_XGD3_HEURISTIC", _to_bool)
        if xgd3 is not None:
            kwargs["xgd3_heuristic"] = xgd3

        return cls(**kwargs)


def _to_bool(value: str) -> bool:
    v = value.strip().lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _parse(env: Mapping[str, str], name: str, conv):
    raw = env.get(name, "").strip()
    if not raw:
        return None
    try:
        return conv(raw)
    except ValueError:
        logger.warning("ignoring invalid %s=%r", name, raw)
        return None

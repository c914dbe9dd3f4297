"""Shared helper functions used by the client workflow."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    try:
        raw = os.getenv(name, "")
        return float(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _env_bool(name: str, default: str = "0") -> bool:
    raw = os.getenv(name, default)
    return str(raw).strip().lower() not in {"0", "false", "no", "off", ""}


def idna_normalize(host: str) -> str:
    """Return a lowercase, IDNA-normalized host name."""

    h = (host or "").strip().rstrip(".").lower()
    if not h:
        return ""
    try:
        h = h.encode("idna").decode("ascii")
    except UnicodeError:
        pass
    return h


def host_of(url: str) -> str:
    return idna_normalize(urlparse(url or "").hostname or "")


def path_of(url: str) -> str:
    return urlparse(url or "").path or "/"


def same_host(url: str, other: str) -> bool:
    """Return True when both URLs point at the same (normalized) host."""

    left, right = host_of(url), host_of(other)
    return bool(left) and left == right


def split_pool(raw: str, sep: str = "|") -> Tuple[str, ...]:
    """Split an env-provided pool into stripped, non-empty tokens."""

    return tuple(token.strip() for token in (raw or "").split(sep) if token.strip())


def atomic_write_bytes(path: Path, payload: bytes) -> None:
    """Write ``payload`` to ``path`` via a same-directory temp file + rename.

    The rename is the only commit point: readers see either the previous
    complete file or the new one. The temp file is removed on any failure.
    """

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path: Optional[str] = None
    try:
        with tempfile.NamedTemporaryFile(
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp_path = tmp.name
            tmp.write(payload)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_path, path)
        tmp_path = None
    finally:
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning("could not remove temp file %s: %s", tmp_path, exc)


def sanity_check() -> None:
    assert idna_normalize("SPOT.UPI.EDU.") == "spot.upi.edu"
    assert same_host("https://spot.upi.edu/mhs", "https://SPOT.upi.edu/beranda")
    assert not same_host("https://sso.upi.edu/cas/login", "https://spot.upi.edu/")
    assert split_pool(" a | b ||") == ("a", "b")


sanity_check()

__all__ = [
    "idna_normalize",
    "host_of",
    "path_of",
    "same_host",
    "split_pool",
    "atomic_write_bytes",
    "sanity_check",
]

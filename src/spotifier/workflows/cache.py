"""Cache backends for portal responses.

``CacheBackend`` is the contract the client depends on: three synchronous
operations over opaque byte payloads scoped by a namespace prefix. Cache I/O
is synchronous; a request only awaits on the pacing sleep and the transport.

``FileCache`` is the durable default. Every ``set`` goes through a temp file
in the destination directory followed by ``os.replace``, which makes the
rename the sole commit point: readers observe the previous complete entry or
the new complete entry, and a crash mid-write leaves the previous entry in
place. Concurrent writers on one key race on the rename; one full payload
wins.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol, Tuple, runtime_checkable

from ..core.errors import CacheReadError, CacheWriteError
from ..core.keys import K_CREATED_AT, K_HEADER_VERSION, K_KEY, K_SIZE
from .spot_config import CACHE_FORMAT_VERSION
from .spot_utils import atomic_write_bytes

logger = logging.getLogger(__name__)

ENTRY_SUFFIX = ".entry"
_NAMESPACE_SAFE = frozenset("abcdefghijklmnopqrstuvwxyz0123456789-_.")


@runtime_checkable
class CacheBackend(Protocol):
    """Key-value storage of byte payloads, namespaced by a caller prefix."""

    def get(self, namespace: str, key: str) -> Optional[bytes]: ...

    def set(self, namespace: str, key: str, payload: bytes) -> None: ...

    def invalidate(self, namespace: str, key: str) -> None: ...


@dataclass(frozen=True)
class CacheEntry:
    """One committed cache value."""

    namespace: str
    key: str
    payload: bytes
    created_at: float


def namespace_dirname(namespace: str) -> str:
    """Map a namespace to a directory name that cannot escape the cache root.

    Everything outside lowercase ASCII letters, digits and ``-_.`` is
    percent-encoded per UTF-8 byte with uppercase hex, so the mapping is
    injective even on case-insensitive filesystems.
    """

    encoded = "".join(
        ch if ch in _NAMESPACE_SAFE else "".join(f"%{b:02X}" for b in ch.encode("utf-8"))
        for ch in namespace
    )
    return f"ns-{encoded}"


def key_filename(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest() + ENTRY_SUFFIX


def _as_bytes(payload: bytes) -> bytes:
    if not isinstance(payload, (bytes, bytearray, memoryview)):
        raise TypeError(f"cache payload must be bytes, not {type(payload).__name__}")
    return bytes(payload)


class FileCache:
    """Crash-safe filesystem cache: one directory per namespace, one file per key."""

    def __init__(
        self,
        root: Path,
        *,
        max_age: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.root = Path(root)
        self.max_age = max_age
        self._clock = clock

    def entry_path(self, namespace: str, key: str) -> Path:
        return self.root / namespace_dirname(namespace) / key_filename(key)

    def get(self, namespace: str, key: str) -> Optional[bytes]:
        entry = self.read_entry(namespace, key)
        if entry is None:
            return None
        if self.max_age is not None and self._clock() - entry.created_at > self.max_age:
            logger.debug("cache entry %s/%s expired", namespace, key)
            return None
        return entry.payload

    def read_entry(self, namespace: str, key: str) -> Optional[CacheEntry]:
        """Return the committed entry (ignoring ``max_age``) or None."""

        path = self.entry_path(namespace, key)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CacheReadError(f"cannot read cache entry {path}: {exc}") from exc
        created_at, payload = self._decode(raw, key, path)
        return CacheEntry(namespace=namespace, key=key, payload=payload, created_at=created_at)

    def set(self, namespace: str, key: str, payload: bytes) -> None:
        body = _as_bytes(payload)
        header = {
            K_HEADER_VERSION: CACHE_FORMAT_VERSION,
            K_KEY: key,
            K_CREATED_AT: self._clock(),
            K_SIZE: len(body),
        }
        encoded = json.dumps(header, separators=(",", ":")).encode("utf-8") + b"\n"
        path = self.entry_path(namespace, key)
        try:
            atomic_write_bytes(path, encoded + body)
        except OSError as exc:
            raise CacheWriteError(f"cannot commit cache entry {path}: {exc}") from exc
        logger.debug("cached %s/%s (%d bytes)", namespace, key, len(body))

    def invalidate(self, namespace: str, key: str) -> None:
        path = self.entry_path(namespace, key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise CacheWriteError(f"cannot remove cache entry {path}: {exc}") from exc
        logger.debug("invalidated %s/%s", namespace, key)

    @staticmethod
    def _decode(raw: bytes, key: str, path: Path) -> Tuple[float, bytes]:
        head, sep, body = raw.partition(b"\n")
        if not sep:
            raise CacheReadError(f"cache entry {path} has no header")
        try:
            header = json.loads(head.decode("utf-8"))
        except ValueError as exc:
            raise CacheReadError(f"cache entry {path} has a corrupt header: {exc}") from exc
        if not isinstance(header, dict) or header.get(K_HEADER_VERSION) != CACHE_FORMAT_VERSION:
            raise CacheReadError(f"cache entry {path} has an unsupported header")
        if header.get(K_KEY) != key:
            raise CacheReadError(f"cache entry {path} belongs to a different key")
        created_at = header.get(K_CREATED_AT)
        if not isinstance(created_at, (int, float)) or isinstance(created_at, bool):
            raise CacheReadError(f"cache entry {path} has no creation time")
        if header.get(K_SIZE) != len(body):
            raise CacheReadError(
                f"cache entry {path} is truncated ({len(body)} of {header.get(K_SIZE)} bytes)"
            )
        return float(created_at), body


class MemoryCache:
    """Process-local cache with the same contract as ``FileCache``."""

    def __init__(
        self,
        *,
        max_age: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_age = max_age
        self._clock = clock
        self._entries: Dict[Tuple[str, str], CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, namespace: str, key: str) -> Optional[bytes]:
        with self._lock:
            entry = self._entries.get((namespace, key))
        if entry is None:
            return None
        if self.max_age is not None and self._clock() - entry.created_at > self.max_age:
            return None
        return entry.payload

    def set(self, namespace: str, key: str, payload: bytes) -> None:
        entry = CacheEntry(
            namespace=namespace,
            key=key,
            payload=_as_bytes(payload),
            created_at=self._clock(),
        )
        with self._lock:
            self._entries[(namespace, key)] = entry

    def invalidate(self, namespace: str, key: str) -> None:
        with self._lock:
            self._entries.pop((namespace, key), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


__all__ = [
    "CacheBackend",
    "CacheEntry",
    "FileCache",
    "MemoryCache",
    "namespace_dirname",
    "key_filename",
]

"""In-memory session state and its persisted snapshot form.

A snapshot file looks like::

    {"version": 1, "saved_at": "2026-01-02T15:30:45Z", "period": "20251",
     "cookies": {"spot.upi.edu": {"laravel_session": "..."}}}
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from ..core.errors import SnapshotFormatError
from ..core.keys import K_COOKIES, K_PERIOD, K_SAVED_AT, K_VERSION
from .models import Period
from .spot_config import SNAPSHOT_VERSION
from .spot_utils import atomic_write_bytes, idna_normalize

logger = logging.getLogger(__name__)

CookieMap = Dict[str, Dict[str, str]]


class SessionState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    INVALIDATED = "invalidated"


def copy_cookies(cookies: Mapping[str, Mapping[str, str]]) -> CookieMap:
    """Deep-copy a cookie map, normalizing domains and dropping empty jars."""

    result: CookieMap = {}
    for domain, values in cookies.items():
        host = idna_normalize(domain.lstrip("."))
        if not host or not values:
            continue
        result.setdefault(host, {}).update({str(k): str(v) for k, v in values.items()})
    return result


def merge_cookies(base: Mapping[str, Mapping[str, str]], update: Mapping[str, Mapping[str, str]]) -> CookieMap:
    merged = copy_cookies(base)
    for domain, values in copy_cookies(update).items():
        merged.setdefault(domain, {}).update(values)
    return merged


def _utc_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class SessionSnapshot:
    cookies: CookieMap = field(default_factory=dict)
    period: Optional[str] = None
    saved_at: str = ""

    @property
    def is_empty(self) -> bool:
        return not any(self.cookies.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            K_VERSION: SNAPSHOT_VERSION,
            K_SAVED_AT: self.saved_at,
            K_PERIOD: self.period,
            K_COOKIES: copy_cookies(self.cookies),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)

    @classmethod
    def from_dict(cls, data: Any) -> "SessionSnapshot":
        if not isinstance(data, dict):
            raise SnapshotFormatError("snapshot must be a JSON object")
        if data.get(K_VERSION) != SNAPSHOT_VERSION:
            raise SnapshotFormatError(f"unsupported snapshot version: {data.get(K_VERSION)!r}")
        raw_cookies = data.get(K_COOKIES)
        if not isinstance(raw_cookies, dict):
            raise SnapshotFormatError("snapshot cookies must be an object keyed by domain")
        for domain, values in raw_cookies.items():
            if not isinstance(values, dict) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in values.items()
            ):
                raise SnapshotFormatError(f"cookies for {domain!r} must map names to strings")
        period = data.get(K_PERIOD)
        if period is not None:
            if not isinstance(period, str):
                raise SnapshotFormatError("snapshot period must be a string or null")
            try:
                Period.parse(period)
            except ValueError as exc:
                raise SnapshotFormatError(str(exc)) from exc
        saved_at = data.get(K_SAVED_AT) or ""
        return cls(cookies=copy_cookies(raw_cookies), period=period, saved_at=str(saved_at))

    @classmethod
    def from_json(cls, text: str) -> "SessionSnapshot":
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise SnapshotFormatError(f"snapshot is not valid JSON: {exc}") from exc
        return cls.from_dict(data)

    def write(self, path: Path) -> None:
        atomic_write_bytes(Path(path), self.to_json().encode("utf-8"))
        logger.info("session snapshot saved to %s", path)

    @classmethod
    def read(cls, path: Path) -> "SessionSnapshot":
        try:
            text = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise SnapshotFormatError(f"cannot read snapshot {path}: {exc}") from exc
        return cls.from_json(text)


class SessionStore:
    """Cookies, selected period and the explicit authentication state.

    ``generation`` changes whenever the session is replaced or dropped, so a
    response can be matched to the session it was sent with.
    """

    def __init__(self) -> None:
        self.state = SessionState.UNAUTHENTICATED
        self._cookies: CookieMap = {}
        self.period: Optional[str] = None
        self.generation = 0

    @property
    def cookies(self) -> CookieMap:
        return copy_cookies(self._cookies)

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    def begin_authentication(self) -> None:
        self.state = SessionState.AUTHENTICATING

    def mark_authenticated(self, cookies: Mapping[str, Mapping[str, str]], period: Optional[str] = None) -> None:
        self._cookies = copy_cookies(cookies)
        self.period = period
        self.state = SessionState.AUTHENTICATED
        self.generation += 1

    def merge(self, cookies: Mapping[str, Mapping[str, str]]) -> None:
        self._cookies = merge_cookies(self._cookies, cookies)

    def select_period(self, code: str, cookies: Optional[Mapping[str, Mapping[str, str]]] = None) -> None:
        if cookies:
            self.merge(cookies)
        self.period = code

    def invalidate(self) -> None:
        self._cookies = {}
        self.period = None
        self.state = SessionState.INVALIDATED
        self.generation += 1

    def reset(self) -> None:
        self._cookies = {}
        self.period = None
        self.state = SessionState.UNAUTHENTICATED
        self.generation += 1

    def snapshot(self) -> SessionSnapshot:
        if not self.is_authenticated:
            return SessionSnapshot(saved_at=_utc_now())
        return SessionSnapshot(cookies=self.cookies, period=self.period, saved_at=_utc_now())

    def restore(self, snapshot: SessionSnapshot) -> None:
        if snapshot.is_empty:
            raise SnapshotFormatError("snapshot holds no cookies")
        self.mark_authenticated(snapshot.cookies, snapshot.period)


__all__ = [
    "CookieMap",
    "SessionState",
    "SessionSnapshot",
    "SessionStore",
    "copy_cookies",
    "merge_cookies",
]

"""Environment and session diagnostics behind ``spotifier doctor``.

The report is a plain dict (``generated_at``, ``ok``, ``checks``) so it can be
printed or dumped as JSON. Only ``warn`` checks can flip ``ok``; ``info``
checks are advisory. Credential values are never reported in clear text.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.errors import SnapshotFormatError
from .client import ClientConfig
from .session_store import SessionSnapshot

CREDENTIAL_VARS = ("SPOT_NIM", "SPOT_PASSWORD")
_SENSITIVE_MARKERS = ("password", "secret", "token", "cookie")


def redact_value(value: str, keep: int = 4) -> str:
    """Keep ``keep`` characters at each end; mask short values entirely."""

    text = (value or "").strip()
    if len(text) <= keep * 2:
        return "*" * len(text)
    return text[:keep] + "..." + text[-keep:]


def _display_value(name: str, value: str) -> str:
    if name in CREDENTIAL_VARS or any(marker in name.lower() for marker in _SENSITIVE_MARKERS):
        return redact_value(value)
    return value


def _writable_dir(path: Path) -> bool:
    """True if ``path`` is a writable directory or its nearest existing ancestor is."""

    for candidate in (path, *path.parents):
        if candidate.exists():
            return candidate.is_dir() and os.access(candidate, os.W_OK)
    return False


class _Report:
    def __init__(self) -> None:
        stamp = datetime.now(timezone.utc).replace(microsecond=0)
        self.data: Dict[str, Any] = {
            "generated_at": stamp.isoformat().replace("+00:00", "Z"),
            "ok": True,
            "checks": [],
        }

    def check(
        self,
        name: str,
        passed: bool,
        detail: str,
        *,
        remedy: Optional[str] = None,
        level: str = "warn",
        value: Optional[str] = None,
    ) -> None:
        entry: Dict[str, Any] = {
            "name": name,
            "status": "ok" if passed else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy and not passed:
            entry["remedy"] = remedy
        if value is not None:
            entry["value"] = _display_value(name, value)
        self.data["checks"].append(entry)
        if level == "warn" and not passed:
            self.data["ok"] = False


def _session_check(report: _Report, path: Path) -> None:
    remedy = "Run `spotifier login` to create a fresh session."
    if not path.exists():
        report.check("SPOT_SESSION_PATH", False, f"{path} (no saved session)", remedy=remedy, level="info")
        return
    try:
        snapshot = SessionSnapshot.read(path)
    except SnapshotFormatError as exc:
        report.check("SPOT_SESSION_PATH", False, f"{path}: {exc}", remedy=f"Delete the file. {remedy}")
        return
    report.check(
        "SPOT_SESSION_PATH",
        not snapshot.is_empty,
        f"{path} (saved {snapshot.saved_at or 'unknown'}, period {snapshot.period or 'portal default'})",
        remedy=remedy,
    )


def build_doctor_report(config: Optional[ClientConfig] = None) -> Dict[str, Any]:
    config = config or ClientConfig.from_env()
    report = _Report()

    for name in CREDENTIAL_VARS:
        value = os.getenv(name)
        report.check(
            name,
            bool(value),
            "set" if value else "not set; `login` will need --nim/--password",
            remedy=f"Export {name} or put it in .env.",
            level="info",
            value=value,
        )

    if config.cache_dir is None:
        report.check("SPOT_CACHE_DIR", True, "caching disabled", level="info")
    else:
        cache_dir = Path(config.cache_dir)
        report.check(
            "SPOT_CACHE_DIR",
            _writable_dir(cache_dir),
            f"{cache_dir} (namespace {config.cache_namespace!r})",
            remedy="Point SPOT_CACHE_DIR at a writable location.",
        )

    _session_check(report, Path(config.session_path))

    policy = config.delay_policy
    if policy.enabled:
        pacing = (
            f"routine {policy.routine.min_s:g}-{policy.routine.max_s:g}s, "
            f"post-login {policy.post_login.min_s:g}-{policy.post_login.max_s:g}s, "
            f"{len(policy.identities)} user agents"
        )
    else:
        pacing = "disabled by SPOT_DELAY_DISABLE"
    report.check("SPOT_DELAY", policy.enabled, pacing, remedy="Unset SPOT_DELAY_DISABLE.")
    return report.data


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = [
        "Spotifier doctor",
        f"Generated: {report.get('generated_at')}",
        f"Overall: {'ok' if report.get('ok') else 'attention needed'}",
        "",
    ]
    for check in report.get("checks", []):
        head = f"- [{check.get('level', 'info')}] {check.get('name')}: {check.get('status')}"
        if check.get("value"):
            head += f" ({check['value']})"
        lines.append(head)
        for field in ("detail", "remedy"):
            if check.get(field):
                lines.append(f"    {field}: {check[field]}")
    return "\n".join(lines) + "\n"


__all__ = ["build_doctor_report", "format_doctor_report", "redact_value"]

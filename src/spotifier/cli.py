from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Coroutine, Optional, TypeVar

import typer

from .core.errors import SessionExpiredError, SnapshotFormatError, SpotifierError
from .workflows.client import ClientConfig, SpotClient
from .workflows.doctor import build_doctor_report, format_doctor_report

app = typer.Typer(no_args_is_help=True, add_completion=False, help="Paced client for the SPOT portal.")

T = TypeVar("T")


def _build_client() -> SpotClient:
    return SpotClient(ClientConfig.from_env())


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


def _resume(client: SpotClient) -> None:
    path = Path(client.config.session_path)
    if not path.exists():
        typer.echo(f"error: no saved session at {path}; run `spotifier login` first", err=True)
        raise typer.Exit(code=2)
    try:
        client.load_session_file(path)
    except SnapshotFormatError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)


def _fail(exc: Exception) -> typer.Exit:
    if isinstance(exc, SessionExpiredError):
        typer.echo(f"error: {exc} (run `spotifier login`)", err=True)
        return typer.Exit(code=2)
    if isinstance(exc, SpotifierError):
        typer.echo(f"error: {exc}", err=True)
        return typer.Exit(code=2)
    typer.echo(f"fatal: {exc}", err=True)
    return typer.Exit(code=3)


def _emit_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False) + "\n")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command("login", add_help_option=True)
def login_cmd(
    nim: Optional[str] = typer.Option(None, "--nim", help="Student ID (default: SPOT_NIM)."),
    password: Optional[str] = typer.Option(None, "--password", help="Password (default: SPOT_PASSWORD)."),
) -> None:
    """Log in through SSO and save the session."""
    client = _build_client()
    nim = nim or os.getenv("SPOT_NIM")
    password = password or os.getenv("SPOT_PASSWORD")
    if not nim or not password:
        typer.echo("error: credentials missing; pass --nim/--password or set SPOT_NIM/SPOT_PASSWORD", err=True)
        raise typer.Exit(code=2)
    try:
        _run(client.login(nim, password))
        path = client.save_session_file()
    except Exception as exc:
        raise _fail(exc)
    typer.echo(f"logged in; session saved to {path}")


@app.command("logout", add_help_option=True)
def logout_cmd() -> None:
    """Forget the saved session."""
    client = _build_client()
    path = Path(client.config.session_path)
    try:
        path.unlink()
    except FileNotFoundError:
        typer.echo("no saved session")
        return
    typer.echo(f"removed {path}")


@app.command("profile", add_help_option=True)
def profile_cmd(json_out: bool = typer.Option(False, "--json", help="Print JSON to stdout.")) -> None:
    """Show the logged-in student."""
    client = _build_client()
    _resume(client)
    try:
        user = _run(client.fetch_user_profile())
    except Exception as exc:
        raise _fail(exc)
    if json_out:
        _emit_json(user.to_dict())
        return
    typer.echo(f"{user.name} ({user.nim})")


@app.command("courses", add_help_option=True)
def courses_cmd(json_out: bool = typer.Option(False, "--json", help="Print JSON to stdout.")) -> None:
    """List courses of the active period."""
    client = _build_client()
    _resume(client)
    try:
        courses = _run(client.fetch_courses())
    except Exception as exc:
        raise _fail(exc)
    if json_out:
        _emit_json([course.to_dict() for course in courses])
        return
    for course in courses:
        typer.echo(f"{course.id:>6}  {course.code:<10} {course.name} ({course.credits} SKS) - {course.lecturer}")


@app.command("period", add_help_option=True)
def period_cmd(code: Optional[str] = typer.Argument(None, help="Switch to this period, e.g. 20251.")) -> None:
    """Show the active period, or switch to CODE."""
    client = _build_client()
    _resume(client)
    try:
        if code is None:
            typer.echo(_run(client.current_period_info()))
            return
        _run(client.switch_period(code))
        client.save_session_file()
    except Exception as exc:
        raise _fail(exc)
    typer.echo(f"active period: {code}")


@app.command("doctor", add_help_option=True)
def doctor_cmd() -> None:
    """Print environment and session diagnostics."""
    report = build_doctor_report()
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)

"""HTTP transport used by the client.

The transport holds no cookies between calls: each request is seeded from the
cookies it carries and the response reports the jar as it stood after the
exchange (redirects included), so the session store stays the single source
of truth.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol, Tuple, Union

import aiohttp
from yarl import URL

from ..core.errors import TransportError
from .session_store import CookieMap, copy_cookies
from .spot_config import ACCEPT_LANGUAGE, HDR_ACCEPT_LANGUAGE, REQUEST_TIMEOUT

logger = logging.getLogger(__name__)


@dataclass
class PortalRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: CookieMap = field(default_factory=dict)
    form: Optional[Dict[str, str]] = None
    # field name -> (file name, bytes); sent as multipart/form-data
    files: Optional[Dict[str, Tuple[str, bytes]]] = None


@dataclass
class PortalResponse:
    status: int
    url: str
    text: str
    cookies: CookieMap = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status < 400


class Transport(Protocol):
    async def send(self, request: PortalRequest) -> PortalResponse: ...


def _seed_jar(jar: aiohttp.CookieJar, cookies: CookieMap) -> None:
    for domain, values in cookies.items():
        jar.update_cookies(values, response_url=URL(f"https://{domain}/"))


def _jar_cookies(jar: aiohttp.CookieJar) -> CookieMap:
    result: Dict[str, Dict[str, str]] = {}
    for morsel in jar:
        domain = morsel["domain"]
        if not domain:
            continue
        result.setdefault(domain, {})[morsel.key] = morsel.value
    return copy_cookies(result)


def _request_body(request: PortalRequest) -> Union[aiohttp.FormData, Dict[str, str], None]:
    if request.files:
        data = aiohttp.FormData()
        for name, value in (request.form or {}).items():
            data.add_field(name, value)
        for name, (filename, payload) in request.files.items():
            data.add_field(name, payload, filename=filename, content_type="application/octet-stream")
        return data
    return request.form


class AiohttpTransport:
    """aiohttp transport; failures surface as ``TransportError``."""

    def __init__(
        self,
        *,
        timeout: float = REQUEST_TIMEOUT,
        accept_language: str = ACCEPT_LANGUAGE,
        verify_ssl: bool = True,
    ) -> None:
        self.timeout = timeout
        self.accept_language = accept_language
        self.verify_ssl = verify_ssl

    async def send(self, request: PortalRequest) -> PortalResponse:
        jar = aiohttp.CookieJar(unsafe=True)
        _seed_jar(jar, request.cookies)
        headers = {HDR_ACCEPT_LANGUAGE: self.accept_language, **request.headers}
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(cookie_jar=jar, timeout=timeout) as session:
                async with session.request(
                    request.method,
                    request.url,
                    data=_request_body(request),
                    headers=headers,
                    ssl=self.verify_ssl,
                    allow_redirects=True,
                ) as resp:
                    text = await resp.text(errors="replace")
                    status = resp.status
                    final_url = str(resp.url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransportError(f"{request.method} {request.url} failed: {exc!r}") from exc
        logger.debug("%s %s -> %s (%s)", request.method, request.url, status, final_url)
        return PortalResponse(status=status, url=final_url, text=text, cookies=_jar_cookies(jar))


__all__ = ["PortalRequest", "PortalResponse", "Transport", "AiohttpTransport"]

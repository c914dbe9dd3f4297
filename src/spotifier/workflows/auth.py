"""CAS single-sign-on handshake for the SPOT portal.

Three steps: GET the SSO login page for its ``execution`` token, POST the
credentials with that token, then confirm the redirect chain ended on the
portal host. Every request goes through the ``send`` callable handed in by
the client, so the handshake is paced like any other traffic.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, Protocol

from bs4 import BeautifulSoup

from ..core.errors import AuthenticationError, TransportError
from .session_store import CookieMap, merge_cookies
from .spot_config import BASE_URL, SSO_LOGIN_URL
from .spot_utils import host_of, same_host
from .transport import PortalRequest, PortalResponse

logger = logging.getLogger(__name__)

SendFunc = Callable[[PortalRequest], Awaitable[PortalResponse]]


class Authenticator(Protocol):
    async def authenticate(self, nim: str, password: str, send: SendFunc) -> CookieMap: ...


def extract_execution_token(html: str) -> Optional[str]:
    soup = BeautifulSoup(html or "", "html.parser")
    node = soup.select_one('input[name="execution"]')
    if node is None:
        return None
    value = node.get("value")
    return str(value) if value else None


class CasAuthenticator:
    def __init__(self, login_url: str = SSO_LOGIN_URL, portal_url: str = BASE_URL) -> None:
        self.login_url = login_url
        self.portal_url = portal_url

    async def _send(self, send: SendFunc, request: PortalRequest) -> PortalResponse:
        try:
            return await send(request)
        except TransportError as exc:
            raise AuthenticationError(AuthenticationError.NETWORK, str(exc)) from exc

    async def authenticate(self, nim: str, password: str, send: SendFunc) -> CookieMap:
        page = await self._send(send, PortalRequest("GET", self.login_url))
        if not page.ok:
            raise AuthenticationError(
                AuthenticationError.UNEXPECTED_RESPONSE,
                f"SSO login page returned HTTP {page.status}",
            )
        token = extract_execution_token(page.text)
        if not token:
            raise AuthenticationError(
                AuthenticationError.UNEXPECTED_RESPONSE,
                "execution token not found on the SSO login page",
            )

        form = {
            "username": nim,
            "password": password,
            "execution": token,
            "_eventId": "submit",
        }
        result = await self._send(
            send,
            PortalRequest("POST", page.url, cookies=page.cookies, form=form),
        )
        if result.status >= 500:
            raise AuthenticationError(
                AuthenticationError.UNEXPECTED_RESPONSE,
                f"SSO answered HTTP {result.status}",
            )
        if not same_host(result.url, self.portal_url):
            logger.debug("SSO handshake ended on %s instead of %s", host_of(result.url), host_of(self.portal_url))
            raise AuthenticationError(AuthenticationError.BAD_CREDENTIALS, "SSO did not redirect to the portal")
        return merge_cookies(page.cookies, result.cookies)


__all__ = ["Authenticator", "CasAuthenticator", "SendFunc", "extract_execution_token"]

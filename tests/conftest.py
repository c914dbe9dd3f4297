import asyncio
import random
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import pytest

from spotifier.workflows.client import ClientConfig, SpotClient
from spotifier.workflows.pacing import DelayPolicy, DelayRange
from spotifier.workflows.session_store import SessionSnapshot
from spotifier.workflows.spot_config import SSO_LOGIN_URL
from spotifier.workflows.transport import PortalRequest, PortalResponse

SPOT = "https://spot.upi.edu"

LOGIN_HTML = """
<html><body>
  <form id="fm1" method="post">
    <input type="text" name="username">
    <input type="password" name="password">
    <input type="hidden" name="execution" value="e1s1-token">
    <input type="hidden" name="_eventId" value="submit">
  </form>
</body></html>
"""

DASHBOARD_HTML = """
<html><body>
  <div class="user-profile"><span class="profile-text">Budi Santoso 2101234</span></div>
  <div class="course-card">
    <a class="course-link" href="/mhs/kelas/101">Basis Data</a>
    <span class="course-code">IK310</span>
    <span class="course-name">Basis Data</span>
    <span class="course-credits">3 SKS</span>
    <span class="course-lecturer">Dr. Rina</span>
    <span class="course-period">2025/2026 - Ganjil</span>
  </div>
  <div class="course-card">
    <a class="course-link" href="https://spot.upi.edu/mhs/kelas/102">Jaringan</a>
    <span class="course-code">IK320</span>
    <span class="course-name">Jaringan Komputer</span>
    <span class="course-credits">2 SKS</span>
    <span class="course-lecturer">Ir. Agus</span>
    <span class="course-period">2025/2026 - Ganjil</span>
  </div>
  <div class="course-card">
    <a class="course-link" href="/mhs/kelas/103">Statistika</a>
    <span class="course-code">MT210</span>
    <span class="course-name">Statistika</span>
    <span class="course-credits">4 SKS</span>
    <span class="course-lecturer">Dra. Sari</span>
    <span class="course-period">2025/2026 - Ganjil</span>
  </div>
</body></html>
"""

COURSE_HTML = """
<html><body>
  <div class="course-description">Relational modelling and SQL.</div>
  <ul>
    <li class="topic-item"><a href="/mhs/topik/101/5">Pertemuan 1</a></li>
    <li class="topic-item"><a href="/mhs/topik/101/6">Pertemuan 2</a></li>
    <li class="topic-item topic-locked" data-topic-id="7">Pertemuan 3</li>
  </ul>
</body></html>
"""

TOPIC_HTML = """
<html><body>
  <div class="topic-description">Normalisasi</div>
  <div class="task-item">
    <h4 class="task-title">Tugas 1</h4>
    <p class="task-description">Normalize the schema to 3NF.</p>
    <form action="https://spot.upi.edu/mhs/tugas_store" method="post">
      <input type="hidden" name="_token" value="csrf-abc">
      <input type="hidden" name="id_tg" value="44">
    </form>
  </div>
  <div class="task-item">
    <h4 class="task-title">Tugas 2</h4>
    <form action="/mhs/tugas_store" method="post">
      <input type="hidden" name="_token" value="csrf-abc">
      <input type="hidden" name="id_tg" value="45">
    </form>
    <a href="/mhs/tugas_del/101/5/900">hapus</a>
  </div>
</body></html>
"""

SPOT_COOKIES = {"spot.upi.edu": {"laravel_session": "s-1", "XSRF-TOKEN": "x-1"}}


def page(url: str, text: str = "", status: int = 200, cookies: Optional[Dict[str, Dict[str, str]]] = None) -> PortalResponse:
    return PortalResponse(status=status, url=url, text=text, cookies=cookies or {})


def _route_key(method: str, url: str) -> Tuple[str, str]:
    parts = urlsplit(url)
    return method.upper(), f"{parts.scheme}://{parts.netloc}{parts.path}"


class StubPortal:
    """In-process transport: routes (method, url-without-query) to canned responses."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Any] = {}
        self.requests: List[PortalRequest] = []

    def route(self, method: str, url: str, response: Any) -> None:
        self.routes[_route_key(method, url)] = response

    def count(self, method: str, url: str) -> int:
        key = _route_key(method, url)
        return sum(1 for req in self.requests if _route_key(req.method, req.url) == key)

    async def send(self, request: PortalRequest) -> PortalResponse:
        self.requests.append(request)
        await asyncio.sleep(0)
        handler = self.routes.get(_route_key(request.method, request.url))
        if handler is None:
            return page(request.url, "not found", status=404)
        result = handler(request) if callable(handler) else handler
        if isinstance(result, BaseException):
            raise result
        return result


@pytest.fixture
def portal() -> StubPortal:
    stub = StubPortal()
    stub.route("GET", SSO_LOGIN_URL, page(SSO_LOGIN_URL, LOGIN_HTML, cookies={"sso.upi.edu": {"JSESSIONID": "sso-1"}}))
    stub.route(
        "POST",
        SSO_LOGIN_URL,
        page(
            f"{SPOT}/beranda",
            "<html>beranda</html>",
            cookies={"sso.upi.edu": {"JSESSIONID": "sso-1", "TGC": "tgc-1"}, **SPOT_COOKIES},
        ),
    )
    stub.route("GET", f"{SPOT}/mhs", page(f"{SPOT}/mhs", DASHBOARD_HTML))
    stub.route("GET", f"{SPOT}/mhs/kelas/101", page(f"{SPOT}/mhs/kelas/101", COURSE_HTML))
    stub.route("GET", f"{SPOT}/mhs/topik/101/5", page(f"{SPOT}/mhs/topik/101/5", TOPIC_HTML))
    return stub


@pytest.fixture
def sleeps() -> List[float]:
    return []


TEST_POLICY = DelayPolicy(routine=DelayRange(0.5, 1.0), post_login=DelayRange(2.0, 5.0))


@pytest.fixture
def make_client(portal: StubPortal, sleeps: List[float], tmp_path: Path):
    def factory(**overrides: Any) -> SpotClient:
        async def fake_sleep(delay: float) -> None:
            sleeps.append(delay)
            await asyncio.sleep(0)

        config = overrides.pop("config", None) or ClientConfig(
            delay_policy=TEST_POLICY,
            cache_dir=tmp_path / "cache",
            session_path=tmp_path / "session.json",
        )
        kwargs: Dict[str, Any] = {"transport": portal, "rng": random.Random(7), "sleep": fake_sleep}
        kwargs.update(overrides)
        return SpotClient(config, **kwargs)

    return factory


@pytest.fixture
def snapshot() -> SessionSnapshot:
    return SessionSnapshot(cookies=SPOT_COOKIES, period=None, saved_at="2026-01-02T15:30:45Z")

"""Session orchestrator for the SPOT portal.

Every outbound request goes through ``SpotClient``: it checks the session
state, consults the cache, waits out a randomized pacing delay, sends the
request with a rotated User-Agent and the stored cookies, and only then
touches the cache or the session.

States: ``UNAUTHENTICATED -> AUTHENTICATING -> AUTHENTICATED``; a portal
"not authenticated" answer moves ``AUTHENTICATED -> INVALIDATED``, which is
sticky until ``login`` or ``load_session`` succeeds. Nothing here retries.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import random
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Dict, Iterator, List, Optional, Tuple, TypeVar, Union
from urllib.parse import urljoin

from dotenv import load_dotenv

from ..core.errors import (
    AuthenticationError,
    InvalidPeriodError,
    InvalidStateError,
    ParsingError,
    PortalError,
    SessionExpiredError,
    TaskDeletionError,
    TaskSubmissionError,
    TransportError,
)
from ..core.keys import (
    K_FORM_CONTENT,
    K_FORM_COURSE,
    K_FORM_FILE,
    K_FORM_TASK,
    K_FORM_TOKEN,
    K_FORM_TOPIC,
)
from .auth import Authenticator, CasAuthenticator
from .cache import CacheBackend, FileCache
from .models import Course, CourseDetail, Period, Task, TopicDetail, User
from .pacing import DelayPolicy, DelayRange, OperationClass, PacingScheduler
from .parsers import HtmlPortalParser, PortalParser
from .session_store import SessionSnapshot, SessionState, SessionStore
from .spot_config import (
    BASE_URL,
    CACHE_DIR,
    CACHE_MAX_AGE,
    CACHE_NAMESPACE,
    HDR_USER_AGENT,
    MODERN_USER_AGENTS,
    PATH_COURSE,
    PATH_HOME,
    PATH_PERIOD,
    PATH_PERIOD_LANDING,
    PATH_TASK_DELETE,
    PATH_TASK_STORE,
    PATH_TOPIC,
    REQUEST_TIMEOUT,
    ROUTINE_DELAY_MAX,
    ROUTINE_DELAY_MIN,
    SESSION_PATH,
    SETTLE_DELAY_MAX,
    SETTLE_DELAY_MIN,
    SSO_LOGIN_URL,
)
from .spot_utils import _env_bool, _env_float, path_of, split_pool
from .transport import AiohttpTransport, PortalRequest, PortalResponse, Transport

logger = logging.getLogger(__name__)

T = TypeVar("T")
SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class _KeyGuard:
    """FIFO lock for one cache key plus the number of callers holding or awaiting it."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


@dataclass
class ClientConfig:
    """Configuration for a ``SpotClient``; fixed before first use."""

    base_url: str = BASE_URL
    sso_login_url: str = SSO_LOGIN_URL
    delay_policy: DelayPolicy = field(default_factory=DelayPolicy)
    cache_dir: Optional[Path] = CACHE_DIR
    cache_namespace: str = CACHE_NAMESPACE
    cache_max_age: Optional[float] = CACHE_MAX_AGE
    session_path: Path = SESSION_PATH
    timeout: float = REQUEST_TIMEOUT
    # One in-flight fetch per cache key; later callers read the cached value.
    serialize_misses: bool = True

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "ClientConfig":
        """Build a config from ``SPOT_*`` environment variables (and ``.env``)."""

        if dotenv:
            load_dotenv()
        identities = split_pool(os.getenv("SPOT_USER_AGENTS", "")) or MODERN_USER_AGENTS
        policy = DelayPolicy(
            routine=DelayRange(
                _env_float("SPOT_DELAY_MIN", ROUTINE_DELAY_MIN),
                _env_float("SPOT_DELAY_MAX", ROUTINE_DELAY_MAX),
            ),
            post_login=DelayRange(
                _env_float("SPOT_SETTLE_MIN", SETTLE_DELAY_MIN),
                _env_float("SPOT_SETTLE_MAX", SETTLE_DELAY_MAX),
            ),
            identities=identities,
            enabled=not _env_bool("SPOT_DELAY_DISABLE", "0"),
        )
        cache_dir: Optional[Path] = Path(os.getenv("SPOT_CACHE_DIR") or CACHE_DIR)
        if _env_bool("SPOT_CACHE_DISABLE", "0"):
            cache_dir = None
        max_age: Optional[float] = _env_float("SPOT_CACHE_MAX_AGE", CACHE_MAX_AGE)
        if max_age is not None and max_age <= 0:
            max_age = None
        return cls(
            base_url=os.getenv("SPOT_BASE_URL") or BASE_URL,
            sso_login_url=os.getenv("SPOT_SSO_LOGIN_URL") or SSO_LOGIN_URL,
            delay_policy=policy,
            cache_dir=cache_dir,
            cache_namespace=os.getenv("SPOT_CACHE_NAMESPACE") or CACHE_NAMESPACE,
            cache_max_age=max_age,
            session_path=Path(os.getenv("SPOT_SESSION_PATH") or SESSION_PATH),
            timeout=_env_float("SPOT_TIMEOUT", REQUEST_TIMEOUT),
        )


class SpotClient:
    """Authenticated, paced and cached access to the SPOT portal."""

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        cache: Optional[CacheBackend] = None,
        transport: Optional[Transport] = None,
        authenticator: Optional[Authenticator] = None,
        parser: Optional[PortalParser] = None,
        rng: Optional[random.Random] = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.config = config or ClientConfig()
        self.session = SessionStore()
        self.scheduler = PacingScheduler(self.config.delay_policy, rng=rng)
        if cache is None and self.config.cache_dir is not None:
            cache = FileCache(self.config.cache_dir, max_age=self.config.cache_max_age)
        self._cache: Optional[CacheBackend] = cache
        self._namespace = self.config.cache_namespace
        self._transport: Transport = transport or AiohttpTransport(timeout=self.config.timeout)
        self._authenticator: Authenticator = authenticator or CasAuthenticator(
            login_url=self.config.sso_login_url,
            portal_url=self.config.base_url,
        )
        self._parser: PortalParser = parser or HtmlPortalParser(portal_url=self.config.base_url)
        self._sleep = sleep
        self._in_flight = 0
        self._key_locks: Dict[Tuple[str, str], _KeyGuard] = {}

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def cache(self) -> Optional[CacheBackend]:
        return self._cache

    @property
    def cache_namespace(self) -> str:
        return self._namespace

    def set_cache(self, cache: Optional[CacheBackend]) -> None:
        self._ensure_idle("swap the cache")
        self._cache = cache

    def set_cache_namespace(self, namespace: str) -> None:
        self._ensure_idle("change the cache namespace")
        self._namespace = namespace

    def _ensure_idle(self, action: str) -> None:
        if self._in_flight:
            raise InvalidStateError(f"cannot {action} while {self._in_flight} operation(s) are in flight")

    def _require_authenticated(self) -> None:
        state = self.session.state
        if state is SessionState.INVALIDATED:
            raise SessionExpiredError("the portal logged this session out; login or load a session again")
        if state is not SessionState.AUTHENTICATED:
            raise InvalidStateError(f"operation requires an authenticated session (state: {state.value})")

    def report_logged_out(self, generation: Optional[int] = None) -> None:
        """Mark the session as logged out by the portal.

        With ``generation``, only the session that sent the request is
        invalidated; a session installed since then is left alone.
        """

        if generation is not None and generation != self.session.generation:
            logger.debug("ignoring logged-out reply for a replaced session")
            return
        if self.session.state is SessionState.AUTHENTICATED:
            logger.warning("portal reported the session as logged out; invalidating")
            self.session.invalidate()

    def _expired(self, path: str, generation: int) -> SessionExpiredError:
        self.report_logged_out(generation)
        return SessionExpiredError(f"the portal redirected {path} to its login page")

    @contextlib.contextmanager
    def _operation(self) -> Iterator[None]:
        self._in_flight += 1
        try:
            yield
        finally:
            self._in_flight -= 1

    # ------------------------------------------------------------------
    # Authentication & persistence
    # ------------------------------------------------------------------

    async def login(self, nim: str, password: str) -> None:
        if self.session.state is SessionState.AUTHENTICATING:
            raise InvalidStateError("a login is already in progress")
        self.session.begin_authentication()
        logger.info("logging in as %s", nim)
        succeeded = False
        try:
            with self._operation():
                cookies = await self._authenticator.authenticate(nim, password, self._paced_send)
            if not any(cookies.values()):
                raise AuthenticationError(AuthenticationError.UNEXPECTED_RESPONSE, "SSO returned no session cookies")
            self.session.mark_authenticated(cookies)
            succeeded = True
        except TransportError as exc:
            raise AuthenticationError(AuthenticationError.NETWORK, str(exc)) from exc
        finally:
            if not succeeded:
                logger.warning("login failed for %s", nim)
                self.session.reset()

        settle = self.scheduler.next_delay(OperationClass.POST_LOGIN)
        if settle > 0:
            logger.debug("settling %.2fs after login", settle)
            await self._sleep(settle)

    def logout(self) -> None:
        if self.session.state is SessionState.AUTHENTICATING:
            raise InvalidStateError("cannot log out while a login is in progress")
        self.session.reset()
        logger.info("session cleared")

    def save_session(self) -> SessionSnapshot:
        return self.session.snapshot()

    def save_session_file(self, path: Optional[Path] = None) -> Path:
        target = Path(path or self.config.session_path)
        self.save_session().write(target)
        return target

    def load_session(self, snapshot: SessionSnapshot) -> None:
        if self.session.state is SessionState.AUTHENTICATING:
            raise InvalidStateError("cannot load a session while a login is in progress")
        self.session.restore(snapshot)
        logger.info("session restored (period: %s)", snapshot.period or "portal default")

    def load_session_file(self, path: Optional[Path] = None) -> None:
        self.load_session(SessionSnapshot.read(Path(path or self.config.session_path)))

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return urljoin(self.config.base_url, path)

    def _cache_key(self, resource: str, period: Optional[str]) -> str:
        return resource if period is None else f"{resource}@{period}"

    @contextlib.asynccontextmanager
    async def _miss_guard(self, namespace: str, key: str) -> AsyncIterator[None]:
        if not self.config.serialize_misses or self._cache is None:
            yield
            return
        slot = (namespace, key)
        guard = self._key_locks.get(slot)
        if guard is None:
            guard = self._key_locks[slot] = _KeyGuard()
        guard.users += 1
        try:
            async with guard.lock:
                yield
        finally:
            guard.users -= 1
            if not guard.users:
                del self._key_locks[slot]

    async def _paced_send(
        self,
        request: PortalRequest,
        *,
        operation_class: OperationClass = OperationClass.ROUTINE,
    ) -> PortalResponse:
        identity = await self._pace(request, operation_class)
        return await self._send(request, identity)

    async def _session_send(self, request: PortalRequest) -> Tuple[PortalResponse, int]:
        """Paced send carrying the session cookies; also returns the session generation used."""

        identity = await self._pace(request, OperationClass.ROUTINE)
        # The session may have changed while we slept.
        self._require_authenticated()
        generation = self.session.generation
        request = replace(request, cookies=self.session.cookies)
        return await self._send(request, identity), generation

    async def _pace(self, request: PortalRequest, operation_class: OperationClass) -> str:
        delay = self.scheduler.next_delay(operation_class)
        identity = self.scheduler.next_identity()
        if delay > 0:
            logger.debug("pacing %.2fs before %s %s", delay, request.method, request.url)
            await self._sleep(delay)
        return identity

    async def _send(self, request: PortalRequest, identity: str) -> PortalResponse:
        request = replace(request, headers={**request.headers, HDR_USER_AGENT: identity})
        return await self._transport.send(request)

    async def _read(self, resource: str, path: str, parse: Callable[[str], T]) -> T:
        self._require_authenticated()
        cache = self._cache
        namespace = self._namespace
        period = self.session.period
        key = self._cache_key(resource, period)
        with self._operation():
            async with self._miss_guard(namespace, key):
                cached = cache.get(namespace, key) if cache is not None else None
                if cached is not None:
                    logger.debug("cache hit %s/%s", namespace, key)
                    return parse(cached.decode("utf-8"))
                response, generation = await self._session_send(PortalRequest("GET", self._url(path)))
                if self._parser.is_logged_out(response, path):
                    raise self._expired(path, generation)
                if not response.ok:
                    raise PortalError(f"GET {path} returned HTTP {response.status}")
                result = parse(response.text)
                if cache is not None:
                    if self.session.generation == generation and self.session.period == period:
                        cache.set(namespace, key, response.text.encode("utf-8"))
                    else:
                        logger.debug("session changed during fetch of %s; not caching", key)
                return result

    def _invalidate_topic(self, course_id: int, topic_id: int) -> None:
        if self._cache is None:
            return
        key = self._cache_key(f"topic/{course_id}/{topic_id}", self.session.period)
        self._cache.invalidate(self._namespace, key)

    # ------------------------------------------------------------------
    # Portal reads
    # ------------------------------------------------------------------

    async def fetch_user_profile(self) -> User:
        return await self._read("profile", PATH_HOME, self._parser.parse_user)

    async def fetch_courses(self) -> List[Course]:
        """Courses of the active period (cached)."""
        return await self._read("courses", PATH_HOME, self._parser.parse_courses)

    async def find_course(self, course_id: int) -> Course:
        for course in await self.fetch_courses():
            if course.id == course_id:
                return course
        raise PortalError(f"Course with ID {course_id} not found")

    async def fetch_course_detail(self, course: Union[Course, int]) -> CourseDetail:
        if not isinstance(course, Course):
            course = await self.find_course(int(course))
        path = path_of(course.href) if course.href else PATH_COURSE.format(course_id=course.id)
        target = course
        return await self._read(
            f"course/{course.id}",
            path,
            lambda html: self._parser.parse_course_detail(html, target),
        )

    async def fetch_topic_detail(self, course_id: int, topic_id: int) -> TopicDetail:
        path = PATH_TOPIC.format(course_id=course_id, topic_id=topic_id)
        return await self._read(
            f"topic/{course_id}/{topic_id}",
            path,
            lambda html: self._parser.parse_topic_detail(html, course_id, topic_id),
        )

    async def current_period_info(self) -> str:
        """Academic-year label of the active period, e.g. ``2025/2026 - Ganjil``."""
        courses = await self.fetch_courses()
        if not courses:
            raise PortalError("No courses found to determine the current academic period")
        return courses[0].academic_year

    async def current_period(self) -> Period:
        label = await self.current_period_info()
        try:
            return Period.from_academic_year(label)
        except ValueError as exc:
            raise ParsingError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Portal writes (never cached)
    # ------------------------------------------------------------------

    async def switch_period(self, period: Union[Period, str]) -> None:
        if isinstance(period, Period):
            code = period.format()
        else:
            try:
                code = Period.parse(period).format()
            except ValueError as exc:
                raise InvalidPeriodError(str(exc)) from exc
        self._require_authenticated()
        path = PATH_PERIOD.format(code=code)
        with self._operation():
            response, generation = await self._session_send(PortalRequest("GET", self._url(path)))
        # Every portal path starts with "/", so only a bounce off the portal host counts as logged out.
        if self._parser.is_logged_out(response, "/"):
            raise self._expired(path, generation)
        if response.status == 500:
            raise InvalidPeriodError(f"Period {code} is not valid or unavailable in the system")
        if not response.ok or not path_of(response.url).startswith(PATH_PERIOD_LANDING):
            raise PortalError(
                f"Unexpected response while changing period: HTTP {response.status} at {path_of(response.url)}"
            )
        if self.session.generation != generation:
            raise InvalidStateError("the session was replaced while the period switch was in flight")
        self.session.select_period(code, response.cookies)
        logger.info("switched to period %s", code)

    async def submit_task(
        self,
        task: Task,
        content: str,
        *,
        file_name: Optional[str] = None,
        file_data: Optional[bytes] = None,
    ) -> None:
        if task.id is None:
            raise TaskSubmissionError(f"task {task.title!r} has no id")
        self._require_authenticated()
        form = {
            K_FORM_TOKEN: task.token,
            K_FORM_COURSE: str(task.course_id),
            K_FORM_TOPIC: str(task.topic_id),
            K_FORM_TASK: str(task.id),
            K_FORM_CONTENT: content,
        }
        files = {K_FORM_FILE: (file_name, file_data)} if file_name and file_data is not None else None
        with self._operation():
            response, generation = await self._session_send(
                PortalRequest("POST", self._url(PATH_TASK_STORE), form=form, files=files),
            )
        if self._parser.is_logged_out(response, PATH_HOME):
            raise self._expired(PATH_TASK_STORE, generation)
        if not response.ok:
            raise TaskSubmissionError(f"Server returned error status: {response.status}")
        self._invalidate_topic(task.course_id, task.topic_id)
        logger.info("submitted task %s in topic %s/%s", task.id, task.course_id, task.topic_id)

    async def delete_task_submission(self, course_id: int, topic_id: int, answer_id: int) -> None:
        self._require_authenticated()
        path = PATH_TASK_DELETE.format(course_id=course_id, topic_id=topic_id, answer_id=answer_id)
        with self._operation():
            response, generation = await self._session_send(PortalRequest("GET", self._url(path)))
        if self._parser.is_logged_out(response, PATH_HOME):
            raise self._expired(path, generation)
        if not response.ok:
            raise TaskDeletionError(f"Server returned error status: {response.status}")
        self._invalidate_topic(course_id, topic_id)
        logger.info("deleted answer %s in topic %s/%s", answer_id, course_id, topic_id)


__all__ = ["ClientConfig", "SpotClient"]

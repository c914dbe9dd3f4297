"""HTML parsers for SPOT portal pages.

Expected markup (student area):

* dashboard ``/mhs``: ``.user-profile .profile-text`` holds "<name> <nim>";
  each enrolled course is a ``.course-card`` with a link to
  ``/mhs/kelas/<id>`` plus ``.course-code``, ``.course-name``,
  ``.course-credits``, ``.course-lecturer`` and ``.course-period``;
* course page: ``.course-description`` and one ``.topic-item`` per topic,
  linking to ``/mhs/topik/<course>/<topic>`` when the topic is open;
* topic page: ``.topic-description`` and one ``.task-item`` per task with a
  ``tugas_store`` form carrying ``_token`` and ``id_tg``.
"""

from __future__ import annotations

import re
from typing import List, Optional, Protocol

from bs4 import BeautifulSoup, Tag

from ..core.errors import ParsingError
from ..core.keys import K_FORM_TASK, K_FORM_TOKEN
from .models import Course, CourseDetail, Task, TopicDetail, TopicInfo, User
from .spot_config import BASE_URL
from .spot_utils import path_of, same_host
from .transport import PortalResponse

_COURSE_HREF = re.compile(r"/mhs/kelas/(\d+)")
_TOPIC_HREF = re.compile(r"/mhs/topik/(\d+)/(\d+)")
_ANSWER_HREF = re.compile(r"/mhs/tugas_del/\d+/\d+/(\d+)")
_DIGITS = re.compile(r"\d+")


class PortalParser(Protocol):
    def is_logged_out(self, response: PortalResponse, path: str) -> bool: ...

    def parse_user(self, html: str) -> User: ...

    def parse_courses(self, html: str) -> List[Course]: ...

    def parse_course_detail(self, html: str, course: Course) -> CourseDetail: ...

    def parse_topic_detail(self, html: str, course_id: int, topic_id: int) -> TopicDetail: ...


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def _text(node: Tag, selector: str) -> str:
    found = node.select_one(selector)
    return found.get_text(" ", strip=True) if found is not None else ""


def _first_int(text: str) -> Optional[int]:
    match = _DIGITS.search(text or "")
    return int(match.group(0)) if match else None


class HtmlPortalParser:
    def __init__(self, portal_url: str = BASE_URL) -> None:
        self.portal_url = portal_url

    def is_logged_out(self, response: PortalResponse, path: str) -> bool:
        """True when the portal bounced the request away from ``path``.

        An expired session redirects to the SSO host (or to the portal root),
        so the final URL no longer sits under the requested path.
        """

        if not same_host(response.url, self.portal_url):
            return True
        return not path_of(response.url).startswith(path)

    def parse_user(self, html: str) -> User:
        profile = _soup(html).select_one(".user-profile .profile-text")
        if profile is None:
            raise ParsingError("user profile text element not found")
        parts = profile.get_text(" ", strip=True).split()
        if len(parts) < 2:
            raise ParsingError("could not extract user name and NIM")
        return User(name=" ".join(parts[:-1]), nim=parts[-1])

    def parse_courses(self, html: str) -> List[Course]:
        courses: List[Course] = []
        for card in _soup(html).select(".course-card"):
            link = card.select_one("a[href*='/mhs/kelas/']")
            if link is None:
                continue
            href = str(link.get("href") or "")
            match = _COURSE_HREF.search(href)
            if not match:
                raise ParsingError(f"course link without an id: {href!r}")
            courses.append(
                Course(
                    id=int(match.group(1)),
                    code=_text(card, ".course-code"),
                    name=_text(card, ".course-name") or link.get_text(" ", strip=True),
                    credits=_first_int(_text(card, ".course-credits")) or 0,
                    lecturer=_text(card, ".course-lecturer"),
                    academic_year=_text(card, ".course-period"),
                    href=path_of(href),
                )
            )
        return courses

    def parse_course_detail(self, html: str, course: Course) -> CourseDetail:
        soup = _soup(html)
        topics: List[TopicInfo] = []
        for item in soup.select(".topic-item"):
            link = item.select_one("a[href*='/mhs/topik/']")
            if link is not None:
                href = path_of(str(link.get("href") or ""))
                match = _TOPIC_HREF.search(href)
                topics.append(
                    TopicInfo(
                        id=int(match.group(2)) if match else None,
                        course_id=int(match.group(1)) if match else course.id,
                        href=href,
                        is_accessible=True,
                    )
                )
                continue
            topics.append(
                TopicInfo(
                    id=_first_int(str(item.get("data-topic-id") or "")),
                    course_id=course.id,
                    href=None,
                    is_accessible=False,
                )
            )
        return CourseDetail(course=course, description=_text(soup, ".course-description"), topics=topics)

    def parse_topic_detail(self, html: str, course_id: int, topic_id: int) -> TopicDetail:
        soup = _soup(html)
        tasks: List[Task] = []
        for item in soup.select(".task-item"):
            form = item.select_one("form[action*='tugas_store']")
            if form is None:
                continue
            token = form.select_one(f"input[name='{K_FORM_TOKEN}']")
            if token is None or not token.get("value"):
                raise ParsingError(f"task form in topic {topic_id} has no CSRF token")
            task_input = form.select_one(f"input[name='{K_FORM_TASK}']")
            answer = item.select_one("a[href*='/mhs/tugas_del/']")
            answer_match = _ANSWER_HREF.search(str(answer.get("href") or "")) if answer is not None else None
            tasks.append(
                Task(
                    id=_first_int(str(task_input.get("value") or "")) if task_input is not None else None,
                    course_id=course_id,
                    topic_id=topic_id,
                    token=str(token["value"]),
                    title=_text(item, ".task-title"),
                    description=_text(item, ".task-description"),
                    answer_id=int(answer_match.group(1)) if answer_match else None,
                )
            )
        description = _text(soup, ".topic-description") or None
        return TopicDetail(id=topic_id, course_id=course_id, description=description, tasks=tasks)


__all__ = ["PortalParser", "HtmlPortalParser"]

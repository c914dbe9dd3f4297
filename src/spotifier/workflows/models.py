"""Typed records returned by the portal parsers."""

from __future__ import annotations

import enum
import json
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

_PERIOD_CODE = re.compile(r"^(\d{4})([123])$")


class Semester(enum.IntEnum):
    ODD = 1  # Ganjil, Sep-Jan
    EVEN = 2  # Genap, Feb-Jun
    SHORT = 3  # Semester Pendek, Jul-Aug


_SEMESTER_LABELS = {
    "ganjil": Semester.ODD,
    "genap": Semester.EVEN,
    "sp": Semester.SHORT,
    "semester pendek": Semester.SHORT,
}


@dataclass(frozen=True)
class Period:
    """An academic period, formatted as ``YYYYN`` (``20251`` = 2025 odd)."""

    year: int
    semester: Semester

    def format(self) -> str:
        return f"{self.year:04d}{int(self.semester)}"

    def __str__(self) -> str:
        return self.format()

    @classmethod
    def parse(cls, code: str) -> "Period":
        match = _PERIOD_CODE.match((code or "").strip())
        if not match:
            raise ValueError(f"Invalid period code: {code!r}")
        return cls(int(match.group(1)), Semester(int(match.group(2))))

    @classmethod
    def from_academic_year(cls, label: str) -> "Period":
        """Parse the portal label, e.g. ``"2025/2026 - Genap"``."""

        parts = [part.strip() for part in (label or "").split("-")]
        if len(parts) != 2:
            raise ValueError(f"Invalid academic year format: {label!r}")
        year_part = parts[0].split("/")[0].strip()
        if not year_part.isdigit():
            raise ValueError(f"Cannot parse year from: {parts[0]!r}")
        semester = _SEMESTER_LABELS.get(parts[1].lower())
        if semester is None:
            raise ValueError(f"Unknown semester type: {parts[1]!r}")
        return cls(int(year_part), semester)


@dataclass
class Record:
    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


@dataclass
class User(Record):
    name: str
    nim: str


@dataclass
class Course(Record):
    id: int
    code: str
    name: str
    credits: int
    lecturer: str
    academic_year: str
    href: str


@dataclass
class TopicInfo(Record):
    id: Optional[int]
    course_id: Optional[int]
    href: Optional[str]
    is_accessible: bool


@dataclass
class CourseDetail(Record):
    course: Course
    description: str
    topics: List[TopicInfo] = field(default_factory=list)


@dataclass
class Task(Record):
    id: Optional[int]
    course_id: int
    topic_id: int
    token: str
    title: str
    description: str = ""
    answer_id: Optional[int] = None

    @property
    def submitted(self) -> bool:
        return self.answer_id is not None


@dataclass
class TopicDetail(Record):
    id: int
    course_id: int
    description: Optional[str]
    tasks: List[Task] = field(default_factory=list)


__all__ = [
    "Semester",
    "Period",
    "User",
    "Course",
    "TopicInfo",
    "CourseDetail",
    "Task",
    "TopicDetail",
]

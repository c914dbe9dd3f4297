"""High-level exports for the client workflows."""

from .cache import CacheBackend, CacheEntry, FileCache, MemoryCache
from .client import ClientConfig, SpotClient
from .models import Course, CourseDetail, Period, Semester, Task, TopicDetail, TopicInfo, User
from .pacing import DelayPolicy, DelayRange, OperationClass, PacingScheduler
from .session_store import SessionSnapshot, SessionState, SessionStore
from .transport import AiohttpTransport, PortalRequest, PortalResponse

__all__ = [
    "CacheBackend",
    "CacheEntry",
    "FileCache",
    "MemoryCache",
    "ClientConfig",
    "SpotClient",
    "Course",
    "CourseDetail",
    "Period",
    "Semester",
    "Task",
    "TopicDetail",
    "TopicInfo",
    "User",
    "DelayPolicy",
    "DelayRange",
    "OperationClass",
    "PacingScheduler",
    "SessionSnapshot",
    "SessionState",
    "SessionStore",
    "AiohttpTransport",
    "PortalRequest",
    "PortalResponse",
]

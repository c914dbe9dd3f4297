"""Static defaults for the SPOT client.

Portal endpoints and paths, the User-Agent pool, pacing ranges and on-disk
locations. ``ClientConfig`` starts from these values; environment variables
and explicit arguments override them.
"""

from __future__ import annotations

from pathlib import Path

# Endpoints
BASE_URL = "https://spot.upi.edu"
SSO_LOGIN_URL = "https://sso.upi.edu/cas/login?service=https://spot.upi.edu/beranda"

# Portal paths
PATH_HOME = "/mhs"
PATH_COURSE = "/mhs/kelas/{course_id}"
PATH_TOPIC = "/mhs/topik/{course_id}/{topic_id}"
PATH_PERIOD = "/adm/semester/{code}"
PATH_PERIOD_LANDING = "/adm"
PATH_TASK_STORE = "/mhs/tugas_store"
PATH_TASK_DELETE = "/mhs/tugas_del/{course_id}/{topic_id}/{answer_id}"

# Headers
HDR_USER_AGENT = "User-Agent"
HDR_ACCEPT_LANGUAGE = "Accept-Language"
ACCEPT_LANGUAGE = "id-ID,id;q=0.9,en-US;q=0.8,en;q=0.7"

MODERN_USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:133.0) Gecko/20100101 Firefox/133.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/18.1 Safari/605.1.15",
)

# Pacing defaults (seconds)
ROUTINE_DELAY_MIN = 1.0
ROUTINE_DELAY_MAX = 3.0
SETTLE_DELAY_MIN = 2.0
SETTLE_DELAY_MAX = 5.0

# Transport / cache defaults
REQUEST_TIMEOUT = 30.0
CACHE_MAX_AGE = 3600.0
CACHE_NAMESPACE = "default"

# Paths (working-directory relative)
CACHE_DIR = Path("run") / "spot_cache"
SESSION_PATH = Path("run") / "spot_session.json"

SNAPSHOT_VERSION = 1
CACHE_FORMAT_VERSION = 1

"""Shared schema keys for persisted snapshots and cache entry headers."""

from __future__ import annotations

# Session snapshot keys
K_VERSION = "version"
K_SAVED_AT = "saved_at"
K_PERIOD = "period"
K_COOKIES = "cookies"

# Cache entry header keys
K_HEADER_VERSION = "v"
K_KEY = "key"
K_CREATED_AT = "created_at"
K_SIZE = "size"

# Form fields posted to the portal
K_FORM_TOKEN = "_token"
K_FORM_COURSE = "id_pn"
K_FORM_TOPIC = "id_pt"
K_FORM_TASK = "id_tg"
K_FORM_CONTENT = "isi"
K_FORM_FILE = "filename"

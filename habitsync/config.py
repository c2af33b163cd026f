"""habitsync settings: remote endpoint, credentials and sync tunables.

Values come from the process environment, with a `.env` file next to the
package as fallback. Mirrors, the HTTP store and the entry point take these
as constructor defaults, so tests pass their own values instead.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# .env sits one level above the package
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

def _env(key: str, default: str = "") -> str:
    return os.getenv(key, default)

def _env_int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))

def _env_float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


# ═══════════════════════════════════════════════════════════════════════════
# Remote store
# ═══════════════════════════════════════════════════════════════════════════
# One configured client per process. The session passes it to both mirrors.

HABITSYNC_API_URL = _env("HABITSYNC_API_URL", "http://localhost:8090/api")
HABITSYNC_APP_ID = _env("HABITSYNC_APP_ID")
HABITSYNC_API_TOKEN = _env("HABITSYNC_API_TOKEN")

REQUEST_TIMEOUT_SECONDS = _env_float("REQUEST_TIMEOUT_SECONDS", 15)

# Push stream: seconds to wait before re-opening a dropped subscription
SUBSCRIBE_RETRY_SECONDS = _env_float("SUBSCRIBE_RETRY_SECONDS", 5)

# ═══════════════════════════════════════════════════════════════════════════
# Owner
# ═══════════════════════════════════════════════════════════════════════════
# Only used by the standalone entry point (habitsync.main).

OWNER_USER_ID = _env("OWNER_USER_ID")

# ═══════════════════════════════════════════════════════════════════════════
# Mirrors
# ═══════════════════════════════════════════════════════════════════════════

# Optimistic mutations that hang longer than this roll back like a failure
MUTATION_TIMEOUT_SECONDS = _env_float("MUTATION_TIMEOUT_SECONDS", 20)

HABITS_PAGE_LIMIT = _env_int("HABITS_PAGE_LIMIT", 100)

# Display load only fetches the last N days of completions
COMPLETIONS_WINDOW_DAYS = _env_int("COMPLETIONS_WINDOW_DAYS", 90)

# Page size for the full-history fetch (stats / export)
HISTORY_PAGE_LIMIT = _env_int("HISTORY_PAGE_LIMIT", 200)

# Max remembered ids of confirmed local creates awaiting their push echo
RECENTLY_CREATED_LIMIT = _env_int("RECENTLY_CREATED_LIMIT", 256)

# ═══════════════════════════════════════════════════════════════════════════
# Entry point
# ═══════════════════════════════════════════════════════════════════════════

SUMMARY_INTERVAL_MINUTES = _env_int("SUMMARY_INTERVAL_MINUTES", 60)
LOG_LEVEL = _env("LOG_LEVEL", "INFO")

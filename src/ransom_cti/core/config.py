"""
Central configuration constants for ransom-cti.

Supports environment variables for configuration:
- RANSOM_CTI_DATA_DIR: Data directory (default: data)
- RANSOM_CTI_DB_PATH: Database file name inside the data directory (default: ransom_cti.db)
- RANSOM_CTI_LOG_LEVEL: Logging level (default: INFO)
- RANSOM_CTI_LOG_FILE: Log file path (default: logs/pipeline.log)
"""

import os
from pathlib import Path
from typing import List

# ---- Networking ----

REQUEST_TIMEOUT_SECONDS = 30
HTTP_MAX_RETRIES = int(os.getenv("RANSOM_CTI_HTTP_MAX_RETRIES", "3"))
HTTP_BACKOFF_BASE = 1.5  # seconds
HTTP_MIN_DELAY = float(os.getenv("RANSOM_CTI_HTTP_MIN_DELAY", "0.2"))
HTTP_MAX_DELAY = float(os.getenv("RANSOM_CTI_HTTP_MAX_DELAY", "1.0"))

HTTP_USER_AGENTS: List[str] = [
    "ransom-cti/1.0 (+threat-intel ingestion)",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/129.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_5) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.5 Safari/605.1.15",
]

# ---- Feeds ----

SOURCE_RANSOMWARE_LIVE = "ransomware.live"
SOURCE_RANSOMLOOK = "ransomlook"
SOURCE_RANSOMWATCH = "ransomwatch"

RANSOMWARE_LIVE_API = os.getenv("RANSOMWARE_LIVE_API", "https://api.ransomware.live/v2")
RANSOMLOOK_API = os.getenv("RANSOMLOOK_API", "https://www.ransomlook.io/api")
RANSOMWATCH_POSTS_URL = os.getenv(
    "RANSOMWATCH_POSTS_URL",
    "https://raw.githubusercontent.com/joshhighet/ransomwatch/main/posts.json",
)
RANSOMWATCH_GROUPS_URL = os.getenv(
    "RANSOMWATCH_GROUPS_URL",
    "https://raw.githubusercontent.com/joshhighet/ransomwatch/main/groups.json",
)

# ---- Entity defaults ----

DEFAULT_ACTOR_TYPE = "ransomware"
DEFAULT_ACTOR_STATUS = "active"
DEFAULT_INCIDENT_STATUS = "claimed"

RECLASSIFY_BATCH_SIZE = int(os.getenv("RECLASSIFY_BATCH_SIZE", "100"))

# ---- Scheduling (hours between runs, per source) ----

SCHEDULE_INTERVALS_HOURS = {
    SOURCE_RANSOMWARE_LIVE: int(os.getenv("RANSOMWARE_LIVE_INTERVAL_HOURS", "6")),
    SOURCE_RANSOMLOOK: int(os.getenv("RANSOMLOOK_INTERVAL_HOURS", "6")),
    SOURCE_RANSOMWATCH: int(os.getenv("RANSOMWATCH_INTERVAL_HOURS", "12")),
}
RECLASSIFY_TIME = os.getenv("RECLASSIFY_TIME", "03:00")

# Environment variable configuration
DATA_DIR = Path(os.getenv("RANSOM_CTI_DATA_DIR", "data"))
DB_PATH = DATA_DIR / os.getenv("RANSOM_CTI_DB_PATH", "ransom_cti.db")
LOG_LEVEL = os.getenv("RANSOM_CTI_LOG_LEVEL", "INFO")
LOG_FILE = Path(os.getenv("RANSOM_CTI_LOG_FILE", "logs/pipeline.log"))

"""
Configuration settings for the BGG catalog ingestion pipeline.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent  # Go up one level to workspace root
DATABASE_PATH = Path(os.environ.get("BGG_CATALOG_DB", PROJECT_ROOT / "bgg_catalog.db"))
MEDIA_DIR = Path(os.environ.get("BGG_CATALOG_MEDIA_DIR", PROJECT_ROOT / "bgg_catalog_cache" / "media"))
# Logs directory for per-run logs
LOGS_DIR = PROJECT_ROOT / "bgg_catalog_cache" / "logs"

# BoardGameGeek XML API
BGG_API_BASE_URL = os.environ.get("BGG_API_BASE_URL", "https://boardgamegeek.com/xmlapi2")
BGG_API_TOKEN = os.environ.get("BGG_API_TOKEN")
USER_AGENT = os.environ.get("BGG_USER_AGENT", "bgg-catalog/0.1 (+https://boardgamegeek.com/wiki/page/BGG_XML_API2)")
# None means requests waits indefinitely; the retry ceiling is the only bound
REQUEST_TIMEOUT = float(os.environ["BGG_REQUEST_TIMEOUT"]) if os.environ.get("BGG_REQUEST_TIMEOUT") else None

# Token bucket shared by every call against the catalog service
RATE_BUCKET_CAPACITY = float(os.environ.get("BGG_RATE_BUCKET_CAPACITY", 3))
RATE_BUCKET_WINDOW_MS = float(os.environ.get("BGG_RATE_BUCKET_WINDOW_MS", 3000))
DEBOUNCE_MS = float(os.environ.get("BGG_DEBOUNCE_MS", 500))

# Retry policy for failed fetches
RETRY_INITIAL_DELAY_MS = float(os.environ.get("BGG_RETRY_INITIAL_DELAY_MS", 1000))
RETRY_FACTOR = float(os.environ.get("BGG_RETRY_FACTOR", 2))
RETRY_MAX_DELAY_MS = float(os.environ.get("BGG_RETRY_MAX_DELAY_MS", 30000))
RETRY_MAX_ATTEMPTS = int(os.environ.get("BGG_RETRY_MAX_ATTEMPTS", 5))
RETRY_JITTER = float(os.environ.get("BGG_RETRY_JITTER", 0.15))

# Background follow-up work
FOLLOW_UP_WORKERS = int(os.environ.get("BGG_FOLLOW_UP_WORKERS", 2))
FOLLOW_UP_MAX_DELAY_S = float(os.environ.get("BGG_FOLLOW_UP_MAX_DELAY_S", 3.0))
FOLLOW_UP_QUEUE_SIZE = int(os.environ.get("BGG_FOLLOW_UP_QUEUE_SIZE", 500))
FOLLOW_UP_MAX_DEPTH = int(os.environ.get("BGG_FOLLOW_UP_MAX_DEPTH", 3))

# Reconciliation
RECONCILE_WORKERS = int(os.environ.get("BGG_RECONCILE_WORKERS", 8))
SEARCH_RESULT_LIMIT = 25

# Link types as emitted by the catalog service
LINK_TYPES = {
    "publishers": "boardgamepublisher",
    "designers": "boardgamedesigner",
    "artists": "boardgameartist",
    "categories": "boardgamecategory",
    "mechanics": "boardgamemechanic",
    "types": "boardgametype",
    "accessories": "boardgameaccessory",
    "expansions": "boardgameexpansion",
    "implementations": "boardgameimplementation",
}
WEBSITE_LINK_TYPES = ("boardgamewebsite", "website")

# Target collection for each relationship kind
RELATIONSHIP_COLLECTIONS = {
    "publishers": "publishers",
    "designers": "designers",
    "artists": "artists",
    "categories": "categories",
    "mechanics": "mechanics",
    "types": "types",
    "accessories": "accessories",
    "expansions": "games",
    "implementations": "games",
}


@dataclass
class PipelineSettings:
    """Snapshot of the tunables above, overridable per pipeline instance."""
    db_path: Path = DATABASE_PATH
    media_dir: Path = MEDIA_DIR
    base_url: str = BGG_API_BASE_URL
    api_token: Optional[str] = BGG_API_TOKEN
    user_agent: str = USER_AGENT
    request_timeout: Optional[float] = REQUEST_TIMEOUT
    bucket_capacity: float = RATE_BUCKET_CAPACITY
    bucket_window_ms: float = RATE_BUCKET_WINDOW_MS
    debounce_ms: float = DEBOUNCE_MS
    retry_initial_delay_ms: float = RETRY_INITIAL_DELAY_MS
    retry_factor: float = RETRY_FACTOR
    retry_max_delay_ms: float = RETRY_MAX_DELAY_MS
    retry_max_attempts: int = RETRY_MAX_ATTEMPTS
    retry_jitter: float = RETRY_JITTER
    follow_up_workers: int = FOLLOW_UP_WORKERS
    follow_up_max_delay_s: float = FOLLOW_UP_MAX_DELAY_S
    follow_up_queue_size: int = FOLLOW_UP_QUEUE_SIZE
    follow_up_max_depth: int = FOLLOW_UP_MAX_DEPTH
    reconcile_workers: int = RECONCILE_WORKERS
    link_types: dict = field(default_factory=lambda: dict(LINK_TYPES))

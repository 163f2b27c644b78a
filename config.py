"""
Central configuration — reads from .env file.

Every module reads config.X at call time, so tests (and the web server) can
monkeypatch an attribute without re-importing anything.

Credentials are optional at import: the catalog backend and the label
providers raise a RuntimeError when they are first built without their key.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# ── CJ Dropshipping catalog API ───────────────────────────────────────────────
# Get a token at developers.cjdropshipping.com → Authentication → getAccessToken
CJ_ACCESS_TOKEN: str | None = os.getenv("CJ_ACCESS_TOKEN")
CJ_API_BASE: str            = os.getenv("CJ_API_BASE", "https://developers.cjdropshipping.com/api2.0/v1")

# Hard limits documented by the product/list endpoint
MAX_PAGE_SIZE: int     = int(os.getenv("MAX_PAGE_SIZE", "200"))
DEFAULT_PAGE_SIZE: int = int(os.getenv("DEFAULT_PAGE_SIZE", "100"))
# Highest (page × pageSize) the API will serve; deeper pages fail deterministically
MAX_OFFSET: int        = int(os.getenv("MAX_OFFSET", "6000"))

CATALOG_TIMEOUT: float = float(os.getenv("CATALOG_TIMEOUT", "30"))
# Seconds between page requests (CJ allows roughly one call per second)
PAGE_DELAY: float      = float(os.getenv("PAGE_DELAY", "1.0"))

# ── Label detection providers ─────────────────────────────────────────────────
# Add keys for whichever providers you have access to.
# Only providers whose keys are present are loaded.
GOOGLE_VISION_API_KEY: str | None = os.getenv("GOOGLE_VISION_API_KEY")
OPENAI_API_KEY: str | None        = os.getenv("OPENAI_API_KEY")
ANTHROPIC_API_KEY: str | None     = os.getenv("ANTHROPIC_API_KEY")
GOOGLE_API_KEY: str | None        = os.getenv("GOOGLE_API_KEY")

# Label mode, how to use multiple providers:
#   cheapest          → always use the cheapest available provider (default)
#   merge             → run all providers in parallel and union their labels
#   single:openai/gpt-4o-mini → force a specific provider
LABEL_MODE: str = os.getenv("LABEL_MODE", "cheapest")

# ── Image classification stage ────────────────────────────────────────────────
BATCH_SIZE: int               = int(os.getenv("BATCH_SIZE", "10"))
BATCH_DELAY: float            = float(os.getenv("BATCH_DELAY", "1.0"))
# Wall-clock limit for one job, measured from job start
JOB_TIMEOUT: float            = float(os.getenv("JOB_TIMEOUT", "300"))
# Items beyond this many text survivors are never sent for classification
MAX_IMAGE_ITEMS: int          = int(os.getenv("MAX_IMAGE_ITEMS", "500"))
IMAGE_DOWNLOAD_TIMEOUT: float = float(os.getenv("IMAGE_DOWNLOAD_TIMEOUT", "10"))

# ── Retry policy (catalog pages and image classification) ─────────────────────
RETRY_ATTEMPTS: int     = int(os.getenv("RETRY_ATTEMPTS", "3"))
RETRY_BASE_DELAY: float = float(os.getenv("RETRY_BASE_DELAY", "1.0"))

# ── Text filter ───────────────────────────────────────────────────────────────
# relaxed → any keyword token in the title (default; the image stage adds precision)
# strict  → every token in the title and no unrelated category words
TEXT_FILTER_MODE: str = os.getenv("TEXT_FILTER_MODE", "relaxed")

# ── Batch keyword search ──────────────────────────────────────────────────────
BATCH_SEARCH_DELAY: float = float(os.getenv("BATCH_SEARCH_DELAY", "1.0"))

# ── Category index cache ──────────────────────────────────────────────────────
DATA_DIR: Path             = Path(os.getenv("DATA_DIR", "data"))
CATEGORY_CACHE_HOURS: float = float(os.getenv("CATEGORY_CACHE_HOURS", "24"))

# ── HTTP job-control server ───────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "3001"))

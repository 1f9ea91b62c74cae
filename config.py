# config.py
from dotenv import load_dotenv
from datetime import datetime, timezone
from decimal import Decimal
import logging
import os

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level=LOG_LEVEL):
    """Root handler for uvicorn/CLI runs; a no-op if the host already set one up."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


configure_logging()

logger = logging.getLogger(__name__)


def _parse_deadline(raw):
    """ISO-8601 instant; naive values are taken as UTC. Empty = no deadline."""
    raw = (raw or "").strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    value = datetime.fromisoformat(raw)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


# ------------------------------------------------------------
# Service
# ------------------------------------------------------------
PORT = int(os.getenv("PORT", "3000"))
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", os.getenv("SWAGGER_HOST", ""))

# ------------------------------------------------------------
# Database
# ------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "")

# ------------------------------------------------------------
# Chain node (address indexer)
# ------------------------------------------------------------
NODE_HOST = os.getenv("NODE_HOST", "http://localhost:42220").rstrip("/")
CHAIN_HTTP_TIMEOUT = float(os.getenv("CHAIN_HTTP_TIMEOUT", "10"))

# ------------------------------------------------------------
# Snapshot rules
# ------------------------------------------------------------
SNAPSHOT_BLOCK_HEIGHT = int(os.getenv("SNAPSHOT_BLOCK_HEIGHT", "3000000"))
CLAIM_DEADLINE = _parse_deadline(os.getenv("CLAIM_DEADLINE"))

# ------------------------------------------------------------
# Redistribution
# ------------------------------------------------------------
TOTAL_SUPPLY = Decimal(os.getenv("TOTAL_SUPPLY", "23689538"))
CAP_RATIO = Decimal(os.getenv("CAP_RATIO", "0.5"))
UNIT_SCALE = int(os.getenv("UNIT_SCALE", "100000000"))
SOURCE_TICKER = os.getenv("SOURCE_TICKER", "x42")

# ------------------------------------------------------------
# Notifications
# ------------------------------------------------------------
DISCORD_WEBHOOK_URL = os.getenv("DISCORD_WEBHOOK_URL", "")
CLAIM_SITE_URL = os.getenv("CLAIM_SITE_URL", "https://claim.epix.zone/")
NOTIFY_HTTP_TIMEOUT = float(os.getenv("NOTIFY_HTTP_TIMEOUT", "6"))

logger.info(
    "Config loaded: NODE_HOST=%s SNAPSHOT_BLOCK_HEIGHT=%d CLAIM_DEADLINE=%s "
    "TOTAL_SUPPLY=%s CAP_RATIO=%s UNIT_SCALE=%d DATABASE_URL=%s DISCORD_WEBHOOK_URL=%s",
    NODE_HOST,
    SNAPSHOT_BLOCK_HEIGHT,
    CLAIM_DEADLINE.isoformat() if CLAIM_DEADLINE else "<none>",
    TOTAL_SUPPLY,
    CAP_RATIO,
    UNIT_SCALE,
    "<set>" if DATABASE_URL else "<missing>",
    "<set>" if DISCORD_WEBHOOK_URL else "<missing>",
)

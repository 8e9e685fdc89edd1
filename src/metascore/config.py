"""
Settings for the Metacritic score resolver.

Numeric settings can be overridden through METASCORE_* environment
variables; out-of-range values are clamped and unparseable ones ignored.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _env_number(key: str, default, cast=float, min_val=0):
    """
    Read a numeric environment override.

    Args:
        key: Environment variable name
        default: Value used when unset or unparseable
        cast: int or float
        min_val: Values below this are clamped up to it
    """
    raw = os.environ.get(key)
    if raw is None:
        return default
    try:
        val = cast(raw)
    except ValueError:
        logger.warning(f"Ignoring {key}='{raw}', using default {default}")
        return default
    if val < min_val:
        logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
        return min_val
    return val


# Storage
DB_PATH = Path(os.environ.get("METASCORE_DB", "data/metascore.db"))
STORAGE_KEY_PREFIX = "mc:title:"
CACHE_TTL_DAYS = _env_number("METASCORE_CACHE_TTL_DAYS", 14, cast=int, min_val=1)
CACHE_TTL_SECONDS = CACHE_TTL_DAYS * 24 * 60 * 60

# Network
HTTP_TIMEOUT = _env_number("METASCORE_HTTP_TIMEOUT", 15.0, min_val=1.0)
DEFAULT_MAX_CONCURRENT = _env_number("METASCORE_MAX_CONCURRENT", 5, cast=int, min_val=1)
METACRITIC_BASE = "https://www.metacritic.com"
# Text relay tried after the primary host; the target URL is appended minus its scheme
MIRROR_PREFIX = os.environ.get("METASCORE_MIRROR_PREFIX", "https://r.jina.ai/http://")

CRITIC_SCORE_MAX = 100
USER_SCORE_MAX = 10.0

# Badge colour bands on the 0-100 scale
BAND_GREEN_MIN = 61
BAND_YELLOW_MIN = 40

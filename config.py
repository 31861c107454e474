import os
import sys

# ====================================================================================
# ENVIRONMENT CONFIGURATION: PROD / STAGE / LOCAL isolation through prefixes
# ====================================================================================
# Every variable is read with the environment prefix:
#   - PROD: PROD_SESSION_API_URL, PROD_RETRY_MAX_ATTEMPTS
#   - STAGE: STAGE_SESSION_API_URL, STAGE_RETRY_MAX_ATTEMPTS
#   - LOCAL: LOCAL_SESSION_API_URL, LOCAL_RETRY_MAX_ATTEMPTS
#
# The engine is imported as a library as well as run from main.py, so an invalid
# APP_ENV falls back to prod instead of terminating the interpreter.
# ====================================================================================

APP_ENV = os.getenv("APP_ENV", "prod").lower()
if APP_ENV not in ("prod", "stage", "local"):
    print(f"WARNING: Invalid APP_ENV={APP_ENV}. Must be one of: prod, stage, local. Using prod", file=sys.stderr)
    APP_ENV = "prod"

IS_LOCAL = APP_ENV == "local"
IS_STAGE = APP_ENV == "stage"
IS_PROD = APP_ENV == "prod"


def env(key: str, default: str = "") -> str:
    """
    Read an environment variable with the environment prefix

    Args:
        key: Variable name without prefix (e.g. "SESSION_API_URL")
        default: Value used when the variable is not set

    Example:
        env("SESSION_API_URL") -> "STAGE_SESSION_API_URL" (when APP_ENV=stage)
    """
    env_key = f"{APP_ENV.upper()}_{key}"
    return os.getenv(env_key, default)


def _float(key: str, default: float) -> float:
    raw = env(key, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        print(f"WARNING: {APP_ENV.upper()}_{key}={raw!r} is not a number, using {default}", file=sys.stderr)
        return default


def _int(key: str, default: int, minimum: int, maximum: int) -> int:
    raw = env(key, "")
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        print(f"WARNING: {APP_ENV.upper()}_{key}={raw!r} is not an integer, using {default}", file=sys.stderr)
        return default
    return max(minimum, min(value, maximum))


def _list(key: str, default: str) -> tuple:
    return tuple(item.strip() for item in env(key, default).split(",") if item.strip())


print(f"INFO: Config loaded for environment: {APP_ENV.upper()}", flush=True)

LOG_LEVEL = env("LOG_LEVEL", "INFO").upper()

# ====================================================================================
# UPSTREAM SERVICES
# ====================================================================================

# Session backend (activation sessions, completion reports, proxy credentials)
SESSION_API_URL = env("SESSION_API_URL", "https://api.exongames.co.il").rstrip("/")
SESSION_API_KEY = env("SESSION_API_KEY")

STOREFRONT_API_URL = env("STOREFRONT_API_URL", "https://purchase.mp.microsoft.com").rstrip("/")
ACCOUNT_API_URL = env("ACCOUNT_API_URL", "https://account.microsoft.com").rstrip("/")
CATALOG_API_URL = env("CATALOG_API_URL", "https://displaycatalog.mp.microsoft.com").rstrip("/")

HTTP_TIMEOUT = _float("HTTP_TIMEOUT", 10.0)

# ====================================================================================
# RETRY / TIMEOUTS
# ====================================================================================

RETRY_MAX_ATTEMPTS = _int("RETRY_MAX_ATTEMPTS", 3, minimum=1, maximum=10)
RETRY_INITIAL_DELAY = _float("RETRY_INITIAL_DELAY", 1.0)
RETRY_MAX_DELAY = _float("RETRY_MAX_DELAY", 32.0)

TOKEN_CAPTURE_TIMEOUT = _float("TOKEN_CAPTURE_TIMEOUT", 30.0)
CONVERSION_TIMEOUT = _float("CONVERSION_TIMEOUT", 30.0)
DIAGNOSTICS_TIMEOUT = _float("DIAGNOSTICS_TIMEOUT", 15.0)

# Pause after a successful bundle key before the next one
BUNDLE_KEY_DELAY = _float("BUNDLE_KEY_DELAY", 3.0)

# ====================================================================================
# CREDENTIAL CACHING
# ====================================================================================

TOKEN_CACHE_SECONDS = _float("TOKEN_CACHE_SECONDS", 3600.0)
PROXY_CREDENTIALS_TTL = _float("PROXY_CREDENTIALS_TTL", 3600.0)

# ====================================================================================
# PRODUCT DEFAULTS
# ====================================================================================

DEFAULT_REGION = env("DEFAULT_REGION", "IL").upper()
DEFAULT_VENDOR = env("DEFAULT_VENDOR", "Microsoft Store")
ACCEPTED_VENDORS = _list("ACCEPTED_VENDORS", "Microsoft Store,Xbox,Microsoft,Xbox Game Pass")
GAME_PASS_PRODUCT_IDS = _list("GAME_PASS_PRODUCT_IDS", "CFQ7TTC0K5DJ,CFQ7TTC0KHS0")

# ====================================================================================
# ENTRY POINTS
# ====================================================================================

DEEP_LINK_SCHEMES = _list("DEEP_LINK_SCHEMES", "exonactivate,exonstore")
PORTAL_HOST = env("PORTAL_HOST", "portal.exongames.co.il")
ALLOWED_MESSAGE_ORIGINS = _list(
    "ALLOWED_MESSAGE_ORIGINS",
    "https://exongames.co.il,https://exon-israel.myshopify.com",
)

# Bearer token used by the CLI in place of the web token-capture surface
ACTIVATION_BEARER_TOKEN = env("ACTIVATION_BEARER_TOKEN")

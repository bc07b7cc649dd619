# Configuration and Environment Settings
import os
from pathlib import Path

# API Configuration
API_TITLE = "TOON Provider Tools API"
API_VERSION = "1.0.0"  # Single source of truth for version
SERVER_NAME = "toon-provider-server"

# Provider definitions (.toon files)
PROVIDERS_DIR = os.getenv("PROVIDERS_DIR", os.path.join(os.getcwd(), "providers"))

# TOON defaults
DEFAULT_TABLE_NAME = "data"
TOON_COMMENT_CHAR = os.getenv("TOON_COMMENT_CHAR", "#")


# CORS Settings - load from environment or use secure defaults
def _parse_cors_origins(origins_str: str) -> list[str]:
    """Parse CORS origins from a comma-separated string.

    Args:
        origins_str: Comma-separated list of allowed origins

    Returns:
        List of valid origins with empty strings and duplicates removed
    """
    if not origins_str:
        return []

    origins = [o.strip() for o in origins_str.split(",") if o.strip()]

    # Remove duplicates while preserving order
    return list(dict.fromkeys(origins))


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (ValueError, TypeError):
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except (ValueError, TypeError):
        return default


# Default CORS origins for development
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",  # Vite default port
    "http://127.0.0.1:5173",
]

_cors_origins_str = os.getenv("CORS_ORIGINS")
CORS_ORIGINS = (
    _parse_cors_origins(_cors_origins_str)
    if _cors_origins_str is not None
    else DEFAULT_CORS_ORIGINS
)

# Security headers configuration
SECURE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

# Rate limiting (requests per minute)
RATE_LIMIT = _int_env("RATE_LIMIT", 60)

# Outbound HTTP (seconds)
HTTP_TIMEOUT = _float_env("HTTP_TIMEOUT", 30.0)
RETRY_ATTEMPTS = _int_env("RETRY_ATTEMPTS", 3)
RETRY_MIN_WAIT = _float_env("RETRY_MIN_WAIT", 1.0)
RETRY_MAX_WAIT = _float_env("RETRY_MAX_WAIT", 10.0)

# Response cache
CACHE_DIR = os.getenv("CACHE_DIR", str(Path.home() / ".cache" / "toon-provider-server"))
CACHE_DEFAULT_TTL = _int_env("CACHE_DEFAULT_TTL", 3600)  # 1 hour

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "toon_provider_server.log")

# HTTP server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = _int_env("PORT", 3000)

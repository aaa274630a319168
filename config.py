"""
config.py
---------
Loads environment configuration and decides whether the remote store
(Supabase) credentials are usable.
"""

import os
import re
from dotenv import load_dotenv
import logging

logger = logging.getLogger(__name__)

SUPABASE_DOMAIN = "supabase.co"
KEY_PREFIX = "eyJ"
KEY_MIN_LENGTH = 100
WRONG_PROVIDER_PREFIX = "ssb_"

_KEY_CHARS = re.compile(r"^[A-Za-z0-9._-]*")
_URL_CHARS = re.compile(r"^[A-Za-z0-9._:/-]*")


def _env(name, default=""):
    # Values copied from dashboards often carry a trailing "# comment"
    return (os.getenv(name) or default).split('#')[0].strip()


def load_clean_config():
    """
    Load environment variables from .env file and clean up any comments.
    Returns a clean configuration dictionary.
    """
    load_dotenv()

    config = {}

    # Remote store credentials (VITE_ prefixed names kept for older deployments)
    config["SUPABASE_URL"] = os.getenv("SUPABASE_URL") or os.getenv("VITE_SUPABASE_URL") or ""
    config["SUPABASE_ANON_KEY"] = os.getenv("SUPABASE_ANON_KEY") or os.getenv("VITE_SUPABASE_ANON_KEY") or ""

    # Text generation
    config["OPENAI_API_KEY"] = os.getenv("OPENAI_API_KEY")
    config["OPENAI_MODEL"] = _env("OPENAI_MODEL", "gpt-4o")

    # Local persistence and server
    config["LOCAL_CACHE_DIR"] = _env("LOCAL_CACHE_DIR", ".clinic_cache")
    config["LOG_LEVEL"] = _env("LOG_LEVEL", "INFO").upper()
    try:
        config["PORT"] = int(_env("PORT", "5050"))
    except ValueError:
        logger.warning("Invalid PORT value, falling back to 5050")
        config["PORT"] = 5050

    # Log configuration (without sensitive values)
    logger.info("Loaded configuration:")
    logger.info(f"Supabase URL: {sanitize_url(config['SUPABASE_URL']) or 'Not Set'}")
    logger.info(f"Supabase key: {mask_secret(sanitize_key(config['SUPABASE_ANON_KEY']))}")
    logger.info(f"Local cache dir: {config['LOCAL_CACHE_DIR']}")
    logger.info(f"Port: {config['PORT']}")

    return config


def _strip_wrapping(raw):
    if not isinstance(raw, str):
        return ""
    value = raw.strip()
    while len(value) >= 1 and value[0] in "\"'":
        value = value[1:]
    while len(value) >= 1 and value[-1] in "\"'":
        value = value[:-1]
    return value.strip()


def sanitize_key(raw):
    """Trim, unquote and keep the leading run of token characters."""
    return _KEY_CHARS.match(_strip_wrapping(raw)).group(0)


def sanitize_url(raw):
    """Same as sanitize_key, but keeps ':' and '/' so the scheme survives."""
    return _URL_CHARS.match(_strip_wrapping(raw)).group(0)


def is_url_valid(url):
    return bool(url) and url.startswith("https://") and SUPABASE_DOMAIN in url


def is_key_valid(key):
    return bool(key) and key.startswith(KEY_PREFIX) and len(key) > KEY_MIN_LENGTH


def mask_secret(value):
    if not value:
        return "Not Set"
    return value[:4] + "****"


def is_remote_configured(config=None):
    """True when both Supabase credentials pass validation."""
    if config is None:
        config = load_clean_config()
    url = sanitize_url(config.get("SUPABASE_URL"))
    key = sanitize_key(config.get("SUPABASE_ANON_KEY"))
    return is_url_valid(url) and is_key_valid(key)


def get_configuration_status(config=None):
    """
    Diagnostic view of the remote credentials.

    Returns:
        dict: url, has_url, has_key, is_wrong_provider, is_configured and a
        remediation hint (None when everything checks out).
    """
    if config is None:
        config = load_clean_config()
    url = sanitize_url(config.get("SUPABASE_URL"))
    key = sanitize_key(config.get("SUPABASE_ANON_KEY"))
    has_url = is_url_valid(url)
    has_key = is_key_valid(key)
    wrong_provider = key.startswith(WRONG_PROVIDER_PREFIX)

    hint = None
    if wrong_provider:
        hint = ("La clé fournie ne provient pas de Supabase. Copiez la clé 'anon public' "
                "(commençant par eyJ) depuis Project Settings > API.")
    elif not has_url:
        hint = "SUPABASE_URL absente ou invalide (attendu: https://<projet>.supabase.co)."
    elif not has_key:
        hint = "SUPABASE_ANON_KEY absente ou tronquée. Mode local uniquement."

    return {
        "url": url,
        "has_url": has_url,
        "has_key": has_key,
        "is_wrong_provider": wrong_provider,
        "is_configured": has_url and has_key,
        "hint": hint,
    }


def log_level(name):
    """Numeric logging level for a level name, INFO when the name is unknown."""
    level = getattr(logging, str(name or "").upper(), None)
    if isinstance(level, int):
        return level
    logger.warning(f"Unknown LOG_LEVEL {name!r}, falling back to INFO")
    return logging.INFO

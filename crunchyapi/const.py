# crunchyapi/const.py
"""Constants for the Crunchyroll session client.

All constants defined here are intended to be import-safe across the package.
Endpoint paths and header names are upstream-defined; keep them in one place.
"""

from __future__ import annotations

# --------------------------------------------------------------------------------------
# Core identifiers
# --------------------------------------------------------------------------------------
PACKAGE_NAME: str = "crunchyapi"
# Keep the package version aligned with pyproject.toml
PACKAGE_VERSION: str = "0.14.0"

# --------------------------------------------------------------------------------------
# Upstream endpoints
# --------------------------------------------------------------------------------------
API_BASE_URL: str = "https://www.crunchyroll.com"
TOKEN_ENDPOINT: str = f"{API_BASE_URL}/auth/v1/token"
INDEX_ENDPOINT: str = f"{API_BASE_URL}/index/v2"
PROFILES_ENDPOINT: str = f"{API_BASE_URL}/accounts/v1/me/multiprofile"
BENEFITS_ENDPOINT: str = f"{API_BASE_URL}/subs/v1/subscriptions/{{account_id}}/benefits"

# --------------------------------------------------------------------------------------
# Client authentication (basic auth for the token endpoint)
# --------------------------------------------------------------------------------------
# Client id/secret pair of the web client used for password and refresh grants.
DEFAULT_CLIENT_AUTH: str = (
    "aHJobzlxM2F3dnNrMjJ1LXRzNWE6cHROOURteXRBU2Z6QjZvbXVsSzh6cUxzYTczVE1TY1k="
)
# "cr_web:" - the public client used for anonymous sessions.
DEFAULT_ANONYMOUS_CLIENT_AUTH: str = "Y3Jfd2ViOg=="

TOKEN_SCOPE: str = "offline_access"

GRANT_ANONYMOUS: str = "client_id"
GRANT_PASSWORD: str = "password"
GRANT_REFRESH_TOKEN: str = "refresh_token"
GRANT_REFRESH_TOKEN_PROFILE: str = "refresh_token_profile_id"

# --------------------------------------------------------------------------------------
# Request headers
# --------------------------------------------------------------------------------------
DEFAULT_USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
HEADER_DEVICE_ID: str = "ETP-Device-Id"
HEADER_DEVICE_TYPE: str = "ETP-Device-Type"
HEADER_PROFILE_ID: str = "ETP-Profile-Id"
HEADER_ANONYMOUS_ID: str = "ETP-Anonymous-ID"

DEFAULT_DEVICE_TYPE: str = "Chrome on Windows"

# --------------------------------------------------------------------------------------
# Session defaults
# --------------------------------------------------------------------------------------
DEFAULT_LOCALE: str = "en-US"
# Tokens closer than this to their expiry are treated as expired.
DEFAULT_EXPIRY_MARGIN_S: int = 30
DEFAULT_REQUEST_TIMEOUT_S: float = 30.0
HTTP_CONNECTION_LIMIT: int = 16

PREMIUM_BENEFIT: str = "cr_premium"

# --------------------------------------------------------------------------------------
# Configuration keys
# --------------------------------------------------------------------------------------
CONF_LOCALE: str = "locale"
CONF_PREFERRED_AUDIO_LOCALE: str = "preferred_audio_locale"
CONF_USER_AGENT: str = "user_agent"
CONF_CLIENT_AUTH: str = "client_auth"
CONF_ANONYMOUS_CLIENT_AUTH: str = "anonymous_client_auth"
CONF_EXPIRY_MARGIN: str = "expiry_margin"
CONF_REQUEST_TIMEOUT: str = "request_timeout"
CONF_SCHEMA_MODE: str = "schema_mode"

SCHEMA_MODE_LENIENT: str = "lenient"
SCHEMA_MODE_STRICT: str = "strict"

# --------------------------------------------------------------------------------------
# Environment variables
# --------------------------------------------------------------------------------------
ENV_PREFIX: str = "CRUNCHYAPI_"
# Read once at import time by crunchyapi.schema.
ENV_SCHEMA_MODE: str = f"{ENV_PREFIX}SCHEMA_MODE"

# Live-test fixtures; only the test harness reads these.
ENV_EMAIL: str = f"{ENV_PREFIX}EMAIL"
ENV_PASSWORD: str = f"{ENV_PREFIX}PASSWORD"
ENV_REFRESH_TOKEN: str = f"{ENV_PREFIX}REFRESH_TOKEN"
ENV_DEVICE_ID: str = f"{ENV_PREFIX}DEVICE_ID"
ENV_DEVICE_TYPE: str = f"{ENV_PREFIX}DEVICE_TYPE"
ENV_PROFILE_ID: str = f"{ENV_PREFIX}PROFILE_ID"
ENV_IS_PREMIUM: str = f"{ENV_PREFIX}IS_PREMIUM"

# --------------------------------------------------------------------------------------
# Session persistence
# --------------------------------------------------------------------------------------
SESSION_FILE: str = "session.json"

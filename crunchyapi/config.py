# crunchyapi/config.py
"""Client options for the Crunchyroll session client.

Options are validated with a voluptuous schema and frozen into a
`ClientConfig`. `config_from_env()` reads the same keys from
`CRUNCHYAPI_*` environment variables (e.g. `CRUNCHYAPI_LOCALE`).
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

import voluptuous as vol

from .const import (
    CONF_ANONYMOUS_CLIENT_AUTH,
    CONF_CLIENT_AUTH,
    CONF_EXPIRY_MARGIN,
    CONF_LOCALE,
    CONF_PREFERRED_AUDIO_LOCALE,
    CONF_REQUEST_TIMEOUT,
    CONF_SCHEMA_MODE,
    CONF_USER_AGENT,
    DEFAULT_ANONYMOUS_CLIENT_AUTH,
    DEFAULT_CLIENT_AUTH,
    DEFAULT_EXPIRY_MARGIN_S,
    DEFAULT_LOCALE,
    DEFAULT_REQUEST_TIMEOUT_S,
    DEFAULT_USER_AGENT,
    ENV_PREFIX,
    SCHEMA_MODE_LENIENT,
    SCHEMA_MODE_STRICT,
)
from .exceptions import InvalidConfigError

_LOGGER = logging.getLogger(__name__)


def _non_empty(value: Any) -> str:
    text = str(value).strip()
    if not text:
        raise vol.Invalid("value must not be empty")
    return text


CONFIG_SCHEMA = vol.Schema(
    {
        vol.Optional(CONF_LOCALE, default=DEFAULT_LOCALE): _non_empty,
        vol.Optional(CONF_PREFERRED_AUDIO_LOCALE, default=None): vol.Any(
            None, _non_empty
        ),
        vol.Optional(CONF_USER_AGENT, default=DEFAULT_USER_AGENT): _non_empty,
        vol.Optional(CONF_CLIENT_AUTH, default=DEFAULT_CLIENT_AUTH): _non_empty,
        vol.Optional(
            CONF_ANONYMOUS_CLIENT_AUTH, default=DEFAULT_ANONYMOUS_CLIENT_AUTH
        ): _non_empty,
        vol.Optional(CONF_EXPIRY_MARGIN, default=DEFAULT_EXPIRY_MARGIN_S): vol.All(
            vol.Coerce(int), vol.Range(min=0, max=3600)
        ),
        vol.Optional(CONF_REQUEST_TIMEOUT, default=DEFAULT_REQUEST_TIMEOUT_S): vol.All(
            vol.Coerce(float), vol.Range(min=1, max=600)
        ),
        vol.Optional(CONF_SCHEMA_MODE, default=None): vol.Any(
            None, vol.All(vol.Lower, vol.In([SCHEMA_MODE_LENIENT, SCHEMA_MODE_STRICT]))
        ),
    }
)


@dataclass(slots=True, frozen=True)
class ClientConfig:
    """Validated, immutable client options."""

    locale: str = DEFAULT_LOCALE
    preferred_audio_locale: str | None = None
    user_agent: str = DEFAULT_USER_AGENT
    client_auth: str = DEFAULT_CLIENT_AUTH
    anonymous_client_auth: str = DEFAULT_ANONYMOUS_CLIENT_AUTH
    expiry_margin: int = DEFAULT_EXPIRY_MARGIN_S
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_S
    # None keeps the process-wide default of crunchyapi.schema.
    schema_mode: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def load_config(options: Mapping[str, Any] | None = None) -> ClientConfig:
    """Validate `options` against CONFIG_SCHEMA and return a ClientConfig.

    Raises:
        InvalidConfigError: if an option is unknown or out of range.
    """
    try:
        validated = CONFIG_SCHEMA(dict(options or {}))
    except vol.Invalid as err:
        raise InvalidConfigError("Invalid client options", detail=str(err)) from err
    return ClientConfig(**validated)


def config_from_env(environ: Mapping[str, str] | None = None) -> ClientConfig:
    """Build a ClientConfig from `CRUNCHYAPI_<OPTION>` environment variables."""
    env = os.environ if environ is None else environ
    options: dict[str, Any] = {}
    for key in CONFIG_SCHEMA.schema:
        name = str(key)
        value = env.get(f"{ENV_PREFIX}{name.upper()}")
        if value is not None and value != "":
            options[name] = value
    if options:
        _LOGGER.debug("Client options read from environment: %s", sorted(options))
    return load_config(options)


__all__ = ["CONFIG_SCHEMA", "ClientConfig", "config_from_env", "load_config"]

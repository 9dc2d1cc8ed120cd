# crunchyapi/Auth/token_cache.py
#
#  CrunchyTools - A set of tools to interact with the Crunchyroll API
#  Copyright © 2024 Leon Böttger. All rights reserved.
#
"""JSON persistence of a resumable session token.

Only what a later refresh-token login needs is written: login mode, refresh
token, device binding, profile and account id. Access tokens are never stored.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
from dataclasses import asdict, dataclass
from typing import Any

from ..const import SESSION_FILE
from ..RestApi.util import clip
from .credentials import DeviceIdentifier, RefreshToken, RefreshTokenWithProfile

_LOGGER = logging.getLogger(__name__)

# --- Concurrency primitives ------------------------------------------------------
# Per-process write lock for file updates (also safe from sync paths).
_write_lock = threading.RLock()


@dataclass(slots=True, frozen=True)
class SessionToken:
    """Resumable part of a session."""

    refresh_token: str
    device_id: str
    device_type: str
    device_name: str | None = None
    profile_id: str | None = None
    account_id: str | None = None

    @property
    def device(self) -> DeviceIdentifier:
        return DeviceIdentifier(self.device_id, self.device_type, self.device_name)

    def credentials(self) -> RefreshToken | RefreshTokenWithProfile:
        """Return the login credentials that resume this session."""
        if self.profile_id:
            return RefreshTokenWithProfile(
                self.refresh_token, self.device_id, self.device_type, self.profile_id
            )
        return RefreshToken(self.refresh_token, self.device_id, self.device_type)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionToken:
        try:
            return cls(
                refresh_token=str(data["refresh_token"]),
                device_id=str(data["device_id"]),
                device_type=str(data["device_type"]),
                device_name=data.get("device_name"),
                profile_id=data.get("profile_id"),
                account_id=data.get("account_id"),
            )
        except KeyError as err:
            raise ValueError(f"Session token is missing '{err.args[0]}'") from err

    def __repr__(self) -> str:
        return (
            f"SessionToken(refresh_token={clip(self.refresh_token)!r}, "
            f"device_id={self.device_id!r}, profile_id={self.profile_id!r})"
        )


class SessionStore:
    """Reads and writes one SessionToken as a JSON file."""

    def __init__(self, path: str | os.PathLike[str] | None = None) -> None:
        self._path = os.fspath(path) if path is not None else SESSION_FILE

    @property
    def path(self) -> str:
        return self._path

    # --- Public API (sync) -------------------------------------------------------

    def save(self, token: SessionToken) -> None:
        """Write `token` atomically (temp file + rename)."""
        with _write_lock:
            directory = os.path.dirname(os.path.abspath(self._path))
            os.makedirs(directory, exist_ok=True)
            tmp_path = f"{self._path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(token.to_dict(), f)
            os.replace(tmp_path, self._path)
        _LOGGER.debug("Session token saved to %s", self._path)

    def load(self) -> SessionToken | None:
        """Return the stored token, or None when absent or unreadable."""
        with _write_lock:
            if not os.path.exists(self._path):
                return None
            try:
                with open(self._path, encoding="utf-8") as f:
                    data = json.load(f)
            except (json.JSONDecodeError, OSError) as err:
                _LOGGER.warning("Ignoring unreadable session file %s: %s", self._path, err)
                return None
        if not isinstance(data, dict):
            _LOGGER.warning("Ignoring malformed session file %s", self._path)
            return None
        try:
            return SessionToken.from_dict(data)
        except ValueError as err:
            _LOGGER.warning("Ignoring incomplete session file %s: %s", self._path, err)
            return None

    def clear(self) -> None:
        with _write_lock:
            try:
                os.remove(self._path)
            except FileNotFoundError:
                return
        _LOGGER.debug("Session token removed from %s", self._path)

    # --- Public API (async) ------------------------------------------------------

    async def async_save(self, token: SessionToken) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.save, token)

    async def async_load(self) -> SessionToken | None:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.load)

    async def async_clear(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.clear)


__all__ = ["SessionStore", "SessionToken"]

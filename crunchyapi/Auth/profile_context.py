# crunchyapi/Auth/profile_context.py
#
#  CrunchyTools - A set of tools to interact with the Crunchyroll API
#  Copyright © 2024 Leon Böttger. All rights reserved.
#
"""Profile scope applied to subsequent requests.

Switching a profile is local: it never re-authenticates and never touches the
token. The server judges membership on the next request; the request pipeline
then either confirms the profile or reverts to the last confirmed one.
"""

from __future__ import annotations

import logging
import threading

from ..RestApi.util import clip

_LOGGER = logging.getLogger(__name__)


class ProfileContext:
    def __init__(self, profile_id: str | None = None) -> None:
        self._lock = threading.RLock()
        self._active: str | None = profile_id or None
        self._confirmed: str | None = self._active

    def active_profile(self) -> str | None:
        with self._lock:
            return self._active

    @property
    def confirmed_profile(self) -> str | None:
        with self._lock:
            return self._confirmed

    def switch_profile(self, profile_id: str) -> None:
        """Scope subsequent requests to `profile_id`.

        Raises:
            ValueError: if `profile_id` is empty.
        """
        if not isinstance(profile_id, str) or not profile_id.strip():
            raise ValueError("profile_id must be a non-empty string")
        with self._lock:
            previous = self._active
            self._active = profile_id.strip()
        _LOGGER.debug("Profile scope switched %s -> %s", clip(previous), clip(profile_id))

    def confirm(self, profile_id: str | None) -> None:
        """Record that the server accepted `profile_id`."""
        with self._lock:
            if profile_id == self._active:
                self._confirmed = profile_id

    def revert(self, rejected: str | None) -> str | None:
        """Drop a rejected profile and fall back to the last confirmed one."""
        with self._lock:
            if rejected is not None and rejected == self._active:
                if self._confirmed == rejected:
                    self._confirmed = None
                _LOGGER.warning(
                    "Profile %s was rejected by the server; reverting to %s",
                    clip(rejected),
                    clip(self._confirmed),
                )
                self._active = self._confirmed
            return self._active

    def reset(self, profile_id: str | None = None) -> None:
        """Set both the active and the confirmed profile (new login)."""
        with self._lock:
            self._active = profile_id or None
            self._confirmed = self._active


__all__ = ["ProfileContext"]

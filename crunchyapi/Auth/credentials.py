# crunchyapi/Auth/credentials.py
#
#  CrunchyTools - A set of tools to interact with the Crunchyroll API
#  Copyright © 2024 Leon Böttger. All rights reserved.
#
"""Login credentials and the device a session is bound to.

`Credentials` is a closed union of frozen records; each one maps to exactly
one token grant. `CredentialStore` keeps the current variant and the derived
device binding behind a process-wide lock so setters are safe from any caller.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import StrEnum

from ..const import DEFAULT_DEVICE_TYPE
from ..RestApi.util import generate_random_uuid, mask_email


class LoginMode(StrEnum):
    """How the active session was established."""

    ANONYMOUS = "anonymous"
    CREDENTIALS = "credentials"
    REFRESH_TOKEN = "refresh_token"
    REFRESH_TOKEN_PROFILE = "refresh_token_profile"


@dataclass(slots=True, frozen=True)
class DeviceIdentifier:
    """Device fields sent with every token grant."""

    device_id: str
    device_type: str = DEFAULT_DEVICE_TYPE
    device_name: str | None = None

    @classmethod
    def default(cls) -> DeviceIdentifier:
        """Return a fresh random device identity."""
        return cls(device_id=generate_random_uuid())

    def form_fields(self) -> dict[str, str]:
        fields = {"device_id": self.device_id, "device_type": self.device_type}
        if self.device_name:
            fields["device_name"] = self.device_name
        return fields


@dataclass(slots=True, frozen=True)
class Anonymous:
    """Anonymous session; no account, no refresh token."""

    @property
    def mode(self) -> LoginMode:
        return LoginMode.ANONYMOUS


@dataclass(slots=True, frozen=True)
class EmailPassword:
    email: str
    password: str = field(repr=False)

    @property
    def mode(self) -> LoginMode:
        return LoginMode.CREDENTIALS

    def __str__(self) -> str:
        return f"EmailPassword({mask_email(self.email)})"


@dataclass(slots=True, frozen=True)
class RefreshToken:
    token: str = field(repr=False)
    device_id: str
    device_type: str

    @property
    def mode(self) -> LoginMode:
        return LoginMode.REFRESH_TOKEN

    @property
    def device(self) -> DeviceIdentifier:
        return DeviceIdentifier(self.device_id, self.device_type)


@dataclass(slots=True, frozen=True)
class RefreshTokenWithProfile:
    token: str = field(repr=False)
    device_id: str
    device_type: str
    profile_id: str

    @property
    def mode(self) -> LoginMode:
        return LoginMode.REFRESH_TOKEN_PROFILE

    @property
    def device(self) -> DeviceIdentifier:
        return DeviceIdentifier(self.device_id, self.device_type)


Credentials = Anonymous | EmailPassword | RefreshToken | RefreshTokenWithProfile


def _validate(credentials: Credentials) -> None:
    match credentials:
        case Anonymous():
            return
        case EmailPassword(email=email, password=password):
            if not email or not password:
                raise ValueError("E-mail and password must not be empty")
        case RefreshToken(token=token, device_id=device_id, device_type=device_type):
            if not token or not device_id or not device_type:
                raise ValueError("Refresh token, device id and device type are required")
        case RefreshTokenWithProfile(
            token=token, device_id=device_id, device_type=device_type, profile_id=profile_id
        ):
            if not token or not device_id or not device_type or not profile_id:
                raise ValueError(
                    "Refresh token, device id, device type and profile id are required"
                )
        case _:
            raise TypeError(f"Unsupported credentials type: {type(credentials).__name__}")


class CredentialStore:
    """Holds the credentials variant and the device the session is bound to."""

    def __init__(
        self,
        credentials: Credentials | None = None,
        *,
        device: DeviceIdentifier | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._credentials: Credentials | None = None
        self._device: DeviceIdentifier = device or DeviceIdentifier.default()
        if credentials is not None:
            self.set_credentials(credentials, device=device)

    def set_credentials(
        self, credentials: Credentials, *, device: DeviceIdentifier | None = None
    ) -> None:
        """Replace the stored credentials. No I/O.

        Refresh-token variants carry their own device; an explicit `device`
        only applies to the anonymous and e-mail/password variants.
        """
        _validate(credentials)
        with self._lock:
            self._credentials = credentials
            if isinstance(credentials, (RefreshToken, RefreshTokenWithProfile)):
                self._device = credentials.device
            elif device is not None:
                self._device = device

    @property
    def credentials(self) -> Credentials | None:
        with self._lock:
            return self._credentials

    @property
    def device(self) -> DeviceIdentifier:
        with self._lock:
            return self._device

    @property
    def login_mode(self) -> LoginMode | None:
        with self._lock:
            return self._credentials.mode if self._credentials is not None else None

    @property
    def device_bound(self) -> bool:
        """True for sessions whose token is tied to a device."""
        return self.login_mode not in (None, LoginMode.ANONYMOUS)


__all__ = [
    "Anonymous",
    "CredentialStore",
    "Credentials",
    "DeviceIdentifier",
    "EmailPassword",
    "LoginMode",
    "RefreshToken",
    "RefreshTokenWithProfile",
]

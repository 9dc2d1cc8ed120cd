# crunchyapi/models.py
#
#  CrunchyTools - A set of tools to interact with the Crunchyroll API
#  Copyright © 2024 Leon Böttger. All rights reserved.
#
"""Wire records used by the session engine itself.

Decode them through `crunchyapi.schema.SchemaValidator`; the defaulting and
unknown-field rules live there, not here. Fields with an explicit default stay
optional in strict mode too.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from typing import Any


@dataclass(slots=True)
class AuthResponse:
    """Body of a successful `/auth/v1/token` grant."""

    access_token: str
    expires_in: int
    token_type: str
    scope: str
    country: str
    # Absent for anonymous grants.
    refresh_token: str | None = None
    account_id: str | None = None
    profile_id: str | None = None

    def expires_at(self, now: datetime | None = None) -> datetime:
        """Absolute UTC expiry derived from `expires_in`."""
        base = now if now is not None else datetime.now(UTC)
        return base + timedelta(seconds=self.expires_in)


@dataclass(slots=True)
class CmsSigning:
    """CMS signing data from the index endpoint."""

    bucket: str
    key_pair_id: str
    policy: str
    signature: str
    expires: str = ""


@dataclass(slots=True)
class IndexResponse:
    """Body of `/index/v2`."""

    cms: CmsSigning
    default_marketing_opt_in: bool
    service_available: bool
    cms_beta: dict[str, Any] = field(default_factory=dict)
    cms_web: dict[str, Any] = field(default_factory=dict)

    @property
    def bucket(self) -> str:
        """CMS bucket without its leading slash."""
        return self.cms.bucket.removeprefix("/")


@dataclass(slots=True)
class Benefit:
    benefit: str
    source: str


@dataclass(slots=True)
class BenefitsResponse:
    """Body of `/subs/v1/subscriptions/{account_id}/benefits`."""

    items: list[Benefit]
    total: int
    subscription_country: str = ""

    def has(self, name: str) -> bool:
        return any(item.benefit == name for item in self.items)


@dataclass(slots=True)
class Profile:
    """One profile of a multi-profile account."""

    profile_id: str
    profile_name: str
    username: str
    can_switch: bool
    is_primary: bool
    is_selected: bool
    maturity_rating: str
    email: str = ""
    avatar: str = ""
    wallpaper: str = ""
    preferred_communication_language: str | None = None
    preferred_content_audio_language: str | None = None
    preferred_content_subtitle_language: str | None = None
    extended_maturity_rating: dict[str, Any] = field(default_factory=dict)
    do_not_sell: bool = False


@dataclass(slots=True)
class Profiles:
    """Body of `/accounts/v1/me/multiprofile`."""

    profiles: list[Profile]
    tier_max_profiles: int
    max_profiles: int

    def get(self, profile_id: str) -> Profile | None:
        for profile in self.profiles:
            if profile.profile_id == profile_id:
                return profile
        return None


__all__ = [
    "AuthResponse",
    "Benefit",
    "BenefitsResponse",
    "CmsSigning",
    "IndexResponse",
    "Profile",
    "Profiles",
]

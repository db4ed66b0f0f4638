"""Authenticated actor context for request processing."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from civic_portal.storage.orm import UserRole


@dataclass(frozen=True)
class ActorContext:
    """Authenticated actor, injected into requests that carry an API key.

    ``session_key`` identifies the actor's session (the API key prefix)
    and keys per-session state such as the admin tenant choice.
    """

    user_id: uuid.UUID
    name: str
    role: UserRole
    home_city_id: uuid.UUID | None
    session_key: str

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_moderator(self) -> bool:
        return self.role == UserRole.MODERATOR

"""Actor policies over the resolved tenant, including the admin switcher.

Three closed variants decide what an actor's effective city is:

* ``OrdinaryMember`` keeps whatever the resolver bound.
* ``Moderator`` is pinned to its home city (``filament_user_lock``).
* ``Administrator`` picks a city per session via ``?tenant_city=<slug>``,
  with a fallback chain when no choice exists yet.

Every change of an administrator's effective city is logged as
``tenant_switch`` with actor, previous city, new city and source.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from threading import Lock
from typing import Protocol

import structlog
from redis.asyncio import Redis

from civic_portal.auth.context import ActorContext
from civic_portal.storage.orm import City, UserRole
from civic_portal.tenancy.context import ResolutionSource, TenantContext
from civic_portal.tenancy.incidents import IncidentType, TenantIncidentReporter
from civic_portal.tenancy.registry import TenantRegistry, normalize_slug

logger = structlog.get_logger()

OVERRIDE_KEY_PREFIX = "tenant_override:"


@dataclass(frozen=True)
class TenantOverride:
    """An administrator's chosen city for the rest of the session."""

    city_id: uuid.UUID
    chosen_at: datetime

    @classmethod
    def choose(cls, city: City, now: datetime | None = None) -> TenantOverride:
        return cls(city_id=city.id, chosen_at=now or datetime.now(UTC))

    def to_json(self) -> str:
        return json.dumps(
            {"city_id": str(self.city_id), "chosen_at": self.chosen_at.isoformat()}
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> TenantOverride | None:
        """Parse stored state; None for anything malformed."""
        try:
            data = json.loads(raw)
            return cls(
                city_id=uuid.UUID(data["city_id"]),
                chosen_at=datetime.fromisoformat(data["chosen_at"]),
            )
        except (ValueError, KeyError, TypeError):
            return None


class OverrideStore(Protocol):
    """Per-session storage of the admin tenant choice."""

    async def load(self, session_key: str) -> TenantOverride | None: ...

    async def save(self, session_key: str, override: TenantOverride) -> None: ...

    async def clear(self, session_key: str) -> None: ...


class InMemoryOverrideStore:
    """Process-local store for tests and CLI use."""

    def __init__(self) -> None:
        self._data: dict[str, TenantOverride] = {}
        self._lock = Lock()

    async def load(self, session_key: str) -> TenantOverride | None:
        with self._lock:
            return self._data.get(session_key)

    async def save(self, session_key: str, override: TenantOverride) -> None:
        with self._lock:
            self._data[session_key] = override

    async def clear(self, session_key: str) -> None:
        with self._lock:
            self._data.pop(session_key, None)


class RedisOverrideStore:
    """Redis-backed store, one key per admin session with a TTL."""

    def __init__(self, redis: Redis, ttl_seconds: int) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    @staticmethod
    def _key(session_key: str) -> str:
        return f"{OVERRIDE_KEY_PREFIX}{session_key}"

    async def load(self, session_key: str) -> TenantOverride | None:
        raw = await self._redis.get(self._key(session_key))
        if raw is None:
            return None
        return TenantOverride.from_json(raw)

    async def save(self, session_key: str, override: TenantOverride) -> None:
        await self._redis.set(self._key(session_key), override.to_json(), ex=self._ttl)

    async def clear(self, session_key: str) -> None:
        await self._redis.delete(self._key(session_key))


@dataclass(frozen=True)
class PolicyEnvironment:
    """Collaborators shared by all actor policies."""

    registry: TenantRegistry
    store: OverrideStore
    reporter: TenantIncidentReporter


class ActorPolicy(Protocol):
    async def apply(
        self,
        actor: ActorContext,
        context: TenantContext,
        env: PolicyEnvironment,
        *,
        switch_slug: str | None = None,
    ) -> None: ...


class OrdinaryMember:
    """No override capability; the resolver's binding stands."""

    async def apply(
        self,
        actor: ActorContext,
        context: TenantContext,
        env: PolicyEnvironment,
        *,
        switch_slug: str | None = None,
    ) -> None:
        return None


class Moderator:
    """Hard lock to the moderator's home city."""

    async def apply(
        self,
        actor: ActorContext,
        context: TenantContext,
        env: PolicyEnvironment,
        *,
        switch_slug: str | None = None,
    ) -> None:
        city = await env.registry.get_active_by_id(actor.home_city_id)
        if city is None:
            logger.warning(
                "tenant_moderator_without_active_city",
                actor_id=str(actor.user_id),
                home_city_id=str(actor.home_city_id) if actor.home_city_id else None,
            )
            return
        context.rebind(city, ResolutionSource.FILAMENT_USER_LOCK)


class Administrator:
    """Session-scoped tenant switcher."""

    async def apply(
        self,
        actor: ActorContext,
        context: TenantContext,
        env: PolicyEnvironment,
        *,
        switch_slug: str | None = None,
    ) -> None:
        stored = await env.store.load(actor.session_key)
        previous_city_id = stored.city_id if stored is not None else None

        if switch_slug is not None and switch_slug.strip():
            switched = await self._switch(
                actor, context, env, normalize_slug(switch_slug), previous_city_id
            )
            if switched:
                return

        if stored is not None:
            city = await env.registry.get_active_by_id(stored.city_id)
            if city is not None:
                context.rebind(city, ResolutionSource.SESSION_OVERRIDE)
                return

            await env.store.clear(actor.session_key)
            logger.warning(
                "tenant_switch_city_not_found",
                actor_id=str(actor.user_id),
                city_id=str(stored.city_id),
            )

        city = await self._fallback_city(actor, context, env)
        if city is None:
            logger.warning("tenant_switch_no_active_city", actor_id=str(actor.user_id))
            return

        await env.store.save(actor.session_key, TenantOverride.choose(city))
        _log_switch(actor, previous_city_id, city, ResolutionSource.FALLBACK)
        context.rebind(city, ResolutionSource.SESSION_OVERRIDE)

    async def _switch(
        self,
        actor: ActorContext,
        context: TenantContext,
        env: PolicyEnvironment,
        slug: str,
        previous_city_id: uuid.UUID | None,
    ) -> bool:
        city = await env.registry.get_active_by_slug(slug)
        if city is None:
            logger.warning(
                "tenant_switch_invalid_city",
                actor_id=str(actor.user_id),
                requested_slug=slug,
            )
            await env.reporter.record(
                IncidentType.SWITCH_INVALID_CITY,
                {"actor_id": str(actor.user_id), "requested_slug": slug},
                city_id=previous_city_id,
                source="admin_switcher",
            )
            return False

        await env.store.save(actor.session_key, TenantOverride.choose(city))
        if previous_city_id != city.id:
            _log_switch(
                actor, previous_city_id, city, ResolutionSource.SESSION_OVERRIDE
            )
        context.rebind(city, ResolutionSource.SESSION_OVERRIDE)
        return True

    async def _fallback_city(
        self,
        actor: ActorContext,
        context: TenantContext,
        env: PolicyEnvironment,
    ) -> City | None:
        if context.city is not None and context.city.active:
            return context.city

        home = await env.registry.get_active_by_id(actor.home_city_id)
        if home is not None:
            return home

        return await env.registry.first_active_by_name()


def _log_switch(
    actor: ActorContext,
    previous_city_id: uuid.UUID | None,
    city: City,
    source: ResolutionSource,
) -> None:
    logger.info(
        "tenant_switch",
        actor_id=str(actor.user_id),
        previous_city_id=str(previous_city_id) if previous_city_id else None,
        current_city_id=str(city.id),
        current_city_slug=city.slug,
        source=str(source),
    )


_POLICIES: dict[UserRole, ActorPolicy] = {
    UserRole.MEMBER: OrdinaryMember(),
    UserRole.MODERATOR: Moderator(),
    UserRole.ADMIN: Administrator(),
}


def policy_for(actor: ActorContext | None) -> ActorPolicy:
    """Policy for an actor; anonymous requests behave as members."""
    if actor is None:
        return _POLICIES[UserRole.MEMBER]
    return _POLICIES.get(actor.role, _POLICIES[UserRole.MEMBER])


async def apply_actor_policy(
    actor: ActorContext | None,
    context: TenantContext,
    env: PolicyEnvironment,
    *,
    switch_slug: str | None = None,
) -> None:
    """Adjust ``context`` for the actor. Switch slugs only matter to admins."""
    if actor is None:
        return
    await policy_for(actor).apply(actor, context, env, switch_slug=switch_slug)

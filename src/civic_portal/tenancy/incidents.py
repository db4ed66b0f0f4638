"""Tenancy incident sink: durable record plus a structured log line."""

from __future__ import annotations

import hashlib
import time
import uuid
from collections import defaultdict
from enum import StrEnum
from threading import Lock
from typing import Any, Protocol

import structlog
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from civic_portal.storage.orm import TenantIncident

logger = structlog.get_logger()


class IncidentSeverity(StrEnum):
    WARNING = "warning"
    CRITICAL = "critical"


class IncidentType(StrEnum):
    HEADER_PATH_MISMATCH = "tenant_header_path_mismatch"
    SWITCH_INVALID_CITY = "tenant_switch_invalid_city"
    RESOLUTION_FAILED = "tenant_resolution_failed"
    CROSS_TENANT_WRITE = "tenant_cross_write_rejected"


MISMATCH_COUNTER_PREFIX = "tenant_incident:"


class MismatchCounter(Protocol):
    async def increment(self, key: str) -> int: ...


class SlidingWindowCounter:
    """Per-key occurrence counter over a sliding time window.

    Thread-safe via Lock. Single-instance only; counts are not
    shared between worker processes.
    """

    def __init__(self, window_seconds: int = 300) -> None:
        self._window = window_seconds
        self._hits: dict[str, list[float]] = defaultdict(list)
        self._lock = Lock()

    def hit(self, key: str) -> int:
        """Record one occurrence and return the count inside the window."""
        now = time.monotonic()
        cutoff = now - self._window

        with self._lock:
            hits = [t for t in self._hits[key] if t > cutoff]
            hits.append(now)
            self._hits[key] = hits
            return len(hits)

    async def increment(self, key: str) -> int:
        return self.hit(key)

    def cleanup(self) -> int:
        """Drop keys with no hits left in the window.

        Returns:
            Number of keys removed.
        """
        cutoff = time.monotonic() - self._window
        with self._lock:
            stale = [
                k for k, hits in self._hits.items() if all(t <= cutoff for t in hits)
            ]
            for key in stale:
                del self._hits[key]
        return len(stale)


class RedisWindowCounter:
    """Occurrence counter shared by every process through Redis.

    ``INCR`` on each hit, ``EXPIRE`` when the key is created: the window
    starts at the first occurrence and the key disappears with it.
    """

    def __init__(self, redis: Redis, window_seconds: int = 300) -> None:
        self._redis = redis
        self._window = window_seconds

    async def increment(self, key: str) -> int:
        name = f"{MISMATCH_COUNTER_PREFIX}{key}"
        count = int(await self._redis.incr(name))
        if count == 1:
            await self._redis.expire(name, self._window)
        return count


def mismatch_fingerprint(host: str, header_slug: str, path_slug: str) -> str:
    raw = f"{host.lower()}|{header_slug}|{path_slug}"
    return "header_path_mismatch:" + hashlib.sha1(raw.encode()).hexdigest()


class TenantIncidentReporter:
    """Persist and log tenancy anomalies.

    Never raises: an observability failure must not block the request
    that triggered it. Incidents are written through a dedicated
    session so the caller's transaction is left untouched.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None,
        *,
        window_seconds: int = 300,
        threshold: int = 5,
        mismatch_alerts_enabled: bool = True,
        counter: MismatchCounter | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._window_seconds = window_seconds
        self._threshold = threshold
        self._mismatch_alerts_enabled = mismatch_alerts_enabled
        self._counter: MismatchCounter = counter or SlidingWindowCounter(
            window_seconds
        )

    @property
    def counter(self) -> MismatchCounter:
        return self._counter

    async def record(
        self,
        incident_type: str,
        context: dict[str, Any] | None = None,
        *,
        city_id: uuid.UUID | None = None,
        severity: IncidentSeverity = IncidentSeverity.WARNING,
        source: str | None = None,
        module_key: str | None = None,
        request_id: str | None = None,
        trace_id: str | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "city_id": city_id,
            "type": str(incident_type),
            "severity": str(severity),
            "source": source,
            "module_key": module_key,
            "request_id": request_id,
            "trace_id": trace_id,
            "context": context or {},
        }

        if self._session_factory is not None:
            try:
                async with self._session_factory() as session:
                    session.add(TenantIncident(**payload))
                    await session.commit()
            except Exception as exc:
                logger.error(
                    "tenant_incident_persist_failed",
                    type=str(incident_type),
                    severity=str(severity),
                    error=str(exc),
                )

        fields = {k: v for k, v in payload.items() if v is not None}
        fields.pop("type")
        if fields.get("city_id") is not None:
            fields["city_id"] = str(fields["city_id"])
        if severity == IncidentSeverity.CRITICAL:
            logger.error(str(incident_type), **fields)
        else:
            logger.warning(str(incident_type), **fields)

    async def record_header_path_mismatch(
        self,
        *,
        host: str,
        path: str,
        header_slug: str,
        path_slug: str,
        resolved_city_id: uuid.UUID | None = None,
        resolved_city_slug: str | None = None,
        request_id: str | None = None,
    ) -> IncidentSeverity | None:
        """Count the mismatch and escalate once the threshold is reached.

        Returns:
            Severity recorded, or None when mismatch alerts are disabled.
        """
        if not self._mismatch_alerts_enabled:
            return None

        fingerprint = mismatch_fingerprint(host, header_slug, path_slug)
        try:
            count = await self._counter.increment(fingerprint)
        except Exception as exc:
            logger.error("tenant_mismatch_counter_failed", error=str(exc))
            count = 1
        severity = (
            IncidentSeverity.CRITICAL
            if count >= self._threshold
            else IncidentSeverity.WARNING
        )

        await self.record(
            IncidentType.HEADER_PATH_MISMATCH,
            {
                "host": host.lower(),
                "path": path,
                "x_city": header_slug,
                "path_city": path_slug,
                "count_in_window": count,
                "window_seconds": self._window_seconds,
                "threshold": self._threshold,
                "resolved_city_slug": resolved_city_slug,
            },
            city_id=resolved_city_id,
            severity=severity,
            source="tenant_context",
            request_id=request_id,
        )
        return severity

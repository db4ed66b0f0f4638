"""Aggregation of bairro names the address lookup could not match."""

from __future__ import annotations

import re
import unicodedata
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from civic_portal.storage.orm import AddressMismatchAgg
from civic_portal.tenancy.context import TenantContext
from civic_portal.tenancy.scope import TenantScope

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def canonical_key(text: str) -> str:
    """Lowercase, accent-free, hyphen-separated key.

    ``"  Jardim   São Paulo "`` -> ``"jardim-sao-paulo"``.
    """
    decomposed = unicodedata.normalize("NFKD", text)
    ascii_text = decomposed.encode("ascii", "ignore").decode("ascii").lower()
    return _NON_ALNUM.sub("-", ascii_text).strip("-")


class AddressMismatchRepository:
    """Counts unmatched bairro names per city and provider."""

    def __init__(self, session: AsyncSession, context: TenantContext) -> None:
        self._session = session
        self._scope = TenantScope(session, context, AddressMismatchAgg)

    async def record(
        self,
        bairro_text: str,
        *,
        provider: str = "viacep",
        now: datetime | None = None,
    ) -> AddressMismatchAgg:
        """Increment the aggregate for ``bairro_text`` or create it.

        The caller is responsible for committing the session.
        """
        now = now or datetime.now(UTC)
        key = canonical_key(bairro_text)

        stmt = self._scope.select().where(
            AddressMismatchAgg.bairro_text_key == key,
            AddressMismatchAgg.provider == provider,
        )
        result = await self._session.execute(stmt)
        existing = result.scalar_one_or_none()

        if existing is not None:
            existing.count += 1
            existing.last_seen_at = now
            return await self._scope.save(existing)

        return await self._scope.add(
            AddressMismatchAgg(
                bairro_text_key=key,
                bairro_text_example=bairro_text.strip(),
                provider=provider,
                count=1,
                last_seen_at=now,
            )
        )

"""
Lifecycle Audit Service

Immutable, hash-chained trail of optimization lifecycle events.
Every propose / apply / reject writes one entry; entries are never updated.
"""

import hashlib
import json
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pipeline_analytics.models import LifecycleEvent

# Advisory lock key serializing appends to the single lifecycle chain.
CHAIN_LOCK_KEY = 0x5049504C


class LifecycleAuditService:
    """Hash-chained audit trail for candidate transitions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _calculate_hash(self, content: dict, previous_hash: str | None) -> str:
        """SHA-256 hash of entry contents + previous hash."""
        payload = {
            "content": content,
            "previous_hash": previous_hash or "",
        }
        raw = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(raw.encode()).hexdigest()

    async def _lock_chain(self) -> None:
        """Hold the chain head until this transaction ends (Postgres only)."""
        if self.session.get_bind().dialect.name == "postgresql":
            await self.session.execute(select(func.pg_advisory_xact_lock(CHAIN_LOCK_KEY)))

    async def _get_latest_hash(self) -> str | None:
        result = await self.session.execute(
            select(LifecycleEvent.current_hash)
            .order_by(LifecycleEvent.id.desc())
            .limit(1)
        )
        return result.scalar()

    async def record(
        self,
        event_type: str,
        *,
        optimization_id: str,
        pipeline_config_id: str,
        actor: str = "system",
        details: dict | None = None,
    ) -> LifecycleEvent:
        """Append an entry. ``event_type`` is proposed, applied or rejected."""
        await self._lock_chain()
        previous_hash = await self._get_latest_hash()

        entry_details = details or {}
        content_for_hash = {
            "event_type": event_type,
            "actor": actor,
            "optimization_id": optimization_id,
            "pipeline_config_id": pipeline_config_id,
            "details": entry_details,
        }
        current_hash = self._calculate_hash(content_for_hash, previous_hash)

        entry = LifecycleEvent(
            event_id=str(uuid4()),
            event_type=event_type,
            actor=actor,
            optimization_id=optimization_id,
            pipeline_config_id=pipeline_config_id,
            details=entry_details,
            previous_hash=previous_hash,
            current_hash=current_hash,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def history(self, optimization_id: str) -> list[LifecycleEvent]:
        result = await self.session.execute(
            select(LifecycleEvent)
            .where(LifecycleEvent.optimization_id == optimization_id)
            .order_by(LifecycleEvent.id.asc())
        )
        return list(result.scalars())

    async def verify_chain_integrity(self) -> dict:
        """Walk the full chain and verify each entry's hash."""
        result = await self.session.execute(
            select(LifecycleEvent).order_by(LifecycleEvent.id.asc())
        )
        entries = list(result.scalars())

        if not entries:
            return {"valid": True, "entries_checked": 0, "first_invalid": None}

        for i, entry in enumerate(entries):
            expected_prev = entries[i - 1].current_hash if i > 0 else None
            if entry.previous_hash != expected_prev:
                return {
                    "valid": False,
                    "entries_checked": i + 1,
                    "first_invalid": entry.event_id,
                    "reason": "previous_hash mismatch",
                }

            content = {
                "event_type": entry.event_type,
                "actor": entry.actor,
                "optimization_id": entry.optimization_id,
                "pipeline_config_id": entry.pipeline_config_id,
                "details": entry.details,
            }
            if entry.current_hash != self._calculate_hash(content, entry.previous_hash):
                return {
                    "valid": False,
                    "entries_checked": i + 1,
                    "first_invalid": entry.event_id,
                    "reason": "current_hash mismatch (data tampered)",
                }

        return {"valid": True, "entries_checked": len(entries), "first_invalid": None}

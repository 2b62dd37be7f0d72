"""
Estimate snapshots — append-only, versioned copies of finished estimates.

Saving the same estimate name again never overwrites: it adds version n+1.
"""
import copy
import logging
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.models.orm_models import EstimateSnapshot

logger = logging.getLogger("elinstall-snapshots")


class SnapshotStore(Protocol):
    async def save(
        self,
        estimate_name: str,
        input_payload: Dict[str, Any],
        result_payload: Dict[str, Any],
        customer_id: Optional[str] = None,
    ) -> int:
        ...


class InMemorySnapshotStore:
    """Process-local store; payloads are deep-copied so later mutation cannot alter history."""

    def __init__(self):
        self._versions: Dict[str, List[dict]] = {}

    async def save(self, estimate_name, input_payload, result_payload, customer_id=None) -> int:
        history = self._versions.setdefault(estimate_name, [])
        version = len(history) + 1
        history.append({
            "estimate_name": estimate_name,
            "version": version,
            "customer_id": customer_id,
            "input_payload": copy.deepcopy(input_payload),
            "result_payload": copy.deepcopy(result_payload),
        })
        logger.debug(f"Snapshot {estimate_name!r} v{version} stored in memory")
        return version

    def versions(self, estimate_name: str) -> List[dict]:
        return [copy.deepcopy(v) for v in self._versions.get(estimate_name, [])]

    def latest(self, estimate_name: str) -> Optional[dict]:
        history = self._versions.get(estimate_name)
        return copy.deepcopy(history[-1]) if history else None


class SqlSnapshotStore:
    """Writes to ``estimate_snapshots``; the (name, version) unique constraint guards races."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        if session_factory is None:
            from app.db import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self._session_factory = session_factory

    async def save(self, estimate_name, input_payload, result_payload, customer_id=None) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(func.max(EstimateSnapshot.version))
                    .where(EstimateSnapshot.estimate_name == estimate_name)
                )
                version = (result.scalar() or 0) + 1
                session.add(EstimateSnapshot(
                    estimate_name=estimate_name,
                    version=version,
                    customer_id=customer_id,
                    input_payload=input_payload,
                    result_payload=result_payload,
                ))
        logger.info(f"Snapshot {estimate_name!r} v{version} saved")
        return version

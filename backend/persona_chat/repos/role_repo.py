from __future__ import annotations

import json
from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.db.models import RoleMemoryItem, RoleRecord
from persona_chat.memory.types import ConsistencyState, MemoryRecord, Role

SHORT_TERM = "short"
LONG_TERM = "long"


class RoleRepo:
    """Repository for role identities and their memory lists."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def save_role(self, role: Role) -> None:
        """Replace the stored identity and memory rows of one role."""

        record = await self._db.get(RoleRecord, role.id)
        traits_json = json.dumps(role.consistency.traits, ensure_ascii=False)
        if record:
            record.name = role.name
            record.background = role.background
            record.personality = role.personality
            record.traits_json = traits_json
        else:
            self._db.add(
                RoleRecord(
                    id=role.id,
                    name=role.name,
                    background=role.background,
                    personality=role.personality,
                    traits_json=traits_json,
                )
            )
        await self._db.flush()

        await self._db.execute(delete(RoleMemoryItem).where(RoleMemoryItem.role_id == role.id))
        self._db.add_all(self._memory_rows(role.id, LONG_TERM, role.consistency.long_term))
        self._db.add_all(self._memory_rows(role.id, SHORT_TERM, role.consistency.memories))
        await self._db.flush()

    async def load_roles(self) -> list[Role]:
        """Load every stored role with its memory lists in order."""

        role_rows = (await self._db.execute(select(RoleRecord))).scalars().all()
        memory_rows = (
            await self._db.execute(
                select(RoleMemoryItem).order_by(RoleMemoryItem.role_id, RoleMemoryItem.seq)
            )
        ).scalars().all()

        memories: dict[str, dict[str, list[MemoryRecord]]] = {}
        for row in memory_rows:
            tiers = memories.setdefault(row.role_id, {SHORT_TERM: [], LONG_TERM: []})
            tiers.setdefault(row.tier, []).append(
                MemoryRecord(
                    content=row.content,
                    scene=row.scene,
                    source=row.source,  # type: ignore[arg-type]
                    timestamp=row.created_at,
                )
            )

        roles: list[Role] = []
        for row in role_rows:
            tiers = memories.get(row.id, {})
            traits = json.loads(row.traits_json or "[]")
            roles.append(
                Role(
                    id=row.id,
                    name=row.name,
                    background=row.background,
                    personality=row.personality,
                    consistency=ConsistencyState(
                        tone=row.personality,
                        traits=[str(item) for item in traits],
                        memories=tiers.get(SHORT_TERM, []),
                        long_term=tiers.get(LONG_TERM, []),
                    ),
                )
            )
        return roles

    @staticmethod
    def _memory_rows(
        role_id: str, tier: str, records: Sequence[MemoryRecord]
    ) -> list[RoleMemoryItem]:
        return [
            RoleMemoryItem(
                role_id=role_id,
                tier=tier,
                seq=index,
                scene=record.scene,
                source=record.source,
                content=record.content,
                created_at=record.timestamp,
            )
            for index, record in enumerate(records)
        ]

"""
Tier Results

Every tier query ends as a TierResult: success with a payload, empty,
or failed with the error text. A failing tier never fails the caller.
"""
import enum
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...graph.namespace import namespace_clause
from ...models.entity import EntityDefinition

logger = logging.getLogger(__name__)


class TierStatus(str, enum.Enum):
    SUCCESS = "success"
    NULL = "null"
    ERROR = "error"


@dataclass(frozen=True)
class TierResult:
    """Outcome of one tier query; match on `status`."""
    status: TierStatus
    payload: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, payload: Any) -> "TierResult":
        return cls(TierStatus.SUCCESS, payload)

    @classmethod
    def empty(cls) -> "TierResult":
        return cls(TierStatus.NULL, [])

    @classmethod
    def failed(cls, error: Any) -> "TierResult":
        return cls(TierStatus.ERROR, [], str(error) or type(error).__name__)

    def size(self) -> int:
        return len(self.payload) if isinstance(self.payload, (list, dict)) else 0


async def run_tier(name: str, query: Awaitable[Any]) -> TierResult:
    """Await a tier query and fold any exception into a failed result."""
    try:
        payload = await query
    except Exception as e:
        logger.warning(f"Tier {name} failed: {type(e).__name__}: {e}")
        return TierResult.failed(e)
    if not payload:
        return TierResult.empty()
    return TierResult.success(payload)


def _mentions(text: str, term: str) -> bool:
    """Case-insensitive, word-bounded containment."""
    if not term:
        return False
    return re.search(rf"(?<!\w){re.escape(term)}(?!\w)", text, re.IGNORECASE) is not None


def is_referenced(names: Iterable[str], user_query: str, mentioned: Iterable[str]) -> bool:
    """True when any of the names was explicitly mentioned or appears in the query."""
    wanted = {m.strip().lower() for m in mentioned if m and m.strip()}
    for name in names:
        if name.lower() in wanted or _mentions(user_query, name):
            return True
    return False


async def referenced_entities(
    session: AsyncSession,
    user_query: str,
    mentioned: List[str],
    *,
    namespace: Optional[str],
) -> List[EntityDefinition]:
    """Entities of a namespace referenced by name or alias."""
    result = await session.execute(
        select(EntityDefinition)
        .where(namespace_clause(EntityDefinition.namespace, namespace))
        .order_by(EntityDefinition.name)
    )
    return [
        entity for entity in result.scalars()
        if is_referenced([entity.name, *entity.aliases], user_query, mentioned)
    ]

"""
Validation Rules API

Per-entity-type field constraints, checked on every entity write.
"""
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db, unit_of_work
from ..graph import EntityStore
from ..schemas.entity import ValidationRuleResponse, ValidationRuleSet

router = APIRouter(prefix="/validation-rules", tags=["validation-rules"])


@router.get("", response_model=List[ValidationRuleResponse])
async def list_rules(db: AsyncSession = Depends(get_db)):
    return [ValidationRuleResponse.model_validate(r) for r in await EntityStore(db).list_rules()]


@router.post("", response_model=ValidationRuleResponse)
async def save_rules(
    data: ValidationRuleSet,
    db: AsyncSession = Depends(get_db),
):
    """Replace the rule set of one entity type."""
    rules = [rule.model_dump(by_alias=True, exclude_none=True) for rule in data.rules]
    async with unit_of_work(db):
        rule_set = await EntityStore(db).upsert_rules(data.entity_type, rules)
    return ValidationRuleResponse.model_validate(rule_set)


@router.delete("/{entity_type}")
async def delete_rules(
    entity_type: str,
    db: AsyncSession = Depends(get_db),
):
    async with unit_of_work(db):
        await EntityStore(db).delete_rules(entity_type)
    return {"status": "deleted", "entity_type": entity_type}

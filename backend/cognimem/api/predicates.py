"""
Predicates API

Endpoints for relationship labels.
"""
from typing import List
from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db, unit_of_work
from ..graph import EntityStore
from ..schemas.entity import PredicateCreate, PredicateResponse, PredicateUpdate

router = APIRouter(prefix="/predicates", tags=["predicates"])


@router.get("", response_model=List[PredicateResponse])
async def list_predicates(db: AsyncSession = Depends(get_db)):
    return [PredicateResponse.model_validate(p) for p in await EntityStore(db).list_predicates()]


@router.post("", response_model=PredicateResponse, status_code=201)
async def create_predicate(
    data: PredicateCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Create a predicate; an existing name is updated and answered with 200."""
    async with unit_of_work(db):
        predicate, created = await EntityStore(db).upsert_predicate(
            data.name,
            data.description,
            is_transitive=data.is_transitive,
            is_symmetric=data.is_symmetric,
        )
    if not created:
        response.status_code = 200
    return PredicateResponse.model_validate(predicate)


@router.put("/{predicate_id}", response_model=PredicateResponse)
async def update_predicate(
    predicate_id: str,
    data: PredicateUpdate,
    db: AsyncSession = Depends(get_db),
):
    async with unit_of_work(db):
        predicate = await EntityStore(db).update_predicate(
            predicate_id, data.model_dump(exclude_unset=True)
        )
    return PredicateResponse.model_validate(predicate)


@router.delete("/{predicate_id}")
async def delete_predicate(
    predicate_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Delete a predicate and every relationship that uses it."""
    async with unit_of_work(db):
        await EntityStore(db).delete_predicate(predicate_id)
    return {"status": "deleted", "predicate_id": predicate_id}

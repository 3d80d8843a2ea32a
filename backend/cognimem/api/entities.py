"""
Entities API

Endpoints for entity CRUD, duplicate detection, merge, split and bulk actions.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db, unit_of_work
from ..graph import ALL_NAMESPACES, ConsistencyEngine, EntityStore
from ..schemas.entity import (
    BulkActionRequest,
    BulkActionResponse,
    DuplicatePairResponse,
    EntityCreate,
    EntityResponse,
    EntityUpdate,
    MergeRequest,
    SplitRequest,
    SplitResponse,
)

router = APIRouter(prefix="/entities", tags=["entities"])


def namespace_filter(
    namespace: Optional[str] = Query(None, description="Only this namespace"),
    global_only: bool = Query(False, alias="global", description="Only the global namespace"),
):
    """Query params -> namespace selector. Neither given means every namespace."""
    if global_only:
        return None
    if namespace is None:
        return ALL_NAMESPACES
    return namespace


@router.get("", response_model=List[EntityResponse])
async def list_entities(
    type: Optional[str] = None,
    namespace=Depends(namespace_filter),
    db: AsyncSession = Depends(get_db),
):
    """List entities, optionally filtered by type and namespace."""
    entities = await EntityStore(db).list(namespace=namespace, entity_type=type)
    return [EntityResponse.model_validate(e) for e in entities]


@router.post("", response_model=EntityResponse, status_code=201)
async def create_entity(
    data: EntityCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """
    Create an entity.

    An existing (name, type, namespace) is upserted instead and
    answered with 200.
    """
    async with unit_of_work(db):
        entity, created = await EntityStore(db).create(
            data.model_dump(exclude={"namespace"}), namespace=data.namespace
        )
    if not created:
        response.status_code = 200
    return EntityResponse.model_validate(entity)


@router.get("/duplicates", response_model=List[DuplicatePairResponse])
async def find_duplicates(
    threshold: Optional[float] = Query(None, ge=0, le=1),
    limit: Optional[int] = Query(None, ge=1, le=500),
    same_namespace: bool = Query(False, description="Only pair entities of one namespace"),
    namespace=Depends(namespace_filter),
    db: AsyncSession = Depends(get_db),
):
    """Candidate duplicate pairs, most similar first."""
    pairs = await ConsistencyEngine(db).find_duplicates(
        namespace=namespace, threshold=threshold, limit=limit, same_namespace=same_namespace
    )
    return [
        DuplicatePairResponse(
            entity1=EntityResponse.model_validate(pair.entity1),
            entity2=EntityResponse.model_validate(pair.entity2),
            similarity=pair.similarity,
        )
        for pair in pairs
    ]


@router.get("/unused", response_model=List[EntityResponse])
async def list_unused_entities(
    namespace=Depends(namespace_filter),
    db: AsyncSession = Depends(get_db),
):
    """Entities no relationship or message refers to, oldest first."""
    entities = await EntityStore(db).list_unused(namespace=namespace)
    return [EntityResponse.model_validate(e) for e in entities]


@router.post("/merge", response_model=EntityResponse)
async def merge_entities(
    data: MergeRequest,
    db: AsyncSession = Depends(get_db),
):
    """Fold the source entity into the target and return the target."""
    target = await ConsistencyEngine(db).merge(data.target_id, data.source_id)
    return EntityResponse.model_validate(target)


@router.post("/split", response_model=SplitResponse, status_code=201)
async def split_entity(
    data: SplitRequest,
    db: AsyncSession = Depends(get_db),
):
    """Replace one entity with several, redistributing its relationships."""
    created = await ConsistencyEngine(db).split(
        data.source_entity_id,
        [e.model_dump() for e in data.new_entities],
        [m.model_dump() for m in data.relationship_migrations],
    )
    return SplitResponse(
        created={temp_id: EntityResponse.model_validate(e) for temp_id, e in created.items()}
    )


@router.post("/bulk-actions", response_model=BulkActionResponse)
async def bulk_action(
    data: BulkActionRequest,
    db: AsyncSession = Depends(get_db),
):
    """Apply delete, change_type or add_tags to many entities."""
    result = await ConsistencyEngine(db).bulk_action(data.action, data.ids, data.payload)
    return BulkActionResponse(action=result.action, affected=result.affected, missing=result.missing)


@router.get("/{entity_id}", response_model=EntityResponse)
async def get_entity(
    entity_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Get an entity by ID."""
    return EntityResponse.model_validate(await EntityStore(db).get(entity_id))


@router.put("/{entity_id}", response_model=EntityResponse)
async def update_entity(
    entity_id: str,
    data: EntityUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Update an entity."""
    async with unit_of_work(db):
        entity = await EntityStore(db).update(entity_id, data.model_dump(exclude_unset=True))
    return EntityResponse.model_validate(entity)


@router.delete("/{entity_id}")
async def delete_entity(
    entity_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Delete an entity with its relationships and message links."""
    async with unit_of_work(db):
        await EntityStore(db).delete(entity_id)
    return {"status": "deleted", "entity_id": entity_id}

"""
Relationships API

Endpoints for edges between entities. Mounted under /entities, so it is
registered before the entities router's /{entity_id} routes.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db, unit_of_work
from ..graph import EntityStore
from ..schemas.entity import (
    RelationshipCreate,
    RelationshipFromNames,
    RelationshipResponse,
    RelationshipUpdate,
)
from .entities import namespace_filter

router = APIRouter(prefix="/entities/relationships", tags=["relationships"])


@router.get("", response_model=List[RelationshipResponse])
async def list_relationships(
    entity_id: Optional[str] = None,
    namespace=Depends(namespace_filter),
    db: AsyncSession = Depends(get_db),
):
    """List edges; `entity_id` limits to edges touching that entity."""
    store = EntityStore(db)
    if entity_id:
        await store.get(entity_id)
        edges = await store.edges_for(entity_id)
    else:
        edges = await store.list_edges(namespace=namespace)
    return [RelationshipResponse.from_edge(edge) for edge in edges]


@router.post("", response_model=RelationshipResponse, status_code=201)
async def create_relationship(
    data: RelationshipCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Connect two entities. A repeated triple returns the existing edge with 200."""
    async with unit_of_work(db):
        edge, created = await EntityStore(db).create_edge(
            data.source_entity_id,
            data.predicate_name,
            data.target_entity_id,
            context=data.context,
        )
    if not created:
        response.status_code = 200
    return RelationshipResponse.from_edge(edge)


@router.post("/from-names", response_model=RelationshipResponse, status_code=201)
async def create_relationship_from_names(
    data: RelationshipFromNames,
    response: Response,
    namespace=Depends(namespace_filter),
    db: AsyncSession = Depends(get_db),
):
    """Connect two entities looked up by name (accepts a link-prediction proposal)."""
    async with unit_of_work(db):
        edge, created = await EntityStore(db).create_edge_from_names(
            data.source, data.predicate, data.target, namespace=namespace
        )
    if not created:
        response.status_code = 200
    return RelationshipResponse.from_edge(edge)


@router.put("/{relationship_id}", response_model=RelationshipResponse)
async def update_relationship(
    relationship_id: str,
    data: RelationshipUpdate,
    db: AsyncSession = Depends(get_db),
):
    """
    Relabel an edge and/or set its verification status.

    Relabeling onto a triple that already exists returns that edge.
    """
    async with unit_of_work(db):
        store = EntityStore(db)
        edge = await store.get_edge(relationship_id)
        if data.predicate_name:
            edge = await store.update_edge_predicate(edge.id, data.predicate_name)
        if data.verification_status is not None:
            edge = await store.set_edge_verification(edge.id, data.verification_status)
    return RelationshipResponse.from_edge(edge)


@router.delete("/{relationship_id}")
async def delete_relationship(
    relationship_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Delete an edge."""
    async with unit_of_work(db):
        await EntityStore(db).delete_edge(relationship_id)
    return {"status": "deleted", "relationship_id": relationship_id}

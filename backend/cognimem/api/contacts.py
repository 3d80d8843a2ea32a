"""
Contacts API

Contacts are read by the structured tier alongside entities.
"""
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db, unit_of_work
from ..models.knowledge import Contact
from ..schemas.conversation import ContactCreate, ContactResponse

router = APIRouter(prefix="/contacts", tags=["contacts"])


@router.get("", response_model=List[ContactResponse])
async def list_contacts(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Contact).order_by(Contact.name))
    return [ContactResponse.model_validate(c) for c in result.scalars()]


@router.post("", response_model=ContactResponse, status_code=201)
async def create_contact(
    data: ContactCreate,
    db: AsyncSession = Depends(get_db),
):
    contact = Contact(**data.model_dump())
    async with unit_of_work(db):
        db.add(contact)
    return ContactResponse.model_validate(contact)

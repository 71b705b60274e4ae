"""
Editorial routes.

Reading is public. Creating needs journal:create. Editing and deleting are
ownership-scoped: the "any" permission covers every editorial, the "own"
permission only the caller's own, and admins bypass both.
"""
from typing import Annotated, List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.dependencies import AuthenticatedSubject, get_current_user
from app.features.permissions.dependencies import enforce_owned_action, require_permission
from app.features.editorials.models import Editorial
from app.features.editorials.schemas import EditorialCreate, EditorialResponse, EditorialUpdate
from app.features.users.schemas import MessageResponse
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


async def get_editorial_or_404(db: AsyncSession, editorial_id: str) -> Editorial:
    result = await db.execute(select(Editorial).where(Editorial.id == editorial_id))
    editorial = result.scalars().first()
    if editorial is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    return editorial


@router.get("", response_model=List[EditorialResponse])
async def list_editorials(
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = 0,
    limit: int = 100
):
    """List editorials, newest first."""
    result = await db.execute(
        select(Editorial)
        .order_by(Editorial.created_at.desc(), Editorial.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()


@router.get("/{editorial_id}", response_model=EditorialResponse)
async def get_editorial(
    editorial_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    return await get_editorial_or_404(db, editorial_id)


@router.post("", response_model=EditorialResponse, status_code=status.HTTP_201_CREATED)
async def create_editorial(
    payload: EditorialCreate,
    user: Annotated[AuthenticatedSubject, Depends(require_permission("journal:create"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create an editorial authored by the caller."""
    editorial = Editorial(title=payload.title, content=payload.content, author_id=user.id)
    db.add(editorial)
    await db.commit()
    await db.refresh(editorial)
    log.info("User %s created editorial %s", user.id, editorial.id)
    return editorial


@router.put("/{editorial_id}", response_model=EditorialResponse)
async def update_editorial(
    editorial_id: str,
    payload: EditorialUpdate,
    user: Annotated[AuthenticatedSubject, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Edit an editorial (journal:edit:any, or journal:edit:own on your own)."""
    editorial = await get_editorial_or_404(db, editorial_id)
    await enforce_owned_action(db, user.id, editorial.author_id, "journal:edit:any", "journal:edit:own")

    title = (payload.title or "").strip()
    content = (payload.content or "").strip()
    if title:
        editorial.title = title
    if content:
        editorial.content = content

    await db.commit()
    await db.refresh(editorial)
    return editorial


@router.delete("/{editorial_id}", response_model=MessageResponse)
async def delete_editorial(
    editorial_id: str,
    user: Annotated[AuthenticatedSubject, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Delete an editorial (journal:delete:any, or journal:delete:own on your own)."""
    editorial = await get_editorial_or_404(db, editorial_id)
    await enforce_owned_action(db, user.id, editorial.author_id, "journal:delete:any", "journal:delete:own")

    await db.delete(editorial)
    await db.commit()
    log.info("User %s deleted editorial %s", user.id, editorial_id)
    return MessageResponse(message="Deleted")

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from blogcms.database import get_db
from blogcms.dependencies import PaginationParams, get_caller, require_caller
from blogcms.policy import Caller
from blogcms.schemas import CommentCreate, PaginatedResponse, PostCreate, PostDetail, PostUpdate
from blogcms.services import comment_service, post_service

router = APIRouter(prefix="/api/v1/posts", tags=["posts"])

@router.get("", response_model=PaginatedResponse)
async def list_posts(
    pagination: PaginationParams = Depends(),
    category: int | None = Query(None, description="Only posts in this category."),
    caller: Caller | None = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.list_posts(
        db, caller, pagination.page, pagination.page_size, category_id=category
    )

# Declared before "/{id_or_slug}" so "search" is not taken for a slug.
@router.get("/search", response_model=PaginatedResponse)
async def search_posts(
    q: str = Query("", description="Case-insensitive search term."),
    pagination: PaginationParams = Depends(),
    caller: Caller | None = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.search_posts(db, q, caller, pagination.page, pagination.page_size)

@router.get("/{id_or_slug}", response_model=PostDetail)
async def get_post(
    id_or_slug: str,
    caller: Caller | None = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.get_post(db, id_or_slug, caller)

@router.post("", status_code=201, response_model=PostDetail)
async def create_post(
    data: PostCreate,
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.create_post(db, caller, data)

@router.put("/{post_id}", response_model=PostDetail)
async def update_post(
    post_id: int,
    data: PostUpdate,
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.update_post(db, caller, post_id, data)

@router.delete("/{post_id}", status_code=204)
async def delete_post(
    post_id: int,
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db),
):
    await post_service.delete_post(db, caller, post_id)

@router.post("/{post_id}/comments", status_code=201, response_model=PostDetail)
async def add_comment(
    post_id: int,
    data: CommentCreate,
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.add_comment(db, caller, post_id, data)

"""
Category catalogue endpoints (public, no authentication).
"""
import uuid
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.database import get_db
from khidma.core.exceptions import NotFoundError
from khidma.modules.categories.schemas import (
    CategoryPricingResponse,
    CategoryResponse,
    CategoryTreeNode,
)
from khidma.modules.categories.service import CategoryService, to_category_response

router = APIRouter(prefix="/categories", tags=["Categories"])

Language = Literal["en", "fr", "ar"]


@router.get("", response_model=list[CategoryResponse])
async def list_categories(
    lang: Language = Query("en"),
    db: AsyncSession = Depends(get_db),
):
    return await CategoryService(db).get_categories(lang)


@router.get("/hierarchy", response_model=list[CategoryTreeNode])
async def category_hierarchy(
    lang: Language = Query("en"),
    db: AsyncSession = Depends(get_db),
):
    return await CategoryService(db).get_category_hierarchy(lang)


@router.get("/{category_id}", response_model=CategoryResponse)
async def get_category(
    category_id: uuid.UUID,
    lang: Language = Query("en"),
    db: AsyncSession = Depends(get_db),
):
    category = await CategoryService(db).get_category_by_id(category_id)
    if not category:
        raise NotFoundError("Category not found")
    return to_category_response(category, lang)


@router.get("/{category_id}/subcategories", response_model=list[CategoryResponse])
async def list_subcategories(
    category_id: uuid.UUID,
    lang: Language = Query("en"),
    db: AsyncSession = Depends(get_db),
):
    return await CategoryService(db).get_subcategories(category_id, lang)


@router.get("/{subcategory_id}/pricing", response_model=CategoryPricingResponse | None)
async def get_pricing(
    subcategory_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    return await CategoryService(db).get_category_pricing_baseline(subcategory_id)

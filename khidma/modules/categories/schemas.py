"""
Categories Module - Pydantic Schemas
"""
import uuid

from pydantic import BaseModel, Field


class CategoryResponse(BaseModel):
    id: uuid.UUID
    parent_id: uuid.UUID | None = None
    name: str
    name_en: str
    name_fr: str
    name_ar: str
    photo_url: str
    requires_photos: bool
    requires_work_code: bool
    level: int


class CategoryTreeNode(CategoryResponse):
    children: list["CategoryTreeNode"] = Field(default_factory=list)


class CategoryPricingResponse(BaseModel):
    subcategory_id: uuid.UUID
    baseline_price: float
    minimum_percentage: int
    minimum_amount: int

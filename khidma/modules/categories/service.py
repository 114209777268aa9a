"""
Categories Module - Business Logic Service
"""
import math
import uuid
from collections import defaultdict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.logging import get_logger
from khidma.modules.categories.models import Category, CategoryPricing, SystemSetting
from khidma.modules.categories.schemas import (
    CategoryPricingResponse,
    CategoryResponse,
    CategoryTreeNode,
)

logger = get_logger(__name__)


def to_category_response(category: Category, language: str = "en") -> CategoryResponse:
    return CategoryResponse(
        id=category.id,
        parent_id=category.parent_id,
        name=category.localized_name(language),
        name_en=category.name_en,
        name_fr=category.name_fr,
        name_ar=category.name_ar,
        photo_url=category.photo_url,
        requires_photos=category.requires_photos,
        requires_work_code=category.requires_work_code,
        level=category.level,
    )


def _sort_by_name(items: list[CategoryResponse]) -> list[CategoryResponse]:
    return sorted(items, key=lambda item: item.name.casefold())


def minimum_bid_amount(baseline_price: float, minimum_percentage: int) -> int:
    return math.floor(baseline_price * minimum_percentage / 100)


class CategoryService:
    """Read side of the service catalogue."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_category_by_id(self, category_id: uuid.UUID) -> Category | None:
        return await self.db.get(Category, category_id)

    async def get_categories(self, language: str = "en") -> list[CategoryResponse]:
        """Top-level categories, localized and sorted by name."""
        result = await self.db.execute(select(Category).where(Category.level == 0))
        return _sort_by_name([
            to_category_response(category, language) for category in result.scalars().all()
        ])

    async def list_subcategories(self, parent_id: uuid.UUID) -> list[Category]:
        result = await self.db.execute(select(Category).where(Category.parent_id == parent_id))
        return list(result.scalars().all())

    async def get_subcategories(
        self,
        parent_id: uuid.UUID,
        language: str = "en",
    ) -> list[CategoryResponse]:
        subcategories = await self.list_subcategories(parent_id)
        return _sort_by_name([to_category_response(sub, language) for sub in subcategories])

    async def get_subcategories_for_categories(
        self,
        category_ids: list[uuid.UUID],
        language: str = "en",
    ) -> dict[uuid.UUID, list[CategoryResponse]]:
        return {
            category_id: await self.get_subcategories(category_id, language)
            for category_id in category_ids
        }

    async def get_category_hierarchy(self, language: str = "en") -> list[CategoryTreeNode]:
        """Whole catalogue as a tree rooted at the level-0 categories."""
        result = await self.db.execute(select(Category))
        children: dict[uuid.UUID | None, list[Category]] = defaultdict(list)
        for category in result.scalars().all():
            children[category.parent_id].append(category)

        def build(parent_id: uuid.UUID | None) -> list[CategoryTreeNode]:
            nodes = [
                CategoryTreeNode(
                    **to_category_response(category, language).model_dump(),
                    children=build(category.id),
                )
                for category in children.get(parent_id, [])
            ]
            return sorted(nodes, key=lambda node: node.name.casefold())

        return build(None)

    async def get_category_pricing_baseline(
        self,
        subcategory_id: uuid.UUID,
    ) -> CategoryPricingResponse | None:
        stmt = select(CategoryPricing).where(CategoryPricing.subcategory_id == subcategory_id)
        result = await self.db.execute(stmt)
        pricing = result.scalars().first()
        if not pricing:
            return None

        return CategoryPricingResponse(
            subcategory_id=pricing.subcategory_id,
            baseline_price=pricing.baseline_price,
            minimum_percentage=pricing.minimum_percentage,
            minimum_amount=minimum_bid_amount(pricing.baseline_price, pricing.minimum_percentage),
        )


class SystemSettingService:
    """Key/value settings editable at runtime."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_value(self, key: str) -> str | None:
        stmt = select(SystemSetting.setting_value).where(SystemSetting.setting_key == key)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_int(self, key: str, default: int) -> int:
        raw = await self.get_value(key)
        if raw is None:
            return default
        try:
            return int(raw)
        except ValueError:
            logger.warning("Non-integer system setting, using default", key=key, value=raw)
            return default

    async def set_value(self, key: str, value: str) -> SystemSetting:
        stmt = select(SystemSetting).where(SystemSetting.setting_key == key)
        result = await self.db.execute(stmt)
        setting = result.scalar_one_or_none()
        if setting:
            setting.setting_value = value
        else:
            setting = SystemSetting(setting_key=key, setting_value=value)
            self.db.add(setting)
        await self.db.commit()
        return setting

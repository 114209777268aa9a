from khidma.modules.categories.models import (
    Category,
    CategoryPricing,
    ExpertCategorizer,
    SystemSetting,
)

__all__ = ["Category", "CategoryPricing", "ExpertCategorizer", "SystemSetting"]

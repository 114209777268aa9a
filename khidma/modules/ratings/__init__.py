from khidma.modules.ratings.models import Rating, RatingType

__all__ = ["Rating", "RatingType"]

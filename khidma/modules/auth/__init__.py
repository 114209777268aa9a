from khidma.modules.auth.models import (
    ApprovalStatus,
    OnboardingStatus,
    OtpCode,
    RefreshToken,
    User,
    UserSession,
    UserType,
)

__all__ = [
    "User",
    "UserType",
    "ApprovalStatus",
    "OnboardingStatus",
    "OtpCode",
    "UserSession",
    "RefreshToken",
]

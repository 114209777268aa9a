from khidma.modules.onboarding.models import DocumentType, UserDocument, UserSkill, WorkerConfig

__all__ = ["DocumentType", "UserDocument", "UserSkill", "WorkerConfig"]

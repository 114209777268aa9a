"""
Uploads Module - Pydantic Schemas
"""
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from khidma.modules.uploads.models import FileType, UploadStatus, UploadType


class UploadResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    status: UploadStatus
    file_name: str
    content_type: str
    file_type: FileType
    upload_type: UploadType
    file_url: str | None = None
    error_message: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class UploadStatusBatchRequest(BaseModel):
    ids: list[uuid.UUID] = Field(..., max_length=50)

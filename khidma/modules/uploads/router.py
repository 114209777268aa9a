"""
Upload endpoints. Files arrive as multipart and are stored asynchronously;
clients poll the status until it is `completed` or `failed`.
"""
import uuid

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.database import get_db
from khidma.core.exceptions import NotFoundError, ValidationError
from khidma.modules.auth.dependencies import CurrentUser
from khidma.modules.uploads.models import FileType, UploadType
from khidma.modules.uploads.schemas import UploadResponse, UploadStatusBatchRequest
from khidma.modules.uploads.service import UploadService

router = APIRouter(prefix="/uploads", tags=["Uploads"])

MAX_UPLOAD_BYTES = 25 * 1024 * 1024


@router.post("", response_model=UploadResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_upload(
    current_user: CurrentUser,
    file: UploadFile = File(...),
    file_type: FileType = Form(...),
    upload_type: UploadType = Form(UploadType.MESSAGE),
    db: AsyncSession = Depends(get_db),
):
    data = await file.read()
    if not data:
        raise ValidationError("Empty file")
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValidationError("File too large", details={"max_bytes": MAX_UPLOAD_BYTES})

    return await UploadService(db).create_upload(
        user_id=current_user.id,
        data=data,
        file_name=file.filename or "upload",
        content_type=file.content_type or "application/octet-stream",
        file_type=file_type,
        upload_type=upload_type,
    )


@router.post("/status", response_model=list[UploadResponse])
async def get_upload_statuses(
    payload: UploadStatusBatchRequest,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    uploads = await UploadService(db).get_multiple_upload_statuses(payload.ids)
    return [upload for upload in uploads if upload.user_id == current_user.id]


@router.get("/{upload_id}", response_model=UploadResponse)
async def get_upload_status(
    upload_id: uuid.UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    upload = await UploadService(db).get_upload_status(upload_id)
    if not upload or upload.user_id != current_user.id:
        raise NotFoundError("Upload not found")
    return upload

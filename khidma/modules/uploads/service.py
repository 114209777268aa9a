"""
Uploads Module - Business Logic Service

Flow: the API stores a pending FileUpload and hands the bytes to the
`store_upload` Celery task, which writes them to object storage and
marks the record completed (with a permanent file URL) or failed.
"""
import base64
import uuid

from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.exceptions import NotFoundError
from khidma.core.logging import get_logger
from khidma.core.models import utc_now
from khidma.core.storage import StorageService, get_storage_service
from khidma.modules.uploads.models import FileType, FileUpload, UploadStatus, UploadType
from khidma.tasks.uploads import store_upload

logger = get_logger(__name__)

VOICE_CONTENT_TYPE = "audio/mp4"
VOICE_DEFAULT_EXTENSION = ".mp4"

STORAGE_FOLDERS = {
    UploadType.MESSAGE.value: "messages",
    UploadType.ONBOARDING.value: "onboarding",
}


def normalize_voice_file(file_name: str, file_type: FileType, content_type: str) -> tuple[str, str]:
    """Voice notes are always stored as MP4 audio."""
    if file_type != FileType.VOICE:
        return file_name, content_type
    if "." not in file_name:
        file_name = f"{file_name}{VOICE_DEFAULT_EXTENSION}"
    return file_name, VOICE_CONTENT_TYPE


class UploadService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_upload(
        self,
        user_id: uuid.UUID,
        data: bytes,
        file_name: str,
        content_type: str,
        file_type: FileType,
        upload_type: UploadType = UploadType.MESSAGE,
    ) -> FileUpload:
        file_type = FileType(file_type)
        file_name, content_type = normalize_voice_file(file_name, file_type, content_type)

        upload = FileUpload(
            user_id=user_id,
            status=UploadStatus.PENDING.value,
            file_name=file_name,
            content_type=content_type,
            file_type=file_type.value,
            upload_type=UploadType(upload_type).value,
        )
        self.db.add(upload)
        await self.db.commit()
        await self.db.refresh(upload)

        store_upload.delay(
            str(upload.id),
            base64.b64encode(data).decode("ascii"),
            content_type,
        )

        logger.info(
            "Upload queued",
            upload_id=str(upload.id),
            file_type=upload.file_type,
            size=len(data),
        )
        return upload

    async def store_file(
        self,
        upload_id: uuid.UUID,
        data: bytes,
        content_type: str,
        storage: StorageService | None = None,
    ) -> FileUpload:
        """Write the bytes to object storage and settle the record."""
        upload = await self.get_upload_status(upload_id)
        if not upload:
            raise NotFoundError("Upload record not found")

        storage = storage or get_storage_service()
        folder = STORAGE_FOLDERS.get(upload.upload_type, "uploads")
        try:
            storage_key = storage.upload_bytes(data, upload.file_name, content_type, folder=folder)
            file_url = storage.get_file_url(storage_key)
        except (BotoCoreError, ClientError) as e:
            upload.status = UploadStatus.FAILED.value
            upload.error_message = str(e)
            upload.completed_at = utc_now()
            await self.db.commit()
            logger.error("Upload storage failed", upload_id=str(upload_id), error=str(e))
            raise

        upload.status = UploadStatus.COMPLETED.value
        upload.storage_key = storage_key
        upload.file_url = file_url
        upload.completed_at = utc_now()
        await self.db.commit()

        logger.info("Upload completed", upload_id=str(upload_id), storage_key=storage_key)
        return upload

    async def get_upload_status(self, upload_id: uuid.UUID) -> FileUpload | None:
        return await self.db.get(FileUpload, upload_id)

    async def get_multiple_upload_statuses(self, upload_ids: list[uuid.UUID]) -> list[FileUpload]:
        """Existing uploads among `upload_ids`; unknown ids are skipped."""
        if not upload_ids:
            return []
        result = await self.db.execute(select(FileUpload).where(FileUpload.id.in_(upload_ids)))
        by_id = {upload.id: upload for upload in result.scalars().all()}
        return [by_id[upload_id] for upload_id in upload_ids if upload_id in by_id]

    @staticmethod
    def delete_stored_file(storage_key: str, storage: StorageService | None = None) -> bool:
        return (storage or get_storage_service()).delete_file(storage_key)

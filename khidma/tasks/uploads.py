"""
Upload Background Tasks
"""
import asyncio
import base64
import uuid

from khidma.core.logging import get_logger
from khidma.worker import celery_app

logger = get_logger(__name__)


@celery_app.task(name="khidma.tasks.uploads.store_upload")
def store_upload(upload_id: str, payload_b64: str, content_type: str) -> dict:
    """
    Push an upload's bytes to object storage and settle its record.

    The record ends up `completed` with a file URL, or `failed` with the
    storage error; the error is re-raised so Celery reports it.
    """
    from khidma.core.database import task_session
    from khidma.core.storage import get_storage_service
    from khidma.modules.uploads.service import UploadService

    data = base64.b64decode(payload_b64)

    async def _store():
        async with task_session() as session:
            return await UploadService(session).store_file(
                uuid.UUID(upload_id),
                data,
                content_type,
                storage=get_storage_service(),
            )

    upload = asyncio.run(_store())
    return {"status": upload.status, "upload_id": upload_id}

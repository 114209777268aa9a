"""
Job Background Tasks
Categorizer assignment after a job is posted, and start-code reminders
for the matched worker.
"""
import asyncio
import uuid

from khidma.core.exceptions import KhidmaException
from khidma.core.logging import get_logger
from khidma.worker import celery_app

logger = get_logger(__name__)


@celery_app.task(name="khidma.tasks.jobs.assign_categorizer_workers")
def assign_categorizer_workers(job_id: str) -> dict:
    """
    Pick the categorizer group for a freshly posted job and notify it.

    Domain refusals (no eligible workers, already assigned) are reported in
    the result; the job stays posted and assignment can be retried.
    """
    from khidma.core.database import task_session
    from khidma.modules.worker_jobs.service import WorkerJobService

    async def _assign():
        async with task_session() as session:
            return await WorkerJobService(session).assign_categorizer_workers(uuid.UUID(job_id))

    try:
        result = asyncio.run(_assign())
    except KhidmaException as e:
        logger.warning("Categorizer assignment skipped", job_id=job_id, reason=e.message)
        return {"status": "skipped", "job_id": job_id, "reason": e.message}

    return {"status": "completed", "job_id": job_id, **result}


@celery_app.task(name="khidma.tasks.jobs.send_onboarding_reminder")
def send_onboarding_reminder(chat_id: str, worker_id: str, job_id: str, reminder_number: int) -> dict:
    """Remind the worker to collect the start code while the job is still matched."""
    from khidma.core.database import task_session
    from khidma.modules.chats.service import MessageService

    async def _remind():
        async with task_session() as session:
            return await MessageService(session).create_onboarding_reminder(
                uuid.UUID(chat_id),
                uuid.UUID(worker_id),
                uuid.UUID(job_id),
                reminder_number,
            )

    message = asyncio.run(_remind())
    if message is None:
        return {"status": "skipped", "job_id": job_id, "reminder_number": reminder_number}

    logger.info("Onboarding reminder sent", job_id=job_id, reminder_number=reminder_number)
    return {"status": "sent", "job_id": job_id, "reminder_number": reminder_number}

"""
Auth Background Tasks
"""
import asyncio

from khidma.core.config import settings
from khidma.core.logging import get_logger
from khidma.worker import celery_app

logger = get_logger(__name__)


@celery_app.task(name="khidma.tasks.auth.send_otp_sms")
def send_otp_sms(phone: str, code: str) -> dict:
    """
    Deliver an OTP by SMS.

    No gateway is wired in yet; development builds log the code so it can
    be entered by hand.
    """
    if settings.environment == "development":
        logger.info("OTP SMS (development)", phone=phone, code=code)
    else:
        logger.info("OTP SMS queued", phone=phone)
    return {"status": "sent", "phone": phone}


@celery_app.task(name="khidma.tasks.auth.cleanup_expired_tokens")
def cleanup_expired_tokens() -> dict:
    """
    Remove expired sessions, revoked/expired refresh tokens and stale OTPs.
    Runs hourly via Celery Beat.
    """
    from khidma.core.database import task_session
    from khidma.modules.auth.service import RefreshTokenService

    async def _cleanup():
        async with task_session() as session:
            return await RefreshTokenService(session).cleanup_expired_tokens()

    counts = asyncio.run(_cleanup())
    return {"status": "completed", **counts}

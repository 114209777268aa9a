"""
Auth Module - Business Logic Service
NEVER put business logic in Routers. Routers only parse requests and call Services.
"""
import uuid
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.config import settings
from khidma.core.exceptions import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from khidma.core.logging import get_logger
from khidma.core.models import utc_now
from khidma.core.phone import normalize_phone, validate_mauritanian_mobile
from khidma.core.security import (
    create_access_token,
    generate_numeric_code,
    generate_secure_token,
    get_password_hash,
    verify_password,
)
from khidma.modules.auth.models import (
    PRIORITY_SCORES,
    ApprovalStatus,
    OnboardingStatus,
    OtpCode,
    RefreshToken,
    User,
    UserSession,
    UserType,
)
from khidma.modules.auth.schemas import Token
from khidma.tasks.auth import send_otp_sms

logger = get_logger(__name__)

OTP_LENGTH = 6
INVALID_PHONE_MESSAGE = "Invalid Mauritanian mobile number"


def _require_valid_phone(phone: str) -> str:
    cleaned = normalize_phone(phone)
    if not validate_mauritanian_mobile(cleaned):
        raise ValidationError(INVALID_PHONE_MESSAGE, details={"phone": phone})
    return cleaned


class OTPService:
    """Phone verification codes. Only bcrypt hashes are persisted."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active_otp(self, phone: str) -> OtpCode | None:
        stmt = (
            select(OtpCode)
            .where(
                OtpCode.phone == phone,
                OtpCode.verified.is_(False),
                OtpCode.expires_at > utc_now(),
            )
            .order_by(OtpCode.created_at.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def send_otp(self, phone: str) -> dict:
        """
        Generate a code, store its hash and hand the SMS to Celery.

        An active unverified OTP for the same phone is refreshed in place,
        so a phone never has more than one live code.
        """
        phone = _require_valid_phone(phone)
        code = generate_numeric_code(OTP_LENGTH)
        expires_at = utc_now() + timedelta(minutes=settings.otp_expire_minutes)

        otp = await self.get_active_otp(phone)
        if otp:
            otp.code_hash = get_password_hash(code)
            otp.expires_at = expires_at
            otp.attempts = 0
        else:
            otp = OtpCode(
                phone=phone,
                code_hash=get_password_hash(code),
                expires_at=expires_at,
                attempts=0,
                verified=False,
            )
            self.db.add(otp)

        await self.db.commit()
        send_otp_sms.delay(phone, code)

        logger.info("OTP issued", phone=phone, expires_at=expires_at.isoformat())
        return {"success": True, "expires_at": expires_at}

    async def validate_otp(self, phone: str, code: str) -> dict:
        phone = normalize_phone(phone)
        otp = await self.get_active_otp(phone)
        if not otp:
            return {"success": False, "message": "Invalid or expired OTP"}

        if verify_password(code, otp.code_hash):
            await self.mark_verified(otp)
            return {"success": True, "message": None}

        await self.increment_attempts(otp)
        logger.info("OTP mismatch", phone=phone, attempts=otp.attempts)
        return {"success": False, "message": "Incorrect code"}

    async def mark_verified(self, otp: OtpCode) -> None:
        otp.verified = True
        await self.db.commit()

    async def increment_attempts(self, otp: OtpCode) -> None:
        otp.attempts += 1
        await self.db.commit()

    async def reset_attempts(self, otp: OtpCode) -> None:
        otp.attempts = 0
        await self.db.commit()


class UserService:
    """User accounts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_id(self, user_id: uuid.UUID) -> User | None:
        stmt = select(User).where(User.id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_by_phone(self, phone: str) -> User | None:
        stmt = select(User).where(User.phone == normalize_phone(phone))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def check_phone_exists(self, phone: str) -> bool:
        return await self.get_user_by_phone(phone) is not None

    async def create_user(
        self,
        phone: str,
        password: str,
        name: str,
        user_type: UserType = UserType.CUSTOMER,
    ) -> User:
        phone = _require_valid_phone(phone)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required")
        if len(password) < settings.min_password_length:
            raise ValidationError(
                f"Password must be at least {settings.min_password_length} characters"
            )

        if await self.check_phone_exists(phone):
            raise ConflictError("User with this phone number already exists")

        user_type = UserType(user_type)
        user = User(
            phone=phone,
            password_hash=get_password_hash(password),
            name=name,
            user_type=user_type.value,
            priority_score=PRIORITY_SCORES[user_type.value],
            cancellation_count=0,
            current_onboarding_step=1,
            balance=Decimal("0"),
            onboarding_status=OnboardingStatus.NOT_STARTED.value,
        )
        if user_type == UserType.WORKER:
            user.approval_status = ApprovalStatus.PENDING.value
        else:
            user.approval_status = ApprovalStatus.APPROVED.value

        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)

        logger.info("User created", user_id=str(user.id), user_type=user.user_type)
        return user

    async def validate_credentials(self, phone: str, password: str) -> uuid.UUID | None:
        """Return the user id when the password matches."""
        user = await self.get_user_by_phone(phone)
        if not user or not verify_password(password, user.password_hash):
            return None
        return user.id

    async def update_profile(self, user_id: uuid.UUID, name: str) -> User:
        name = (name or "").strip()
        if not name or len(name) > 100:
            raise ValidationError("Name must be between 1 and 100 characters")

        user = await self.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")

        user.name = name
        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def initialize_as_worker(self, user_id: uuid.UUID) -> User:
        """Switch an account to the worker flow, starting onboarding from scratch."""
        user = await self.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")

        user.user_type = UserType.WORKER.value
        user.priority_score = PRIORITY_SCORES[UserType.WORKER.value]
        user.approval_status = ApprovalStatus.PENDING.value
        user.onboarding_status = OnboardingStatus.NOT_STARTED.value
        user.current_onboarding_step = 1
        user.onboarding_completed_at = None

        await self.db.commit()
        await self.db.refresh(user)

        logger.info("User initialized as worker", user_id=str(user_id))
        return user


class SessionService:
    """Opaque device sessions referenced from the JWT `sid` claim."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def generate_session(self, user_id: uuid.UUID, device_id: str) -> UserSession:
        now = utc_now()
        session = UserSession(
            user_id=user_id,
            device_id=device_id,
            access_token=generate_secure_token(),
            expires_at=now + timedelta(hours=settings.session_expire_hours),
            last_activity=now,
        )
        self.db.add(session)
        await self.db.commit()
        await self.db.refresh(session)
        return session

    async def generate_new_session(self, user_id: uuid.UUID, device_id: str) -> UserSession:
        """Replace any session on this device with a short-lived one."""
        await self.db.execute(
            delete(UserSession).where(
                UserSession.user_id == user_id,
                UserSession.device_id == device_id,
            )
        )

        now = utc_now()
        session = UserSession(
            user_id=user_id,
            device_id=device_id,
            access_token=generate_secure_token(),
            expires_at=now + timedelta(minutes=settings.renewed_session_expire_minutes),
            last_activity=now,
        )
        self.db.add(session)
        await self.db.commit()
        await self.db.refresh(session)
        return session

    async def validate_session_token(self, token: str) -> UserSession | None:
        stmt = select(UserSession).where(
            UserSession.access_token == token,
            UserSession.expires_at > utc_now(),
        )
        result = await self.db.execute(stmt)
        session = result.scalar_one_or_none()
        if session:
            session.last_activity = utc_now()
            await self.db.commit()
        return session

    async def invalidate_session(self, token: str) -> None:
        await self.db.execute(delete(UserSession).where(UserSession.access_token == token))
        await self.db.commit()

    async def invalidate_all_user_sessions(self, user_id: uuid.UUID) -> None:
        await self.db.execute(delete(UserSession).where(UserSession.user_id == user_id))
        await self.db.commit()


class RefreshTokenService:
    """Refresh tokens, bcrypt-hashed at rest."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def generate_refresh_token(self, user_id: uuid.UUID) -> str:
        token = generate_secure_token()
        self.db.add(RefreshToken(
            user_id=user_id,
            token_hash=get_password_hash(token),
            expires_at=utc_now() + timedelta(days=settings.refresh_token_expire_days),
            is_revoked=False,
        ))
        await self.db.commit()
        return token

    async def _get_valid_tokens(self, user_id: uuid.UUID) -> list[RefreshToken]:
        stmt = select(RefreshToken).where(
            RefreshToken.user_id == user_id,
            RefreshToken.is_revoked.is_(False),
            RefreshToken.expires_at > utc_now(),
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def validate_refresh_token(self, user_id: uuid.UUID, token: str) -> RefreshToken | None:
        for stored in await self._get_valid_tokens(user_id):
            if verify_password(token, stored.token_hash):
                return stored
        return None

    async def revoke_refresh_token(self, user_id: uuid.UUID, token: str) -> bool:
        stored = await self.validate_refresh_token(user_id, token)
        if not stored:
            return False
        stored.is_revoked = True
        await self.db.commit()
        return True

    async def revoke_all_user_tokens(self, user_id: uuid.UUID) -> int:
        tokens = await self._get_valid_tokens(user_id)
        for stored in tokens:
            stored.is_revoked = True
        await self.db.commit()
        return len(tokens)

    async def cleanup_expired_tokens(self) -> dict[str, int]:
        """Delete expired sessions, dead refresh tokens and expired OTPs."""
        now = utc_now()
        sessions = await self.db.execute(
            delete(UserSession).where(UserSession.expires_at <= now)
        )
        tokens = await self.db.execute(
            delete(RefreshToken).where(
                or_(RefreshToken.is_revoked.is_(True), RefreshToken.expires_at <= now)
            )
        )
        otps = await self.db.execute(delete(OtpCode).where(OtpCode.expires_at <= now))
        await self.db.commit()

        counts = {
            "sessions": sessions.rowcount or 0,
            "refresh_tokens": tokens.rowcount or 0,
            "otps": otps.rowcount or 0,
        }
        logger.info("Expired auth records removed", **counts)
        return counts


class AuthService:
    """Login, registration and token rotation built on the services above."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.users = UserService(db)
        self.sessions = SessionService(db)
        self.refresh_tokens = RefreshTokenService(db)

    def _issue(self, user: User, session: UserSession, refresh_token: str) -> Token:
        access_token = create_access_token(
            subject=str(user.id),
            expires_delta=session.expires_at - utc_now(),
            extra_claims={"sid": session.access_token, "user_type": user.user_type},
        )
        return Token(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=session.expires_at,
            user_id=user.id,
            user_type=user.user_type,
        )

    async def register(
        self,
        phone: str,
        password: str,
        name: str,
        user_type: UserType,
        device_id: str,
    ) -> Token:
        user = await self.users.create_user(phone, password, name, user_type)
        session = await self.sessions.generate_session(user.id, device_id)
        refresh_token = await self.refresh_tokens.generate_refresh_token(user.id)
        return self._issue(user, session, refresh_token)

    async def login(self, phone: str, password: str, device_id: str) -> Token:
        user_id = await self.users.validate_credentials(phone, password)
        if not user_id:
            raise UnauthorizedError("Invalid phone number or password")

        user = await self.users.get_user_by_id(user_id)
        session = await self.sessions.generate_session(user.id, device_id)
        refresh_token = await self.refresh_tokens.generate_refresh_token(user.id)

        logger.info("User logged in", user_id=str(user.id), device_id=device_id)
        return self._issue(user, session, refresh_token)

    async def refresh(self, user_id: uuid.UUID, refresh_token: str, device_id: str) -> Token:
        """Rotate the refresh token and open a fresh short session."""
        if not await self.refresh_tokens.revoke_refresh_token(user_id, refresh_token):
            raise UnauthorizedError("Invalid or expired refresh token")

        user = await self.users.get_user_by_id(user_id)
        if not user:
            raise UnauthorizedError("Invalid or expired refresh token")

        session = await self.sessions.generate_new_session(user.id, device_id)
        new_refresh_token = await self.refresh_tokens.generate_refresh_token(user.id)
        return self._issue(user, session, new_refresh_token)

    async def logout(self, session_token: str) -> None:
        await self.sessions.invalidate_session(session_token)

    async def logout_everywhere(self, user_id: uuid.UUID) -> None:
        await self.sessions.invalidate_all_user_sessions(user_id)
        await self.refresh_tokens.revoke_all_user_tokens(user_id)

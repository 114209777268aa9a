"""
Auth Module - FastAPI Dependencies

The bearer token is a JWT whose `sid` claim points at a UserSession row;
both must be valid for the request to be authenticated.
"""
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.database import get_db
from khidma.core.exceptions import ForbiddenError, UnauthorizedError
from khidma.core.logging import bind_context, get_logger
from khidma.core.security import verify_token
from khidma.core.sentry import set_user
from khidma.modules.auth.models import User, UserType
from khidma.modules.auth.service import AuthService, SessionService, UserService

logger = get_logger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


async def get_auth_service(db: Annotated[AsyncSession, Depends(get_db)]) -> AuthService:
    """Get AuthService instance with injected database session."""
    return AuthService(db)


async def get_session_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> str:
    """Extract the session token from the bearer JWT."""
    if not credentials:
        raise UnauthorizedError("Authentication required")

    payload = verify_token(credentials.credentials)
    if not payload or not payload.get("sid") or not payload.get("sub"):
        raise UnauthorizedError("Invalid or expired token")
    return payload["sid"]


async def get_current_user(
    session_token: Annotated[str, Depends(get_session_token)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Resolve the authenticated user.

    Raises:
        UnauthorizedError: session expired, revoked or user deleted
    """
    session = await SessionService(db).validate_session_token(session_token)
    if not session:
        raise UnauthorizedError("Session expired")

    user = await UserService(db).get_user_by_id(session.user_id)
    if not user:
        logger.warning("Session references missing user", user_id=str(session.user_id))
        raise UnauthorizedError("User not found")

    bind_context(user_id=str(user.id))
    set_user(str(user.id), user.user_type)
    return user


async def require_worker(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    if current_user.user_type != UserType.WORKER.value:
        raise ForbiddenError("Only workers can perform this action")
    return current_user


async def require_customer(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    if current_user.user_type != UserType.CUSTOMER.value:
        raise ForbiddenError("Only customers can perform this action")
    return current_user


# Type aliases for cleaner dependency injection
CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentWorker = Annotated[User, Depends(require_worker)]
CurrentCustomer = Annotated[User, Depends(require_customer)]
SessionToken = Annotated[str, Depends(get_session_token)]
AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]

"""
Auth Endpoints

- POST /api/v1/auth/otp/send     - send an SMS code
- POST /api/v1/auth/otp/verify   - check the code
- GET  /api/v1/auth/phone-exists - sign-up vs sign-in routing
- POST /api/v1/auth/register     - create account, returns tokens
- POST /api/v1/auth/login        - phone + password, returns tokens
- POST /api/v1/auth/refresh      - rotate refresh token
- POST /api/v1/auth/logout
- GET/PATCH /api/v1/auth/me
- POST /api/v1/auth/become-worker
"""
from typing import Annotated

from fastapi import APIRouter, Query, status

from khidma.modules.auth.dependencies import AuthServiceDep, CurrentUser, SessionToken
from khidma.modules.auth.schemas import (
    LoginRequest,
    OtpResponse,
    PhoneCheckResponse,
    ProfileUpdateRequest,
    RefreshRequest,
    RegisterRequest,
    SendOtpRequest,
    Token,
    UserResponse,
    VerifyOtpRequest,
)
from khidma.modules.auth.service import OTPService

router = APIRouter(prefix="/auth", tags=["Auth"])


# ============== OTP ==============

@router.post("/otp/send", response_model=OtpResponse, summary="Send OTP")
async def send_otp(payload: SendOtpRequest, auth_service: AuthServiceDep) -> OtpResponse:
    await OTPService(auth_service.db).send_otp(payload.phone)
    return OtpResponse(success=True)


@router.post("/otp/verify", response_model=OtpResponse, summary="Verify OTP")
async def verify_otp(payload: VerifyOtpRequest, auth_service: AuthServiceDep) -> OtpResponse:
    result = await OTPService(auth_service.db).validate_otp(payload.phone, payload.code)
    return OtpResponse(**result)


@router.get("/phone-exists", response_model=PhoneCheckResponse)
async def phone_exists(
    auth_service: AuthServiceDep,
    phone: Annotated[str, Query(min_length=8, max_length=20)],
) -> PhoneCheckResponse:
    return PhoneCheckResponse(exists=await auth_service.users.check_phone_exists(phone))


# ============== Tokens ==============

@router.post(
    "/register",
    response_model=Token,
    status_code=status.HTTP_201_CREATED,
    summary="Create account",
    description="""
Creates a customer or worker account and opens a 24 h session.

Customers are approved immediately. Workers start the onboarding flow
with approval `pending`.
    """,
)
async def register(payload: RegisterRequest, auth_service: AuthServiceDep) -> Token:
    return await auth_service.register(
        phone=payload.phone,
        password=payload.password,
        name=payload.name,
        user_type=payload.user_type,
        device_id=payload.device_id,
    )


@router.post("/login", response_model=Token, summary="Login")
async def login(payload: LoginRequest, auth_service: AuthServiceDep) -> Token:
    return await auth_service.login(payload.phone, payload.password, payload.device_id)


@router.post("/refresh", response_model=Token, summary="Rotate tokens")
async def refresh(payload: RefreshRequest, auth_service: AuthServiceDep) -> Token:
    return await auth_service.refresh(payload.user_id, payload.refresh_token, payload.device_id)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(session_token: SessionToken, auth_service: AuthServiceDep) -> None:
    await auth_service.logout(session_token)


@router.post("/logout-all", status_code=status.HTTP_204_NO_CONTENT)
async def logout_all(current_user: CurrentUser, auth_service: AuthServiceDep) -> None:
    await auth_service.logout_everywhere(current_user.id)


# ============== Profile ==============

@router.get("/me", response_model=UserResponse, summary="Current user")
async def get_me(current_user: CurrentUser) -> UserResponse:
    return UserResponse.model_validate(current_user)


@router.patch("/me", response_model=UserResponse, summary="Update profile")
async def update_me(
    payload: ProfileUpdateRequest,
    current_user: CurrentUser,
    auth_service: AuthServiceDep,
) -> UserResponse:
    user = await auth_service.users.update_profile(current_user.id, payload.name)
    return UserResponse.model_validate(user)


@router.post("/become-worker", response_model=UserResponse)
async def become_worker(current_user: CurrentUser, auth_service: AuthServiceDep) -> UserResponse:
    user = await auth_service.users.initialize_as_worker(current_user.id)
    return UserResponse.model_validate(user)

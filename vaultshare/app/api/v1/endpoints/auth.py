# vaultshare/app/api/v1/endpoints/auth.py
"""
Authentication endpoints.

- POST /auth/register          create account, returns TOTP provisioning QR
- POST /auth/login             password step, sets the MFA-pending cookie
- POST /auth/verify-mfa        TOTP step, sets the access cookie
- GET  /auth/me                current profile
- POST /auth/logout            clears both cookies
- GET  /auth/public-key/{id}   an account's RSA public key

Tokens only travel in httpOnly, SameSite=Strict cookies.
"""
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Response, status

from vaultshare.app.api import deps
from vaultshare.app.core.config import settings
from vaultshare.app.core.context import ClientInfo, RequestContext
from vaultshare.app.schemas.common import ApiResponse
from vaultshare.app.schemas.user import (
    LoginRequest,
    LoginResponse,
    MfaSetup,
    MfaVerifyRequest,
    MfaVerifyResponse,
    PublicKeyResponse,
    RegisterResponse,
    UserCreate,
    UserResponse,
)
from vaultshare.app.security.access import Action, Resource
from vaultshare.app.services.auth import AuthService

router = APIRouter()


def _set_session_cookie(response: Response, name: str, value: str, minutes: int) -> None:
    response.set_cookie(
        key=name,
        value=value,
        max_age=minutes * 60,
        httponly=True,
        samesite="strict",
        secure=settings.cookie_secure,
        path="/",
    )


def _clear_session_cookie(response: Response, name: str) -> None:
    response.delete_cookie(
        key=name,
        httponly=True,
        samesite="strict",
        secure=settings.cookie_secure,
        path="/",
    )


@router.post("/register", response_model=ApiResponse[RegisterResponse], status_code=status.HTTP_201_CREATED)
async def register(
        user_in: UserCreate,
        client: ClientInfo = Depends(deps.get_client_info),
        auth: AuthService = Depends(deps.get_auth_service),
):
    result = await auth.register(
        username=user_in.username,
        email=user_in.email,
        password=user_in.password,
        requested_role=user_in.role,
        client=client,
    )
    message = "Registration successful. Scan the QR code with your authenticator app."
    if result.role_downgraded:
        message += " An administrator already exists, so the account was created as guest."

    return ApiResponse(
        message=message,
        data=RegisterResponse(
            user=UserResponse.model_validate(result.user),
            mfa_setup=MfaSetup(
                qr_code=result.provisioning.qr_code,
                otpauth_uri=result.provisioning.otpauth_uri,
                secret=result.provisioning.secret,
            ),
            role_downgraded=result.role_downgraded,
        ),
    )


@router.post("/login", response_model=ApiResponse[LoginResponse])
async def login(
        body: LoginRequest,
        response: Response,
        client: ClientInfo = Depends(deps.get_client_info),
        auth: AuthService = Depends(deps.get_auth_service),
):
    result = await auth.login(body.email, body.password, client)
    _set_session_cookie(response, deps.MFA_COOKIE, result.mfa_token, settings.MFA_TOKEN_EXPIRE_MINUTES)
    return ApiResponse(
        message="Password verified. Please enter your MFA code.",
        data=LoginResponse(mfa_required=True, state=result.state.value),
    )


@router.post("/verify-mfa", response_model=ApiResponse[MfaVerifyResponse])
async def verify_mfa(
        body: MfaVerifyRequest,
        response: Response,
        mfa_token: Optional[str] = Cookie(default=None),
        client: ClientInfo = Depends(deps.get_client_info),
        auth: AuthService = Depends(deps.get_auth_service),
):
    result = await auth.verify_mfa(mfa_token, body.code, client)
    _clear_session_cookie(response, deps.MFA_COOKIE)
    _set_session_cookie(response, deps.ACCESS_COOKIE, result.access_token, settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return ApiResponse(
        message="Login successful.",
        data=MfaVerifyResponse(
            user=UserResponse.model_validate(result.user),
            state=result.state.value,
            first_setup=result.first_setup,
        ),
    )


@router.get("/me", response_model=ApiResponse[UserResponse])
async def read_me(
        ctx: RequestContext = Depends(deps.require_resource_access(Resource.OWN_PROFILE, Action.READ)),
        auth: AuthService = Depends(deps.get_auth_service),
):
    user = await auth.get_profile(ctx.account_id)
    return ApiResponse(data=UserResponse.model_validate(user))


@router.post("/logout", response_model=ApiResponse[None])
async def logout(
        response: Response,
        ctx: RequestContext = Depends(deps.get_request_context),
        auth: AuthService = Depends(deps.get_auth_service),
):
    await auth.logout(ctx)
    _clear_session_cookie(response, deps.ACCESS_COOKIE)
    _clear_session_cookie(response, deps.MFA_COOKIE)
    return ApiResponse(message="Logged out successfully.")


@router.get("/public-key/{user_id}", response_model=ApiResponse[PublicKeyResponse])
async def read_public_key(
        user_id: int,
        ctx: RequestContext = Depends(deps.get_request_context),
        auth: AuthService = Depends(deps.get_auth_service),
):
    user = await auth.get_public_key(user_id)
    return ApiResponse(
        data=PublicKeyResponse(user_id=user.id, username=user.username, public_key=user.public_key)
    )

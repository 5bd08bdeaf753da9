"""Auth endpoints.

Registration, login, refresh token rotation, email verification, password
reset and session management. Every endpoint is a thin mapping onto one
AuthFacade operation; errors raised by the facade are rendered by the
APIError handler in main.py.

Unauthenticated endpoints are rate limited per IP.
"""

from fastapi import APIRouter, Request

from ekoauth.api.deps import AuthFacadeDep, CurrentAuth
from ekoauth.core.config import settings
from ekoauth.core.errors import InvalidOrExpiredTokenError
from ekoauth.core.rate_limiting import limiter
from ekoauth.core.responses import DataResponse
from ekoauth.schemas.auth import (
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    LoginResponse,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenPairResponse,
    TokenRequest,
    UserPublic,
)
from ekoauth.services.auth_facade import RegistrationData
from ekoauth.services.credential_manager import Location, UserProfile

router = APIRouter()


# ===================================================================
# POST /auth/register
# ===================================================================


@router.post("/register", status_code=201)
@limiter.limit(lambda: settings.rate_limit_register)
async def register(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: RegisterRequest,
    facade: AuthFacadeDep,
) -> DataResponse[UserPublic]:
    """Create an unverified account and email a verification link."""
    user = await facade.register(
        RegistrationData(
            email=body.email,
            password=body.password,
            profile=UserProfile(
                full_name=body.full_name,
                phone_number=body.phone_number,
                role=body.role,
                location=Location(
                    address=body.location.address,
                    coordinates=body.location.coordinates,
                ),
            ),
        )
    )
    return DataResponse(data=user)


# ===================================================================
# POST /auth/login
# ===================================================================


@router.post("/login")
@limiter.limit(lambda: settings.rate_limit_login)
async def login(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: LoginRequest,
    facade: AuthFacadeDep,
) -> DataResponse[LoginResponse]:
    """Exchange email and password for an access and refresh token."""
    result = await facade.login(body.email, body.password)
    return DataResponse(
        data=LoginResponse(
            user=result.user,
            access_token=result.access_token,
            refresh_token=result.refresh_token,
        )
    )


# ===================================================================
# POST /auth/refresh-token
# ===================================================================


@router.post("/refresh-token")
@limiter.limit(lambda: settings.rate_limit_login)
async def refresh_token(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: RefreshTokenRequest,
    facade: AuthFacadeDep,
) -> DataResponse[TokenPairResponse]:
    """Rotate a refresh token. The presented token stops working."""
    try:
        pair = await facade.refresh(body.refresh_token)
    except InvalidOrExpiredTokenError as exc:
        # A dead refresh token means the client must sign in again.
        raise InvalidOrExpiredTokenError(status_code=401) from exc
    return DataResponse(
        data=TokenPairResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
        )
    )


# ===================================================================
# Email verification
# ===================================================================


@router.post("/verify-email")
@limiter.limit(lambda: settings.rate_limit_login)
async def verify_email(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: TokenRequest,
    facade: AuthFacadeDep,
) -> DataResponse[dict]:
    """Consume a verification token."""
    return DataResponse(data=await facade.verify_email(body.token))


@router.post("/resend-verification")
@limiter.limit(lambda: settings.rate_limit_email)
async def resend_verification(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: EmailRequest,
    facade: AuthFacadeDep,
) -> DataResponse[dict]:
    """Send a new verification link. Same answer for unknown emails."""
    return DataResponse(data=await facade.resend_verification(body.email))


# ===================================================================
# Password reset
# ===================================================================


@router.post("/request-password-reset")
@limiter.limit(lambda: settings.rate_limit_email)
async def request_password_reset(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: EmailRequest,
    facade: AuthFacadeDep,
) -> DataResponse[dict]:
    """Email a reset link. Same answer for unknown emails."""
    return DataResponse(data=await facade.request_password_reset(body.email))


@router.post("/reset-password")
@limiter.limit(lambda: settings.rate_limit_login)
async def reset_password(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: ResetPasswordRequest,
    facade: AuthFacadeDep,
) -> DataResponse[dict]:
    """Set a new password with a reset token; signs out all sessions."""
    return DataResponse(
        data=await facade.reset_password(body.token, body.new_password)
    )


# ===================================================================
# Sessions (bearer-authenticated except logout)
# ===================================================================


@router.post("/logout")
async def logout(
    body: RefreshTokenRequest,
    facade: AuthFacadeDep,
) -> DataResponse[dict]:
    """Revoke one refresh token. Idempotent."""
    return DataResponse(data=await facade.logout(body.refresh_token))


@router.post("/logout-all")
async def logout_all(
    auth: CurrentAuth,
    facade: AuthFacadeDep,
) -> DataResponse[dict]:
    """Revoke every refresh token of the current user."""
    return DataResponse(data=await facade.logout_all(auth.user_id))


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    auth: CurrentAuth,
    facade: AuthFacadeDep,
) -> DataResponse[dict]:
    """Change password with the current one; signs out all sessions."""
    return DataResponse(
        data=await facade.change_password(
            auth.user_id, body.current_password, body.new_password
        )
    )


@router.get("/me")
async def me(auth: CurrentAuth) -> DataResponse[UserPublic]:
    """Current user."""
    return DataResponse(data=auth.user)

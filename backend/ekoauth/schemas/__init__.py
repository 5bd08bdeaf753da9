"""Pydantic request/response schemas for API endpoints."""

from ekoauth.schemas.auth import (
    ChangePasswordRequest,
    EmailRequest,
    LocationSchema,
    LoginRequest,
    LoginResponse,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenPairResponse,
    TokenRequest,
    UserPublic,
)

__all__ = [
    # Requests
    "ChangePasswordRequest",
    "EmailRequest",
    "LoginRequest",
    "RefreshTokenRequest",
    "RegisterRequest",
    "ResetPasswordRequest",
    "TokenRequest",
    # Responses
    "LocationSchema",
    "LoginResponse",
    "TokenPairResponse",
    "UserPublic",
]

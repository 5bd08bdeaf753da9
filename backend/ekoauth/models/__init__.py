"""SQLAlchemy ORM models for the EkoDirekt auth service.

All models are exported from this module for convenient imports:
    from ekoauth.models import User, Token

Models:
- user.py: User, UserRole
- token.py: Token, TokenType (verification, reset and refresh tokens)
"""

from ekoauth.models.base import Base
from ekoauth.models.token import Token, TokenType
from ekoauth.models.user import User, UserRole

__all__ = [
    "Base",
    "Token",
    "TokenType",
    "User",
    "UserRole",
]

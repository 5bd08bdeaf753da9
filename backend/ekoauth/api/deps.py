"""Shared dependencies for API endpoints.

The auth services live on app.state, either injected through
create_app(services=...) or built by the app lifespan. Endpoints reach
them through get_auth_facade.
"""

from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ekoauth.core.errors import InvalidTokenError
from ekoauth.services.auth_facade import AuthContext, AuthFacade

# auto_error=False so a missing header goes through our error envelope.
_bearer = HTTPBearer(auto_error=False)


def get_auth_facade(request: Request) -> AuthFacade:
    """Auth facade built by the app lifespan."""
    facade: AuthFacade = request.app.state.auth_services.facade
    return facade


AuthFacadeDep = Annotated[AuthFacade, Depends(get_auth_facade)]


async def get_auth_context(
    facade: AuthFacadeDep,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
) -> AuthContext:
    """Resolve the bearer access token to the current user.

    Raises:
        InvalidTokenError: Missing, malformed or forged token, or the user
            no longer exists.
        ExpiredTokenError: Token lapsed.
    """
    if credentials is None or not credentials.credentials:
        raise InvalidTokenError()
    return await facade.authenticate(credentials.credentials)


CurrentAuth = Annotated[AuthContext, Depends(get_auth_context)]

"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only the Authorization: Bearer <token> header is accepted. The token is
resolved by AuthService.resolve_session(), which checks the revocation
registry, signature and expiry, then loads the account.

get_current_session() raises 401 on any failure and stores the Session on
request.state.session for downstream handlers.
require_roles(*roles) wraps it and raises 403 when the role is not allowed.

Layer rule: no imports from api/ or mail/.
  auth/dependencies.py may import from fastapi (for Depends/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from auth.errors import ForbiddenError
from auth.models import Session
from auth.service import AuthService


def bearer_token(request: Request) -> str | None:
    """Return the raw token from an Authorization: Bearer header, if any."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_current_session(request: Request) -> Session:
    """Require a valid access token. Raises UnauthorizedError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(session: Session = Depends(get_current_session)): ...
    """
    session = get_auth_service(request).resolve_session(bearer_token(request))
    request.state.session = session
    return session


def require_roles(*roles: str) -> Callable[..., Session]:
    """Build a dependency that admits only the given roles (403 otherwise).

    Use as a FastAPI dependency:
        @router.post("/admin-only")
        def route(session: Session = Depends(require_roles("admin"))): ...
    """

    def dependency(session: Session = Depends(get_current_session)) -> Session:
        if session.role not in roles:
            raise ForbiddenError(f"Role {session.role} is not authorized to access this route")
        return session

    return dependency

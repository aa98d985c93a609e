"""Bearer-token authentication for FastAPI.

Tokens are HS256 JWTs issued by user-service. Only verification lives here.
"""

from dataclasses import dataclass, field

import jwt as pyjwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from calvarypay.core.config import Settings, get_settings
from calvarypay.core.exceptions import AuthenticationError

_bearer_scheme = HTTPBearer(auto_error=False)

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class AuthUser:
    """Authenticated caller extracted from a verified JWT."""

    user_id: str
    email: str | None = None
    roles: tuple[str, ...] = ()
    claims: dict = field(default_factory=dict, compare=False)

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


def decode_token(token: str, settings: Settings | None = None) -> AuthUser:
    """Verify and decode a bearer token.

    Raises ``AuthenticationError`` on any validation failure.
    """
    settings = settings or get_settings()
    try:
        payload = pyjwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            options={"require": ["sub", "exp"]},
        )
    except pyjwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired", code="TOKEN_EXPIRED")
    except pyjwt.InvalidTokenError as exc:
        raise AuthenticationError(f"Invalid token: {exc}", code="INVALID_TOKEN")

    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]

    return AuthUser(
        user_id=str(payload["sub"]),
        email=payload.get("email"),
        roles=tuple(roles),
        claims=payload,
    )


def user_from_headers(request: Request) -> AuthUser | None:
    """Best-effort identity lookup for layers that run before route dependencies.

    Returns None instead of raising; the route's own ``require_auth`` still
    rejects the request afterwards.
    """
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    try:
        return decode_token(token.strip())
    except AuthenticationError:
        return None


async def require_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthUser:
    """FastAPI dependency that extracts and validates the bearer token.

    Usage::

        @router.get("/protected")
        async def protected(user: AuthUser = Depends(require_auth)):
            ...
    """
    if credentials is None:
        raise AuthenticationError("Missing authorization header", code="NOT_AUTHENTICATED")

    user = decode_token(credentials.credentials)
    request.state.user_id = user.user_id
    return user

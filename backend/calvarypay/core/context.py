"""Per-request context threaded explicitly through route handlers."""

from dataclasses import dataclass

from fastapi import Depends

from calvarypay.core.auth import AuthUser, require_auth
from calvarypay.middleware.correlation import get_correlation_id


@dataclass(frozen=True)
class RequestContext:
    correlation_id: str | None
    user: AuthUser | None = None

    @property
    def user_id(self) -> str | None:
        return self.user.user_id if self.user else None


async def authenticated_context(user: AuthUser = Depends(require_auth)) -> RequestContext:
    """Dependency for routes that require a bearer token."""
    return RequestContext(correlation_id=get_correlation_id(), user=user)


async def anonymous_context() -> RequestContext:
    """Dependency for routes called by third parties (webhooks, health)."""
    return RequestContext(correlation_id=get_correlation_id())

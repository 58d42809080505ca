import hmac
from dataclasses import dataclass

from fastapi import Depends, Header

from api.config.settings import AuthMode, settings
from api.v1.core.exceptions import ForbiddenError, UnauthorizedError


@dataclass
class Principal:
    """Represents the caller of the operator surface."""

    operator_id: str
    roles: list[str]

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


async def get_principal(
    x_admin_token: str | None = Header(None, alias="X-Admin-Token"),
    x_operator_id: str | None = Header(None, alias="X-Operator-ID"),
) -> Principal:
    """
    Dependency injection function to get the current principal.

    Behavior based on AUTH_MODE:
    - none: Returns a local operator with admin role
    - token: X-Admin-Token must match ADMIN_TOKEN
    """
    if settings.auth_mode == AuthMode.NONE:
        return Principal(operator_id=x_operator_id or "local", roles=["admin"])
    elif settings.auth_mode == AuthMode.TOKEN:
        if not x_admin_token:
            raise UnauthorizedError("X-Admin-Token header is required")

        if not hmac.compare_digest(x_admin_token, settings.admin_token or ""):
            raise UnauthorizedError("Invalid admin token")

        return Principal(operator_id=x_operator_id or "admin", roles=["admin"])
    else:
        raise ValueError(f"Unknown auth mode: {settings.auth_mode}")


async def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    """Operator endpoints are admin-only."""
    if not principal.is_admin:
        raise ForbiddenError("Admin role required")
    return principal


# Convenience type alias for dependency injection
PrincipalDep = Depends(get_principal)
AdminDep = Depends(require_admin)

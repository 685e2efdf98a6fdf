import hmac
from dataclasses import dataclass
from uuid import NAMESPACE_DNS, UUID, uuid5

from fastapi import Depends, Header, HTTPException, status

from tutor_jobs.config.settings import AuthMode, Settings, get_settings
from tutor_jobs.v1.core.exceptions import UnauthorizedError


def string_to_uuid(text: str) -> UUID:
    """Convert a string to a deterministic UUID using namespace DNS.

    Identifiers that already are UUIDs are kept as-is.
    """
    try:
        return UUID(text)
    except ValueError:
        return uuid5(NAMESPACE_DNS, text)


@dataclass
class Principal:
    """The workspace (tenant) and user a request acts for."""

    user_id: str
    workspace_id: str

    @property
    def user_uuid(self) -> UUID:
        return string_to_uuid(self.user_id)

    @property
    def workspace_uuid(self) -> UUID:
        return string_to_uuid(self.workspace_id)


async def get_principal(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    x_workspace_id: str | None = Header(None, alias="X-Workspace-ID"),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """
    Dependency injection function to get the current principal.

    Behavior based on AUTH_MODE:
    - none: Returns dev defaults
    - dev: Extract from headers
    """
    if settings.auth_mode == AuthMode.NONE:
        return Principal(
            user_id=settings.dev_user_id, workspace_id=settings.dev_workspace_id
        )
    elif settings.auth_mode == AuthMode.DEV:
        if not x_user_id or not x_workspace_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="X-User-ID and X-Workspace-ID headers are required in dev auth mode",
            )
        return Principal(user_id=x_user_id, workspace_id=x_workspace_id)
    else:
        raise ValueError(f"Unknown auth mode: {settings.auth_mode}")


async def verify_cron_secret(
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Guard for the dispatch trigger: ``Authorization: Bearer <CRON_SECRET>``.

    Open when no secret is configured (development only; production refuses
    to start without one).
    """
    if not settings.cron_secret:
        return
    expected = f"Bearer {settings.cron_secret}"
    if authorization is None or not hmac.compare_digest(authorization, expected):
        raise UnauthorizedError("Invalid or missing dispatch secret")


# Convenience type aliases for dependency injection
PrincipalDep = Depends(get_principal)
CronSecretDep = Depends(verify_cron_secret)

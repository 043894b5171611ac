"""Organization context for tenant-scoped routes.

Session authentication lives in front of this service; by the time a request
reaches us the caller's organization is forwarded in ``X-Organization-ID``.
"""

from typing import Annotated, Optional

from fastapi import Depends, Header

from barledger.core.errors import AppError, ErrorCode


def get_organization_id(
    x_organization_id: Optional[str] = Header(None, alias="X-Organization-ID"),
) -> int:
    """Resolve the organization id for the current request."""
    if not x_organization_id:
        raise AppError(ErrorCode.UNAUTHORIZED, "Organization context required")
    try:
        return int(x_organization_id)
    except ValueError:
        raise AppError(ErrorCode.BAD_REQUEST, "Invalid organization id")


OrganizationId = Annotated[int, Depends(get_organization_id)]

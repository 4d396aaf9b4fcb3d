"""API dependencies - request context and admin authorization"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.config import settings
from app.core.context import ANONYMOUS_ACTOR, RequestContext
from app.core.exceptions import AuthenticationError, AuthorizationError
from app.core.security import decode_access_token
from app.models.audit import AuditAction
from app.services.archive_service import ArchiveService, archive_service
from app.services.audit_cleanup_service import AuditCleanupService, audit_cleanup_service
from app.services.audit_service import AuditService, audit_service

# Bearer tokens are optional at this layer; admin routes enforce them below.
security = HTTPBearer(auto_error=False)


def get_audit_service() -> AuditService:
    return audit_service


def get_archive_service() -> ArchiveService:
    return archive_service


def get_cleanup_service() -> AuditCleanupService:
    return audit_cleanup_service


@dataclass(frozen=True)
class Principal:
    """Verified caller identity taken from the bearer token."""

    user_id: str
    role: Optional[str]
    claims: Dict[str, Any]


def _client_address(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def get_optional_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Principal]:
    """
    Get the caller if a valid token was sent, None otherwise

    Args:
        credentials: Optional HTTP Bearer credentials

    Returns:
        Principal or None
    """
    if not credentials:
        return None

    payload = decode_access_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        return None

    return Principal(user_id=str(payload["sub"]), role=payload.get("role"), claims=payload)


def get_request_context(
    request: Request,
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> RequestContext:
    """Actor and source address for audit events raised by this request."""
    return RequestContext(
        actor_id=principal.user_id if principal else ANONYMOUS_ACTOR,
        source_address=_client_address(request),
    )


def get_current_admin(
    request: Request,
    principal: Optional[Principal] = Depends(get_optional_principal),
    recorder: AuditService = Depends(get_audit_service),
) -> Principal:
    """
    Require an authenticated administrator

    Raises:
        AuthenticationError: If no valid token was sent
        AuthorizationError: If the caller is not an administrator
    """
    if principal is None:
        raise AuthenticationError("Invalid or missing token")

    if principal.role != settings.ADMIN_ROLE:
        recorder.record(
            AuditAction.UNAUTHORIZED_ACCESS,
            f"Non-admin access attempt on {request.url.path}",
            RequestContext(actor_id=principal.user_id, source_address=_client_address(request)),
        )
        raise AuthorizationError("Admin access required")

    return principal

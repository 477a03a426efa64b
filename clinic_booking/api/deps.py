from fastapi import BackgroundTasks, Depends, HTTPException, status, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import List

from ..core.config import settings
from ..core.database import get_db, get_redis
from ..core.security import (
    security, verify_token, AuthenticationError,
    AuthorizationError, StaffRole, TokenPayload
)
from ..models.staff import StaffAccount
from ..services.notifications import Notifier, NotificationEvent, Publisher, deliver, get_notifier

async def get_current_token(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    token_payload = verify_token(credentials.credentials)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")

    if token_payload.token_type != "access":
        raise AuthenticationError("Invalid token type")

    return token_payload

async def get_current_staff(
    token_payload: TokenPayload = Depends(get_current_token),
    db: Session = Depends(get_db)
) -> StaffAccount:
    """Resolve the token's identity to an active staff account."""
    if not token_payload.sub:
        raise AuthenticationError("Invalid token payload")

    staff = db.query(StaffAccount).filter(
        StaffAccount.auth_id == token_payload.sub
    ).first()
    if not staff:
        raise AuthenticationError("Staff account not found")

    if not staff.is_active:
        raise AuthenticationError("Staff account is deactivated")

    return staff

# Role-based access control dependencies
def require_role(allowed_roles: List[StaffRole]):
    """Create a dependency that requires specific staff roles."""
    async def role_checker(
        current_staff: StaffAccount = Depends(get_current_staff)
    ) -> StaffAccount:
        if current_staff.role not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return current_staff

    return role_checker

async def get_staff_member(
    current_staff: StaffAccount = Depends(require_role([StaffRole.STAFF, StaffRole.ADMIN]))
) -> StaffAccount:
    """Require staff or admin role."""
    return current_staff

async def get_admin(
    current_staff: StaffAccount = Depends(require_role([StaffRole.ADMIN]))
) -> StaffAccount:
    """Require admin role."""
    return current_staff

# Rate limiting dependencies
def rate_limit(scope: str, limit: int, window_seconds: int = 3600):
    """Create a per-client rate limit dependency backed by Redis."""
    async def checker(
        request: Request,
        redis_client = Depends(get_redis)
    ) -> None:
        client_ip = request.client.host if request.client else "unknown"
        key = f"rate_limit:{scope}:{client_ip}"

        current_requests = redis_client.get(key)
        if current_requests is None:
            redis_client.setex(key, window_seconds, 1)
        elif int(current_requests) >= limit:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please try again later."
            )
        else:
            redis_client.incr(key)

    return checker

booking_rate_limit = rate_limit("booking", settings.BOOKING_RATE_LIMIT)
login_rate_limit = rate_limit("login", settings.LOGIN_RATE_LIMIT)

# Notifications are delivered after the response has been sent
def get_publisher(
    background_tasks: BackgroundTasks,
    notifier: Notifier = Depends(get_notifier)
) -> Publisher:
    def publish(event: NotificationEvent) -> None:
        background_tasks.add_task(deliver, notifier, event)

    return publish

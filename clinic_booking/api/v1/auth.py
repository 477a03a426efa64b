from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...api.deps import get_current_staff, login_rate_limit
from ...services.auth_service import AuthService
from ...schemas.auth import StaffLogin, StaffResponse, TokenResponse
from ...models.staff import StaffAccount

router = APIRouter(prefix="/auth", tags=["Authentication"])

@router.post("/login", response_model=TokenResponse)
async def login(
    login_data: StaffLogin,
    db: Session = Depends(get_db),
    _: None = Depends(login_rate_limit)
):
    """Authenticate a staff member and return an access token."""
    auth_service = AuthService(db)
    return auth_service.authenticate_staff(login_data)

@router.get("/me", response_model=StaffResponse)
async def get_current_staff_info(
    current_staff: StaffAccount = Depends(get_current_staff)
):
    """Get current staff account information."""
    return StaffResponse.model_validate(current_staff)

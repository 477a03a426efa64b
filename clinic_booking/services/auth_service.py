from sqlalchemy.orm import Session
from fastapi import HTTPException, status
from datetime import datetime

from ..models.staff import StaffAccount
from ..core.security import verify_password, create_staff_token
from ..schemas.auth import StaffLogin, StaffResponse, TokenResponse

class AuthService:
    def __init__(self, db: Session):
        self.db = db

    def authenticate_staff(self, login_data: StaffLogin) -> TokenResponse:
        """Authenticate a staff member and return an access token."""
        staff = self.db.query(StaffAccount).filter(
            StaffAccount.email == login_data.email.lower()
        ).first()

        if not staff or not verify_password(login_data.password, staff.password_hash):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password"
            )

        if not staff.is_active:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Account is deactivated"
            )

        staff.last_login = datetime.utcnow()
        self.db.commit()
        self.db.refresh(staff)

        token = create_staff_token(staff.auth_id, staff.email, staff.role)

        return TokenResponse(
            access_token=token.access_token,
            token_type=token.token_type,
            expires_in=token.expires_in,
            staff=StaffResponse.model_validate(staff)
        )

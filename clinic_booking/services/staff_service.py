from typing import List
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import ConflictError, NotFound, StoreUnavailable
from ..core.security import get_password_hash, new_auth_id
from ..models.staff import StaffAccount
from ..schemas.staff import StaffCreate, StaffUpdate

logger = logging.getLogger(__name__)


class StaffService:
    """Admin management of staff accounts."""

    def __init__(self, db: Session):
        self.db = db

    def list_staff(self, skip: int = 0, limit: int = 100) -> List[StaffAccount]:
        return self.db.query(StaffAccount).order_by(
            StaffAccount.created_at.desc(), StaffAccount.id.desc()
        ).offset(skip).limit(limit).all()

    def get_staff(self, staff_id: int) -> StaffAccount:
        staff = self.db.query(StaffAccount).filter(StaffAccount.id == staff_id).first()
        if not staff:
            raise NotFound("Staff account not found")
        return staff

    def create_staff(self, data: StaffCreate) -> StaffAccount:
        """Provision an identity and its staff account."""
        email = data.email.lower()
        existing = self.db.query(StaffAccount).filter(
            StaffAccount.email == email
        ).first()
        if existing:
            raise ConflictError("Staff account already exists for this email")

        staff = StaffAccount(
            auth_id=new_auth_id(),
            email=email,
            password_hash=get_password_hash(data.password),
            role=data.role,
            is_active=data.is_active,
        )
        self.db.add(staff)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Staff account already exists for this email")
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable() from e

        self.db.refresh(staff)
        logger.info(f"Created {staff.role.value} account {staff.email}")
        return staff

    def update_staff(self, staff_id: int, data: StaffUpdate, acting: StaffAccount) -> StaffAccount:
        staff = self.get_staff(staff_id)

        if staff.id == acting.id:
            if data.role is not None and data.role != staff.role:
                raise ConflictError("You cannot change your own role")
            if data.is_active is False:
                raise ConflictError("You cannot deactivate your own account")

        if data.role is not None:
            staff.role = data.role
        if data.is_active is not None:
            staff.is_active = data.is_active
        if data.password:
            staff.password_hash = get_password_hash(data.password)

        self._commit()
        self.db.refresh(staff)
        logger.info(f"Updated staff account {staff.email} by {acting.email}")
        return staff

    def set_active(self, staff_id: int, is_active: bool, acting: StaffAccount) -> StaffAccount:
        return self.update_staff(staff_id, StaffUpdate(is_active=is_active), acting)

    def delete_staff(self, staff_id: int, acting: StaffAccount) -> None:
        staff = self.get_staff(staff_id)
        if staff.id == acting.id:
            raise ConflictError("You cannot delete your own account")

        self.db.delete(staff)
        self._commit()
        logger.info(f"Deleted staff account {staff_id} by {acting.email}")

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable() from e

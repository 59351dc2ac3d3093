"""Domain Entities - Callers of the booking API"""
from pydantic import BaseModel, Field
from uuid import UUID, uuid4
from typing import Optional


class User(BaseModel):
    """Authenticated caller; a guest's user_id is the guest_id on their reservations"""
    user_id: UUID = Field(default_factory=uuid4)
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    is_admin: bool = False
    disabled: bool = False

    class Config:
        from_attributes = True

    def can_access(self, guest_id: UUID) -> bool:
        """Admins see every booking, guests only their own"""
        return self.is_admin or self.user_id == guest_id


class UserInDB(User):
    hashed_password: str

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.models.user import UserRole


class UserCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    email: str
    role: str = UserRole.CLIENT

    @field_validator("role")
    @classmethod
    def check_role(cls, v: str) -> str:
        if v not in UserRole.ALL:
            raise ValueError("Invalid role specified")
        return v


class UserResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str
    role: str
    is_active: bool = True
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserStatusBody(BaseModel):
    is_active: bool

"""
The verified principal handed to the booking core by the identity provider.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


class Role(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"


class Principal(BaseModel):
    id: int = Field(..., gt=0)
    gender: Optional[Gender] = None
    role: Role = Role.MEMBER
    email_verified: bool = False
    email: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

from enum import Enum
from pydantic import BaseModel
from typing import Optional


class UserRole(str, Enum):
    DRIVER = "driver"
    PASSENGER = "passenger"


class CurrentUser(BaseModel):
    id: str
    email: Optional[str] = None


class UserProfile(BaseModel):
    id: str
    role: UserRole
    name: str
    phone: str = ""
    vehicle_info: Optional[str] = None
    email: Optional[str] = None

    class Config:
        use_enum_values = True

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field, ConfigDict

from marketplace.models.user import UserRole, UserStatus


class UserProfileBase(BaseModel):
    avatar_url: Optional[str] = None
    budget: Optional[int] = Field(None, ge=0)
    appeal_point: Optional[str] = None
    trade_name: Optional[str] = None
    representative_name: Optional[str] = None
    contact_person: Optional[str] = None
    address: Optional[str] = None
    bank_account_info: Optional[str] = None
    phone_number: Optional[str] = None
    email_address: Optional[str] = None
    privacy_settings: Optional[Dict[str, bool]] = None


class UserCreate(UserProfileBase):
    """Profile created right after sign-up. The role chosen here is permanent."""
    name: str = Field(..., min_length=1, max_length=100)
    company_name: str = Field(..., min_length=1, max_length=200)
    role: UserRole

    model_config = ConfigDict(extra="forbid")


class UserUpdate(UserProfileBase):
    """Self-service profile update. Role and status are not editable here."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    company_name: Optional[str] = Field(None, min_length=1, max_length=200)

    model_config = ConfigDict(extra="forbid")


class UserStatusUpdate(BaseModel):
    status: UserStatus


class UserResponse(BaseModel):
    """Public view of a user. Private profile fields are omitted."""
    id: str = Field(validation_alias="_id", serialization_alias="id")
    name: str
    company_name: str
    role: UserRole
    status: UserStatus
    avatar_url: Optional[str] = None
    budget: Optional[int] = None
    appeal_point: Optional[str] = None
    registered_at: datetime

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

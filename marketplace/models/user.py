from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import Field

from marketplace.models.base import MarketModel, utcnow


class UserRole(str, Enum):
    SELLER = "seller"
    BUYER = "buyer"
    ADMIN = "admin"


class UserStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class User(MarketModel):
    """
    Marketplace participant.

    ``role`` is fixed at registration. ``status`` is only toggled by an admin.
    ``budget`` and ``appeal_point`` are meaningful for buyers only.
    """
    name: str
    company_name: str
    role: UserRole
    status: UserStatus = UserStatus.ACTIVE
    avatar_url: Optional[str] = None

    # Buyer profile
    budget: Optional[int] = None
    appeal_point: Optional[str] = None

    # Registration form details
    trade_name: Optional[str] = None
    representative_name: Optional[str] = None
    contact_person: Optional[str] = None
    address: Optional[str] = None
    bank_account_info: Optional[str] = None
    phone_number: Optional[str] = None
    email_address: Optional[str] = None
    privacy_settings: Dict[str, bool] = {}

    registered_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

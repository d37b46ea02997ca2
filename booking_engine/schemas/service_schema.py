"""Service catalog and user records consumed from collaborators."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from booking_engine.config import SUPPORTED_CURRENCIES


class ServicePrice(BaseModel):
    amount: float = Field(ge=0)
    currency: str

    @field_validator("currency")
    @classmethod
    def _check_currency(cls, value: str) -> str:
        if value not in SUPPORTED_CURRENCIES:
            raise ValueError(f"Unsupported currency {value!r}")
        return value


class Service(BaseModel):
    """Read-only service snapshot used at booking creation."""
    service_id: str
    provider_id: str
    name: str
    duration: int = Field(gt=0)
    price: ServicePrice
    is_active: bool = True


class UserRole(str, Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMIN = "admin"


class UserRecord(BaseModel):
    """User record from the identity collaborator."""
    user_id: str
    role: UserRole
    first_name: str = ""
    last_name: str = ""
    business_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.business_name:
            return self.business_name
        return f"{self.first_name} {self.last_name}".strip() or self.user_id

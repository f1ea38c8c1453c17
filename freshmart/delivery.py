"""
Delivery partner records and their bookkeeping methods.
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from freshmart.exceptions import DeliveryPartnerNotFoundError


class VehicleType(str, Enum):
    BIKE = "bike"
    SCOOTER = "scooter"
    CYCLE = "cycle"
    CAR = "car"


class Location(BaseModel):
    lat: float
    lng: float
    address: str = ""
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Rating(BaseModel):
    average: float = Field(0.0, ge=0, le=5)
    count: int = 0


class Earnings(BaseModel):
    total: Decimal = Decimal("0")
    pending: Decimal = Decimal("0")
    paid: Decimal = Decimal("0")


class DeliveryPartnerProfile(BaseModel):
    """Fields an operator sets when registering or editing a partner"""
    name: str = ""
    phone: str = ""
    vehicle_type: VehicleType
    vehicle_number: str = Field(..., min_length=1)
    license_number: str = Field(..., min_length=1)
    current_location: Optional[Location] = None
    is_online: bool = False
    is_verified: bool = False
    is_active: bool = True

    @field_validator("vehicle_number", "license_number")
    @classmethod
    def upper(cls, v: str) -> str:
        return v.strip().upper()


class DeliveryPartner(DeliveryPartnerProfile):
    partner_id: str
    is_available: bool = True
    current_order: Optional[str] = None
    total_deliveries: int = 0
    rating: Rating = Field(default_factory=Rating)
    earnings: Earnings = Field(default_factory=Earnings)

    def update_location(self, lat: float, lng: float, address: str = "") -> None:
        self.current_location = Location(lat=lat, lng=lng, address=address)

    def assign_order(self, order_id: str) -> None:
        self.current_order = order_id
        self.is_available = False

    def release_order(self) -> None:
        self.current_order = None
        self.is_available = True

    def complete_delivery(self, amount: Decimal) -> None:
        self.release_order()
        self.total_deliveries += 1
        self.earnings.total += amount
        self.earnings.pending += amount

    def update_rating(self, value: float) -> None:
        """Fold one rating into the running average"""
        total = self.rating.average * self.rating.count + value
        self.rating.count += 1
        self.rating.average = total / self.rating.count

    def is_eligible(self) -> bool:
        return self.is_online and self.is_available and self.is_verified and self.is_active


class DeliveryPartnerRegistry:
    KEY = "delivery_partners"

    def __init__(self, redis):
        self.redis = redis

    def get(self, partner_id: str) -> DeliveryPartner:
        raw = self.redis.hget(self.KEY, partner_id)
        if raw is None:
            raise DeliveryPartnerNotFoundError(partner_id)
        return DeliveryPartner.model_validate_json(raw)

    def register(self, partner_id: str, profile: DeliveryPartnerProfile) -> DeliveryPartner:
        """Create a partner or update the profile of an existing one, keeping its history"""
        raw = self.redis.hget(self.KEY, partner_id)
        if raw is None:
            partner = DeliveryPartner(partner_id=partner_id, **profile.model_dump())
        else:
            existing = DeliveryPartner.model_validate_json(raw)
            partner = DeliveryPartner.model_validate({
                **existing.model_dump(),
                **profile.model_dump(exclude_unset=True)
            })
        return self.save(partner)

    def save(self, partner: DeliveryPartner) -> DeliveryPartner:
        self.redis.hset(self.KEY, partner.partner_id, partner.model_dump_json())
        return partner

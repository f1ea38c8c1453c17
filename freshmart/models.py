"""
Pydantic models for cart, coupon, checkout and order operations, requests, and responses.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FLAT = "flat"


class PaymentMethod(str, Enum):
    CARD = "card"
    UPI = "upi"
    WALLET = "wallet"
    COD = "cod"
    NETBANKING = "netbanking"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    OUT_FOR_DELIVERY = "out-for-delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Product(BaseModel):
    """Catalog entry as seen by the cart"""
    product_id: str = Field(..., description="Product identifier")
    name: str = Field("", description="Display name")
    price: Decimal = Field(..., ge=0, description="Current unit price")
    stock: int = Field(0, ge=0, description="Units available")
    is_active: bool = Field(True, description="Whether the product can be sold")


class CartItem(BaseModel):
    """Cart line item"""
    product_id: str = Field(..., description="Product identifier")
    name: str = Field("", description="Product name at time of add")
    quantity: int = Field(..., ge=1, description="Item quantity")
    price_snapshot: Decimal = Field(..., ge=0, description="Unit price at time of add")

    @property
    def line_total(self) -> Decimal:
        return self.price_snapshot * self.quantity


class Coupon(BaseModel):
    """Named discount rule"""
    code: str = Field(..., min_length=1, description="Coupon code, stored upper-case")
    description: str = Field("", description="Shown next to the applied coupon")
    discount_type: DiscountType = Field(..., description="percentage or flat")
    discount_value: Decimal = Field(..., ge=0, description="Percent or flat amount")
    max_discount: Optional[Decimal] = Field(None, ge=0, description="Cap for percentage coupons")
    min_order_value: Decimal = Field(Decimal("0"), ge=0, description="Minimum subtotal")
    valid_from: Optional[datetime] = Field(None, description="Start of validity window")
    valid_until: Optional[datetime] = Field(None, description="End of validity window")
    usage_limit: Optional[int] = Field(None, ge=0, description="Global redemption cap")
    used_count: int = Field(0, ge=0, description="Redemptions so far")
    is_active: bool = Field(True, description="Soft-delete flag")

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("discount_type", mode="before")
    @classmethod
    def accept_fixed_alias(cls, v):
        # Older coupon documents call flat discounts "fixed"
        if v == "fixed":
            return DiscountType.FLAT
        return v


class PriceSummary(BaseModel):
    """Derived totals for a cart; never persisted on its own"""
    subtotal: Decimal = Field(..., description="Sum of unit price x quantity")
    discount: Decimal = Field(Decimal("0"), description="Coupon discount")
    delivery_fee: Decimal = Field(..., description="Zero above the free-delivery threshold")
    tax: Decimal = Field(..., description="Flat-rate tax on the subtotal")
    grand_total: Decimal = Field(..., description="subtotal - discount + delivery_fee + tax")
    wallet_used: Decimal = Field(Decimal("0"), description="Wallet balance applied (display only)")
    amount_payable: Decimal = Field(..., description="grand_total - wallet_used")
    free_delivery_remaining: Decimal = Field(Decimal("0"), description="Spend needed for free delivery")


class AddressInput(BaseModel):
    """Delivery address form"""
    name: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pin_code: str = Field(..., pattern=r"^\d{6}$", description="6-digit PIN code")
    phone: str = Field(..., pattern=r"^\d{10}$", description="10-digit phone number")
    landmark: Optional[str] = None

    @field_validator("name", "street", "city", "state")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("field is required")
        return v


class Address(AddressInput):
    """Saved address"""
    address_id: str = Field(..., description="Address identifier")
    is_default: bool = Field(False, description="Default delivery address")


class OrderItem(BaseModel):
    product_id: str
    name: str = ""
    quantity: int = Field(..., ge=1)
    price: Decimal = Field(..., ge=0)


class OrderSubmission(BaseModel):
    """Payload sent to the order service at checkout"""
    user_id: str = Field(..., description="Ordering user")
    items: List[OrderItem] = Field(..., min_length=1)
    shipping_address: AddressInput
    payment_method: PaymentMethod
    use_wallet: bool = False
    coupon_code: Optional[str] = None
    price_summary: Optional[PriceSummary] = Field(None, description="Totals shown to the user")


class Order(BaseModel):
    order_id: str
    user_id: str
    items: List[OrderItem]
    shipping_address: AddressInput
    payment_method: PaymentMethod
    payment_status: str = "pending"
    status: OrderStatus = OrderStatus.PENDING
    price_summary: PriceSummary
    coupon_code: Optional[str] = None
    delivery_partner_id: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime


class OrderConfirmation(BaseModel):
    """What checkout needs back from the order service"""
    order_id: str = Field(..., description="Generated order identifier")
    status: OrderStatus = Field(OrderStatus.PENDING, description="Initial order status")


# Requests

class CartItemRequest(BaseModel):
    """Request model for adding cart items"""
    product_id: str = Field(..., min_length=1, description="Product identifier")
    quantity: int = Field(1, description="Quantity to add")


class QuantityUpdateRequest(BaseModel):
    quantity: int = Field(..., description="New quantity for the line")


class CouponRequest(BaseModel):
    code: str = Field(..., description="Coupon code")


class AddressSelection(BaseModel):
    """Either a saved address id or a new address form"""
    address_id: Optional[str] = None
    address: Optional[AddressInput] = None


class PaymentSelection(BaseModel):
    payment_method: Optional[PaymentMethod] = None
    use_wallet: bool = False


class StatusUpdateRequest(BaseModel):
    status: OrderStatus


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = None


class LocationUpdate(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: str = ""


class RatingRequest(BaseModel):
    rating: float = Field(..., ge=0, le=5)


class WalletUpdate(BaseModel):
    balance: Decimal = Field(..., ge=0)


# Responses

class CartResponse(BaseModel):
    """Response model for cart retrieval"""
    user_id: str = Field(..., description="Cart owner")
    version: int = Field(0, description="Cart version, echoed as ETag")
    items: List[CartItem] = Field(default_factory=list, description="Cart items")
    total_items: int = Field(0, description="Sum of quantities")
    total_price: Decimal = Field(Decimal("0"), description="Cart subtotal")
    coupon: Optional[Coupon] = Field(None, description="Applied coupon")
    summary: PriceSummary

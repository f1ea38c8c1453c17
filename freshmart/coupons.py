"""
Coupon evaluation: validity checks and discount calculation.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from freshmart.exceptions import CouponRejectedError
from freshmart.models import Coupon, DiscountType

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def is_valid(coupon: Coupon, now: Optional[datetime] = None) -> bool:
    """Active, inside its validity window and under the usage limit"""
    now = now or datetime.now(timezone.utc)
    if not coupon.is_active:
        return False
    if coupon.valid_from and _aware(now) < _aware(coupon.valid_from):
        return False
    if coupon.valid_until and _aware(now) > _aware(coupon.valid_until):
        return False
    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        return False
    return True


def calculate_discount(coupon: Coupon, subtotal: Decimal) -> Decimal:
    """
    Discount for a subtotal, without validity checks.

    Percentage discounts are capped by max_discount; flat discounts never
    exceed the subtotal. Result is rounded to 2 decimal places.
    """
    subtotal = Decimal(str(subtotal))
    if subtotal <= 0:
        return Decimal("0.00")

    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = subtotal * coupon.discount_value / Decimal("100")
        if coupon.max_discount is not None and discount > coupon.max_discount:
            discount = coupon.max_discount
    else:
        discount = min(coupon.discount_value, subtotal)

    return discount.quantize(CENT, rounding=ROUND_HALF_UP)


def evaluate(coupon: Optional[Coupon], subtotal: Decimal, now: Optional[datetime] = None) -> Decimal:
    """
    Validate a looked-up coupon against the current subtotal.

    Args:
        coupon: Coupon found for the entered code, or None if the code is unknown
        subtotal: Current cart subtotal

    Returns:
        Discount amount

    Raises:
        CouponRejectedError: with reason "invalid code", "expired or inactive",
            "usage limit reached" or "minimum order not met"
    """
    if coupon is None:
        raise CouponRejectedError(CouponRejectedError.INVALID_CODE, "Invalid coupon code")

    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        raise CouponRejectedError(CouponRejectedError.USAGE_LIMIT, "Coupon usage limit reached")

    if not is_valid(coupon, now):
        raise CouponRejectedError(CouponRejectedError.EXPIRED, "Coupon is expired or inactive")

    subtotal = Decimal(str(subtotal))
    if subtotal < coupon.min_order_value:
        raise CouponRejectedError(
            CouponRejectedError.MINIMUM_NOT_MET,
            f"Minimum order value of {coupon.min_order_value} required"
        )

    discount = calculate_discount(coupon, subtotal)
    logger.debug(f"Coupon {coupon.code} accepted", extra={"discount": str(discount)})
    return discount


def current_discount(coupon: Optional[Coupon], subtotal: Decimal, now: Optional[datetime] = None) -> Decimal:
    """Discount for an already applied coupon; zero when it no longer qualifies"""
    if coupon is None:
        return Decimal("0")
    try:
        return evaluate(coupon, subtotal, now)
    except CouponRejectedError:
        return Decimal("0")

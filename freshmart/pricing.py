"""
Price summary for a cart: delivery fee, tax and grand total.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from freshmart.config import Config
from freshmart.models import PriceSummary

WHOLE_UNIT = Decimal("1")
ZERO = Decimal("0")


def _money(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def delivery_fee(subtotal: Decimal, threshold: Optional[Decimal] = None, fee: Optional[Decimal] = None) -> Decimal:
    """Free strictly above the threshold, flat fee otherwise"""
    threshold = Config.FREE_DELIVERY_THRESHOLD if threshold is None else threshold
    fee = Config.DELIVERY_FEE if fee is None else fee
    return ZERO if _money(subtotal) > threshold else _money(fee)


def tax_for(subtotal: Decimal, rate: Optional[Decimal] = None) -> Decimal:
    """Tax rounded to whole currency units, halves rounded up"""
    rate = Config.TAX_RATE if rate is None else rate
    return (_money(subtotal) * _money(rate)).quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)


def summarize(
    subtotal: Decimal,
    discount: Decimal = ZERO,
    use_wallet: bool = False,
    wallet_balance: Decimal = ZERO
) -> PriceSummary:
    """
    Combine subtotal, discount, delivery fee and tax into a PriceSummary.

    The wallet reduction only affects amount_payable; grand_total always
    equals subtotal - discount + delivery_fee + tax.
    """
    subtotal = _money(subtotal)
    discount = _money(discount)

    fee = delivery_fee(subtotal)
    tax = tax_for(subtotal)
    grand_total = subtotal - discount + fee + tax

    wallet_used = ZERO
    if use_wallet:
        wallet_used = max(min(_money(wallet_balance), grand_total), ZERO)

    return PriceSummary(
        subtotal=subtotal,
        discount=discount,
        delivery_fee=fee,
        tax=tax,
        grand_total=grand_total,
        wallet_used=wallet_used,
        amount_payable=grand_total - wallet_used,
        free_delivery_remaining=max(Config.FREE_DELIVERY_THRESHOLD - subtotal, ZERO)
    )

"""
Order status rules and the local order book.

The local order book stands in for the order service when no remote order
API is configured. Payment is simulated: orders are created with payment
status "pending" and completed on delivery.
"""
import logging
import random
import string
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional

from freshmart import coupons, pricing
from freshmart.config import Config
from freshmart.delivery import DeliveryPartnerRegistry
from freshmart.exceptions import (
    BusinessRuleError,
    InvalidTransitionError,
    OrderNotFoundError,
    OrderRejectedError
)
from freshmart.models import Order, OrderConfirmation, OrderItem, OrderStatus, OrderSubmission, PriceSummary
from freshmart.repositories import CouponBook, ProductCatalog, WalletBalances
from freshmart.tracking import TrackingView, build_tracking

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Customers may cancel only before preparation starts
CUSTOMER_CANCELLABLE = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in ALLOWED_TRANSITIONS[current]


def check_transition(current: OrderStatus, new: OrderStatus) -> None:
    if not can_transition(current, new):
        raise InvalidTransitionError(current.value, new.value)


def generate_order_id() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"ORD{int(time.time() * 1000)}{suffix}"


class LocalOrderBook:
    """Orders stored in Redis, with stock reservation on creation"""

    def __init__(
        self,
        redis,
        catalog: ProductCatalog,
        coupon_book: CouponBook,
        wallets: WalletBalances,
        partners: DeliveryPartnerRegistry
    ):
        self.redis = redis
        self.catalog = catalog
        self.coupon_book = coupon_book
        self.wallets = wallets
        self.partners = partners

    def _order_key(self, order_id: str) -> str:
        return f"order:{order_id}"

    def _user_orders_key(self, user_id: str) -> str:
        return f"orders:{user_id}"

    def _save(self, order: Order) -> Order:
        self.redis.set(self._order_key(order.order_id), order.model_dump_json())
        return order

    def create_order(self, submission: OrderSubmission) -> OrderConfirmation:
        """
        Create an order from a checkout submission.

        Prices are taken from the catalog, not from the submission, and the
        price summary is recomputed. When the submission carries the totals
        the user reviewed, a different recomputed grand total refuses the
        order. Stock for every line is reserved in one step; the order is
        refused if any line is short.
        """
        items: List[OrderItem] = []
        for line in submission.items:
            product = self.catalog.get(line.product_id)
            if product is None or not product.is_active:
                raise OrderRejectedError(f"Product {line.product_id} not found or inactive")
            items.append(OrderItem(
                product_id=product.product_id,
                name=product.name,
                quantity=line.quantity,
                price=product.price
            ))

        lines = [(item.product_id, item.quantity) for item in items]
        self.catalog.reserve(lines)

        try:
            order = self._create(submission, items)
        except Exception:
            self.catalog.restore(lines)
            raise

        logger.info(
            f"Order created: {order.order_id}",
            extra={"order_id": order.order_id, "grand_total": str(order.price_summary.grand_total)}
        )
        return OrderConfirmation(order_id=order.order_id, status=order.status)

    def submit_order(self, submission: OrderSubmission) -> OrderConfirmation:
        """Order client interface used by checkout"""
        return self.create_order(submission)

    def _price(self, submission: OrderSubmission, subtotal: Decimal, discount: Decimal) -> PriceSummary:
        balance = self.wallets.get_balance(submission.user_id) if submission.use_wallet else Decimal("0")
        summary = pricing.summarize(subtotal, discount, submission.use_wallet, balance)

        reviewed = submission.price_summary
        if reviewed is not None and reviewed.grand_total != summary.grand_total:
            raise OrderRejectedError(
                f"Order total changed from {reviewed.grand_total} to {summary.grand_total}, please review your cart"
            )
        return summary

    def _create(self, submission: OrderSubmission, items: List[OrderItem]) -> Order:
        subtotal = sum((item.price * item.quantity for item in items), Decimal("0"))

        coupon = self.coupon_book.get(submission.coupon_code) if submission.coupon_code else None
        discount = coupons.current_discount(coupon, subtotal)
        summary = self._price(submission, subtotal, discount)

        redeemed = discount > 0 and self.coupon_book.increment_usage(coupon.code)
        if discount > 0 and not redeemed:
            # Limit reached by a concurrent order since the coupon was read
            discount = Decimal("0")
            summary = self._price(submission, subtotal, discount)

        now = datetime.now(timezone.utc)
        order = Order(
            order_id=generate_order_id(),
            user_id=submission.user_id,
            items=items,
            shipping_address=submission.shipping_address,
            payment_method=submission.payment_method,
            status=OrderStatus.PENDING,
            price_summary=summary,
            coupon_code=coupon.code if redeemed else None,
            estimated_delivery=now + timedelta(minutes=Config.ESTIMATED_DELIVERY_MINUTES),
            created_at=now
        )
        try:
            self._save(order)
            self.redis.lpush(self._user_orders_key(submission.user_id), order.order_id)
        except Exception:
            if redeemed:
                self.coupon_book.release_usage(coupon.code)
            raise
        return order

    def get_order(self, order_id: str) -> Order:
        raw = self.redis.get(self._order_key(order_id))
        if raw is None:
            raise OrderNotFoundError(order_id)
        return Order.model_validate_json(raw)

    def list_orders(self, user_id: str, status: Optional[OrderStatus] = None) -> List[Order]:
        order_ids = self.redis.lrange(self._user_orders_key(user_id))
        orders = [self.get_order(order_id) for order_id in order_ids]
        if status is not None:
            orders = [order for order in orders if order.status == status]
        return orders

    def get_tracking(self, order_id: str) -> TrackingView:
        order = self.get_order(order_id)
        partner = self.partners.get(order.delivery_partner_id) if order.delivery_partner_id else None
        return build_tracking(order, partner)

    def update_status(self, order_id: str, status: OrderStatus, reason: Optional[str] = None) -> Order:
        """Apply a status change allowed by the transition table"""
        order = self.get_order(order_id)
        check_transition(order.status, status)

        order.status = status
        if status == OrderStatus.DELIVERED:
            order.delivered_at = datetime.now(timezone.utc)
            order.payment_status = "completed"
            if order.delivery_partner_id:
                partner = self.partners.get(order.delivery_partner_id)
                partner.complete_delivery(Config.DELIVERY_PAYOUT)
                self.partners.save(partner)
        elif status == OrderStatus.CANCELLED:
            order.cancellation_reason = reason
            self.catalog.restore([(item.product_id, item.quantity) for item in order.items])
            if order.delivery_partner_id:
                partner = self.partners.get(order.delivery_partner_id)
                partner.release_order()
                self.partners.save(partner)

        logger.info(f"Order {order_id} moved to {status.value}")
        return self._save(order)

    def cancel_order(self, order_id: str, reason: Optional[str] = None) -> Order:
        """Customer cancellation, allowed only before preparation starts"""
        order = self.get_order(order_id)
        if order.status not in CUSTOMER_CANCELLABLE:
            raise BusinessRuleError("Order cannot be cancelled at this stage")
        return self.update_status(order_id, OrderStatus.CANCELLED, reason)

    def assign_partner(self, order_id: str, partner_id: str) -> Order:
        """Hand the order to a partner, freeing any partner it had before"""
        order = self.get_order(order_id)
        if order.status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
            raise BusinessRuleError(f"Order is already {order.status.value}")
        if order.delivery_partner_id == partner_id:
            return order

        partner = self.partners.get(partner_id)
        if not partner.is_eligible():
            raise BusinessRuleError("Delivery partner is not available")

        if order.delivery_partner_id:
            previous = self.partners.get(order.delivery_partner_id)
            if previous.current_order == order_id:
                previous.release_order()
                self.partners.save(previous)

        partner.assign_order(order_id)
        self.partners.save(partner)
        order.delivery_partner_id = partner_id
        return self._save(order)

"""
Cart state container: line items, applied coupon and derived totals.

A CartStore holds one user's cart in memory. It is created per request by the
cart service (or directly in tests) and carries the version it was loaded at,
so the service can detect concurrent writers when saving it back.
"""
from decimal import Decimal
from typing import Dict, List, Optional

from freshmart import coupons, pricing
from freshmart.config import Config
from freshmart.exceptions import (
    BusinessRuleError,
    CartItemNotFoundError,
    ProductNotFoundError,
    StockLimitError,
    ValidationError
)
from freshmart.models import CartItem, Coupon, PriceSummary, Product


class CartStore:
    """Line items keyed by product id, in insertion order"""

    def __init__(
        self,
        items: Optional[List[CartItem]] = None,
        coupon: Optional[Coupon] = None,
        version: int = 0,
        max_items: Optional[int] = None
    ):
        self._items: Dict[str, CartItem] = {item.product_id: item for item in items or []}
        self.coupon = coupon
        self.version = version
        self.max_items = max_items or Config.MAX_ITEMS_PER_CART

    @property
    def items(self) -> List[CartItem]:
        return list(self._items.values())

    def get(self, product_id: str) -> Optional[CartItem]:
        return self._items.get(product_id)

    def __contains__(self, product_id: str) -> bool:
        return product_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self._items.values())

    @property
    def total_price(self) -> Decimal:
        return sum((item.line_total for item in self._items.values()), Decimal("0"))

    @property
    def discount(self) -> Decimal:
        return coupons.current_discount(self.coupon, self.total_price)

    def summary(self, use_wallet: bool = False, wallet_balance: Decimal = Decimal("0")) -> PriceSummary:
        return pricing.summarize(self.total_price, self.discount, use_wallet, wallet_balance)

    def add(self, product: Product, quantity: int = 1) -> CartItem:
        """
        Add a product or merge into its existing line.

        The resulting quantity is clamped to [1, product.stock]. The price
        snapshot of an existing line is kept.
        """
        if not product.is_active or product.stock <= 0:
            raise ProductNotFoundError(product.product_id)
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        existing = self._items.get(product.product_id)
        if existing is None and len(self._items) >= self.max_items:
            raise BusinessRuleError(f"Cart exceeds maximum items {self.max_items}")

        current = existing.quantity if existing else 0
        new_quantity = min(max(current + quantity, 1), product.stock)

        if existing:
            item = existing.model_copy(update={"quantity": new_quantity})
        else:
            item = CartItem(
                product_id=product.product_id,
                name=product.name,
                quantity=new_quantity,
                price_snapshot=product.price
            )
        self._items[product.product_id] = item
        return item

    def update(self, product_id: str, quantity: int, stock: int) -> bool:
        """
        Set a line's quantity.

        Returns False when the quantity is unchanged. Raises StockLimitError
        for values outside [1, stock]; the line keeps its prior quantity.
        """
        item = self._items.get(product_id)
        if item is None:
            raise CartItemNotFoundError(product_id)
        if quantity == item.quantity:
            return False
        if quantity < 1 or quantity > stock:
            raise StockLimitError(product_id, quantity, stock)

        self._items[product_id] = item.model_copy(update={"quantity": quantity})
        return True

    def remove(self, product_id: str) -> bool:
        return self._items.pop(product_id, None) is not None

    def clear(self) -> None:
        self._items.clear()
        self.coupon = None

    def apply_coupon(self, coupon: Optional[Coupon]) -> Decimal:
        """Validate and attach a coupon; returns the discount it gives now"""
        if not self._items:
            raise BusinessRuleError("Cart is empty")
        discount = coupons.evaluate(coupon, self.total_price)
        self.coupon = coupon
        return discount

    def remove_coupon(self) -> bool:
        had_coupon = self.coupon is not None
        self.coupon = None
        return had_coupon

    def to_document(self) -> dict:
        return {
            "items": [item.model_dump(mode="json") for item in self._items.values()],
            "coupon": self.coupon.model_dump(mode="json") if self.coupon else None
        }

    @classmethod
    def from_document(cls, document: Optional[dict], version: int = 0) -> "CartStore":
        document = document or {}
        coupon_data = document.get("coupon")
        return cls(
            items=[CartItem.model_validate(item) for item in document.get("items", [])],
            coupon=Coupon.model_validate(coupon_data) if coupon_data else None,
            version=version
        )

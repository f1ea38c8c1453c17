"""
Redis-backed records the cart and checkout read: product catalog, coupons,
saved addresses and wallet balances.
"""
import json
import logging
import uuid
from decimal import Decimal
from typing import List, Optional, Tuple

from freshmart.atomic_scripts import AtomicScripts
from freshmart.exceptions import AddressNotFoundError, ProductNotFoundError, StockLimitError
from freshmart.models import Address, AddressInput, Coupon, Product

logger = logging.getLogger(__name__)


class ProductCatalog:
    """Product details in one hash, stock counts in another"""

    PRODUCTS_KEY = "products"
    STOCK_KEY = "product_stock"

    def __init__(self, redis):
        self.redis = redis
        self.scripts = AtomicScripts(redis)

    def get(self, product_id: str) -> Optional[Product]:
        raw = self.redis.hget(self.PRODUCTS_KEY, product_id)
        if raw is None:
            return None
        data = json.loads(raw)
        data["stock"] = int(self.redis.hget(self.STOCK_KEY, product_id) or 0)
        return Product(**data)

    def require(self, product_id: str) -> Product:
        product = self.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    def save(self, product: Product) -> Product:
        self.redis.hset(
            self.PRODUCTS_KEY,
            product.product_id,
            product.model_dump_json(exclude={"stock"})
        )
        self.redis.hset(self.STOCK_KEY, product.product_id, product.stock)
        return product

    def reserve(self, lines: List[Tuple[str, int]]) -> None:
        """Take stock for all lines atomically or raise StockLimitError"""
        failed = self.scripts.reserve_stock(self.STOCK_KEY, lines)
        if failed is not None:
            product_id, quantity = lines[failed]
            available = int(self.redis.hget(self.STOCK_KEY, product_id) or 0)
            raise StockLimitError(product_id, quantity, available)

    def restore(self, lines: List[Tuple[str, int]]) -> None:
        for product_id, quantity in lines:
            self.redis.hincrby(self.STOCK_KEY, product_id, quantity)


class CouponBook:
    """Coupon rules keyed by upper-case code, redemption counts in their own hash"""

    KEY = "coupons"
    USAGE_KEY = "coupon_usage"

    def __init__(self, redis):
        self.redis = redis
        self.scripts = AtomicScripts(redis)

    def get(self, code: str) -> Optional[Coupon]:
        code = code.strip().upper()
        raw = self.redis.hget(self.KEY, code)
        if raw is None:
            return None
        data = json.loads(raw)
        data["used_count"] = int(self.redis.hget(self.USAGE_KEY, code) or 0)
        return Coupon(**data)

    def save(self, coupon: Coupon) -> Coupon:
        self.redis.hset(self.KEY, coupon.code, coupon.model_dump_json(exclude={"used_count"}))
        self.redis.hset(self.USAGE_KEY, coupon.code, coupon.used_count)
        return coupon

    def increment_usage(self, code: str) -> bool:
        """Count one redemption; False when the coupon is unknown or used up"""
        coupon = self.get(code)
        if coupon is None:
            logger.warning(f"Usage increment for unknown coupon {code}")
            return False
        return self.scripts.redeem_coupon(self.USAGE_KEY, coupon.code, coupon.usage_limit) is not None

    def release_usage(self, code: str) -> None:
        """Undo a redemption whose order was never stored"""
        self.redis.hincrby(self.USAGE_KEY, code.strip().upper(), -1)


class AddressBook:
    """Saved delivery addresses, exactly one marked default per user"""

    def __init__(self, redis):
        self.redis = redis

    def _key(self, user_id: str) -> str:
        return f"addresses:{user_id}"

    def list(self, user_id: str) -> List[Address]:
        addresses = [
            Address.model_validate_json(raw)
            for raw in self.redis.hgetall(self._key(user_id)).values()
        ]
        return sorted(addresses, key=lambda a: (not a.is_default, a.address_id))

    def get(self, user_id: str, address_id: str) -> Address:
        raw = self.redis.hget(self._key(user_id), address_id)
        if raw is None:
            raise AddressNotFoundError(address_id)
        return Address.model_validate_json(raw)

    def default(self, user_id: str) -> Optional[Address]:
        addresses = self.list(user_id)
        return addresses[0] if addresses else None

    def add(self, user_id: str, form: AddressInput) -> Address:
        is_first = not self.redis.hgetall(self._key(user_id))
        address = Address(
            address_id=uuid.uuid4().hex[:12],
            is_default=is_first,
            **form.model_dump()
        )
        self._put(user_id, address)
        return address

    def set_default(self, user_id: str, address_id: str) -> Address:
        target = self.get(user_id, address_id)
        for address in self.list(user_id):
            if address.is_default and address.address_id != address_id:
                self._put(user_id, address.model_copy(update={"is_default": False}))
        target = target.model_copy(update={"is_default": True})
        self._put(user_id, target)
        return target

    def remove(self, user_id: str, address_id: str) -> None:
        removed = self.get(user_id, address_id)
        self.redis.hdel(self._key(user_id), address_id)
        remaining = self.list(user_id)
        if removed.is_default and remaining:
            self.set_default(user_id, remaining[0].address_id)

    def _put(self, user_id: str, address: Address) -> None:
        self.redis.hset(self._key(user_id), address.address_id, address.model_dump_json())


class WalletBalances:
    """Read-only balances; no ledger is kept here"""

    def __init__(self, redis):
        self.redis = redis

    def get_balance(self, user_id: str) -> Decimal:
        raw = self.redis.get(f"wallet:{user_id}")
        return Decimal(raw) if raw else Decimal("0")

    def set_balance(self, user_id: str, balance: Decimal) -> Decimal:
        self.redis.set(f"wallet:{user_id}", str(balance))
        return balance

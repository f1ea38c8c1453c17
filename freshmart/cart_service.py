"""
Cart service for managing shopping cart operations with Redis.
"""
import hashlib
import json
import logging
from typing import Callable, Optional

from freshmart.atomic_scripts import AtomicScripts
from freshmart.cart import CartStore
from freshmart.config import Config
from freshmart.exceptions import CartConflictError, ProductNotFoundError
from freshmart.models import CartResponse
from freshmart.repositories import CouponBook, ProductCatalog

logger = logging.getLogger(__name__)


class CartService:
    """Service for cart operations"""

    def __init__(self, redis, catalog: Optional[ProductCatalog] = None, coupons: Optional[CouponBook] = None):
        self.redis = redis
        self.scripts = AtomicScripts(redis)
        self.catalog = catalog or ProductCatalog(redis)
        self.coupons = coupons or CouponBook(redis)

    def _get_cart_key(self, user_id: str) -> str:
        """Generate Redis key for cart"""
        return f"cart:{user_id}"

    def _get_version_key(self, user_id: str) -> str:
        return f"cart:{user_id}:version"

    def _hash_user_id(self, user_id: str) -> str:
        """Hash user ID for logging (no PII)"""
        return hashlib.sha256(user_id.encode()).hexdigest()[:8]

    def load(self, user_id: str) -> CartStore:
        """Read the stored cart; a missing cart loads as empty at version 0"""
        raw, version = self.redis.mget(self._get_cart_key(user_id), self._get_version_key(user_id))
        store = CartStore.from_document(json.loads(raw) if raw else None, int(version or 0))

        # Coupon terms may have changed since it was applied
        if store.coupon is not None:
            store.coupon = self.coupons.get(store.coupon.code)
        return store

    def save(self, user_id: str, store: CartStore) -> int:
        """
        Persist the cart if nobody else wrote it since it was loaded.

        Raises:
            CartConflictError: stored version differs from store.version
        """
        saved, version = self.scripts.save_versioned(
            doc_key=self._get_cart_key(user_id),
            version_key=self._get_version_key(user_id),
            expected_version=store.version,
            payload=json.dumps(store.to_document()),
            ttl=Config.CART_TTL_SECONDS
        )
        if not saved:
            logger.info(
                "Cart version conflict",
                extra={"hashed_user_id": self._hash_user_id(user_id), "expected": store.version, "current": version}
            )
            raise CartConflictError(store.version, version)

        store.version = version
        return version

    def _mutate(self, user_id: str, if_match: Optional[int], change: Callable[[CartStore], bool]) -> CartStore:
        store = self.load(user_id)
        if if_match is not None and if_match != store.version:
            raise CartConflictError(if_match, store.version)

        if change(store):
            self.save(user_id, store)
        return store

    def get_cart(self, user_id: str) -> CartStore:
        """Get cart contents, dropping lines whose product is gone or inactive"""
        store = self.load(user_id)

        stale = []
        for item in store.items:
            product = self.catalog.get(item.product_id)
            if product is None or not product.is_active:
                stale.append(item.product_id)

        if stale:
            for product_id in stale:
                store.remove(product_id)
            try:
                self.save(user_id, store)
            except CartConflictError:
                # A concurrent writer will have its own view pruned on its next read
                logger.info("Skipped pruning inactive products after concurrent update")

        return store

    def add_item(self, user_id: str, product_id: str, quantity: int = 1, if_match: Optional[int] = None) -> CartStore:
        """Add or merge a product, clamped to available stock"""
        product = self.catalog.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)

        def change(store: CartStore) -> bool:
            before = store.get(product_id)
            item = store.add(product, quantity)
            return before is None or before.quantity != item.quantity

        return self._mutate(user_id, if_match, change)

    def update_quantity(self, user_id: str, product_id: str, quantity: int, if_match: Optional[int] = None) -> CartStore:
        """Set a line's quantity; out-of-range values leave the stored cart untouched"""
        product = self.catalog.get(product_id)
        stock = product.stock if product and product.is_active else 0
        return self._mutate(user_id, if_match, lambda store: store.update(product_id, quantity, stock))

    def remove_item(self, user_id: str, product_id: str, if_match: Optional[int] = None) -> CartStore:
        return self._mutate(user_id, if_match, lambda store: store.remove(product_id))

    def clear_cart(self, user_id: str, if_match: Optional[int] = None) -> CartStore:
        def change(store: CartStore) -> bool:
            had_content = len(store) > 0 or store.coupon is not None
            store.clear()
            return had_content

        return self._mutate(user_id, if_match, change)

    def apply_coupon(self, user_id: str, code: str, if_match: Optional[int] = None) -> CartStore:
        coupon = self.coupons.get(code)

        def change(store: CartStore) -> bool:
            store.apply_coupon(coupon)
            return True

        store = self._mutate(user_id, if_match, change)
        logger.info(f"Coupon {coupon.code} applied", extra={"hashed_user_id": self._hash_user_id(user_id)})
        return store

    def remove_coupon(self, user_id: str, if_match: Optional[int] = None) -> CartStore:
        return self._mutate(user_id, if_match, lambda store: store.remove_coupon())

    def to_response(self, user_id: str, store: CartStore) -> CartResponse:
        return CartResponse(
            user_id=user_id,
            version=store.version,
            items=store.items,
            total_items=store.total_items,
            total_price=store.total_price,
            coupon=store.coupon,
            summary=store.summary()
        )

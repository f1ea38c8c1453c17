"""
Shared fixtures for tests: an isolated in-memory Redis and seed data.
"""
from decimal import Decimal

import fakeredis

from freshmart.models import AddressInput, Coupon, Product
from freshmart.redis_client import RedisClient


def make_redis() -> RedisClient:
    """RedisClient over a private fakeredis server (Lua enabled)"""
    server = fakeredis.FakeServer()
    return RedisClient(client=fakeredis.FakeRedis(server=server, decode_responses=True))


def product(product_id="apple", price="50", stock=10, is_active=True, name=None) -> Product:
    return Product(
        product_id=product_id,
        name=name or product_id.title(),
        price=Decimal(price),
        stock=stock,
        is_active=is_active
    )


def percent_coupon(code="SAVE10", value="10", max_discount="80", min_order_value="0", **extra) -> Coupon:
    return Coupon(
        code=code,
        discount_type="percentage",
        discount_value=Decimal(value),
        max_discount=Decimal(max_discount) if max_discount is not None else None,
        min_order_value=Decimal(min_order_value),
        **extra
    )


def flat_coupon(code="FLAT50", value="50", min_order_value="0", **extra) -> Coupon:
    return Coupon(
        code=code,
        discount_type="flat",
        discount_value=Decimal(value),
        min_order_value=Decimal(min_order_value),
        **extra
    )


def address_form(**overrides) -> AddressInput:
    data = {
        "name": "Asha Rao",
        "street": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pin_code": "560001",
        "phone": "9876543210",
    }
    data.update(overrides)
    return AddressInput(**data)

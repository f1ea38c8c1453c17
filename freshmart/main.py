"""
FastAPI application for the FreshMart cart, checkout and order tracking service.
"""
import logging
import time
from decimal import Decimal
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from freshmart import coupons as coupon_rules
from freshmart.cart import CartStore
from freshmart.cart_service import CartService
from freshmart.checkout import CheckoutView
from freshmart.checkout_service import CheckoutService
from freshmart.config import Config
from freshmart.delivery import DeliveryPartner, DeliveryPartnerProfile, DeliveryPartnerRegistry
from freshmart.exceptions import (
    BusinessRuleError,
    CartConflictError,
    CouponRejectedError,
    NotFoundError,
    OrderNotFoundError,
    OrderServiceError,
    StoreUnavailableError,
    ValidationError
)
from freshmart.middleware import RequestLoggingMiddleware
from freshmart.models import (
    Address,
    AddressInput,
    AddressSelection,
    CancelOrderRequest,
    CartItemRequest,
    CartResponse,
    Coupon,
    CouponRequest,
    LocationUpdate,
    Order,
    OrderConfirmation,
    OrderStatus,
    OrderSubmission,
    PaymentSelection,
    Product,
    QuantityUpdateRequest,
    RatingRequest,
    StatusUpdateRequest,
    WalletUpdate
)
from freshmart.order_client import HttpOrderClient
from freshmart.orders import LocalOrderBook
from freshmart.redis_client import RedisClient, get_redis_client
from freshmart.repositories import AddressBook, CouponBook, ProductCatalog, WalletBalances
from freshmart.tracking import TrackingView

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Services wired to one Redis client and one order client"""

    def __init__(self, redis: RedisClient, order_client=None):
        self.redis = redis
        self.catalog = ProductCatalog(redis)
        self.coupons = CouponBook(redis)
        self.addresses = AddressBook(redis)
        self.wallets = WalletBalances(redis)
        self.partners = DeliveryPartnerRegistry(redis)
        self.cart = CartService(redis, self.catalog, self.coupons)
        self.order_book = LocalOrderBook(redis, self.catalog, self.coupons, self.wallets, self.partners)

        if order_client is None:
            if Config.ORDER_SERVICE_URL:
                order_client = HttpOrderClient(
                    Config.ORDER_SERVICE_URL,
                    token=Config.ORDER_SERVICE_TOKEN,
                    timeout=Config.ORDER_SERVICE_TIMEOUT
                )
            else:
                order_client = self.order_book
        self.order_client = order_client
        self.checkout = CheckoutService(redis, self.cart, order_client, self.addresses, self.wallets)

    @property
    def orders_are_local(self) -> bool:
        return self.order_client is self.order_book


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def require_user(user_id: Optional[str] = Header(None, alias="X-User-ID", description="User identifier")) -> str:
    if not user_id or not user_id.strip():
        raise ValidationError("X-User-ID header is required")
    return user_id.strip()


def parse_if_match(if_match: Optional[str] = Header(None, alias="If-Match")) -> Optional[int]:
    """Cart version from an If-Match header; accepts quoted and weak tags"""
    if if_match is None or if_match.strip() in ("", "*"):
        return None
    tag = if_match.strip()
    if tag.startswith("W/"):
        tag = tag[2:]
    tag = tag.strip('"')
    try:
        return int(tag)
    except ValueError:
        raise ValidationError(f"Invalid If-Match header: {if_match}")


def local_orders(services: ServiceContainer = Depends(get_services)) -> LocalOrderBook:
    if not services.orders_are_local:
        raise HTTPException(status_code=501, detail="Order administration is handled by the order service")
    return services.order_book


def cart_response(services: ServiceContainer, user_id: str, store: CartStore, response: Response) -> CartResponse:
    response.headers["ETag"] = f'"{store.version}"'
    return services.cart.to_response(user_id, store)


def owned_order(services: ServiceContainer, user_id: str, order_id: str) -> Order:
    """Fetch an order, hiding orders of other users as not found"""
    order = services.order_client.get_order(order_id)
    if order.user_id != user_id:
        raise OrderNotFoundError(order_id)
    return order


def error_body(error: str, message: str) -> dict:
    return {"error": error, "message": message}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request, exc):
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{field}: {first.get('msg')}" if field else first.get("msg")
        else:
            message = "Invalid request"
        return JSONResponse(status_code=400, content=error_body("Validation error", message))

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request, exc):
        return JSONResponse(status_code=400, content=error_body("Validation error", exc.message))

    @app.exception_handler(CouponRejectedError)
    async def coupon_rejected_handler(request, exc):
        status_code = 404 if exc.reason == CouponRejectedError.INVALID_CODE else 400
        content = error_body("Coupon rejected", exc.message)
        content["reason"] = exc.reason
        return JSONResponse(status_code=status_code, content=content)

    @app.exception_handler(BusinessRuleError)
    async def business_rule_handler(request, exc):
        return JSONResponse(status_code=400, content=error_body("Request not allowed", exc.message))

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request, exc):
        return JSONResponse(status_code=404, content=error_body("Not found", exc.message))

    @app.exception_handler(CartConflictError)
    async def conflict_handler(request, exc):
        content = error_body("Conflict", exc.message)
        content["current_version"] = exc.current
        return JSONResponse(status_code=409, content=content)

    @app.exception_handler(OrderServiceError)
    async def order_service_handler(request, exc):
        return JSONResponse(status_code=502, content=error_body("Order service unavailable", exc.message))

    @app.exception_handler(StoreUnavailableError)
    async def redis_error_handler(request, exc):
        logger.error(f"Redis unavailable: {exc}")
        return JSONResponse(
            status_code=503,
            content=error_body("Service unavailable", "Redis connection failed")
        )

    # Generic exception handler for unhandled errors
    @app.exception_handler(Exception)
    async def generic_exception_handler(request, exc):
        logger.error(f"Unhandled exception: {type(exc).__name__}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content=error_body("Internal server error", "Something went wrong. Please try again.")
        )


def create_app(redis_client: Optional[RedisClient] = None, order_client=None) -> FastAPI:
    """
    Build the application.

    Args:
        redis_client: Redis wrapper to use; the shared client from Config when omitted
        order_client: Order service client; chosen from Config when omitted
    """
    app = FastAPI(
        title="FreshMart API",
        description="Cart, pricing, checkout and order tracking service backed by Redis",
        version="1.0.0"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["ETag", "X-Request-ID", "X-Response-Time-Ms"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.state.services = ServiceContainer(redis_client or get_redis_client(), order_client)
    register_exception_handlers(app)

    # Health check endpoint for ALB
    @app.get("/health")
    def health_check(services: ServiceContainer = Depends(get_services)):
        """Always 200 while the process is up; reports Redis reachability"""
        ping_start = time.time()
        redis_ok = services.redis.ping()
        return {
            "status": "healthy",
            "service": Config.PROJECT_NAME,
            "redis": {
                "status": "healthy" if redis_ok else "unhealthy",
                "latency_ms": round((time.time() - ping_start) * 1000, 2) if redis_ok else None
            },
            "order_service": "local" if services.orders_are_local else "remote",
            "timestamp": time.time()
        }

    # Cart endpoints
    @app.get("/cart", response_model=CartResponse)
    def get_cart(
        response: Response,
        user_id: str = Depends(require_user),
        services: ServiceContainer = Depends(get_services)
    ):
        """Cart with derived totals; the ETag header carries the cart version"""
        store = services.cart.get_cart(user_id)
        return cart_response(services, user_id, store, response)

    @app.post("/cart/items", response_model=CartResponse)
    def add_cart_item(
        request: CartItemRequest,
        response: Response,
        user_id: str = Depends(require_user),
        if_match: Optional[int] = Depends(parse_if_match),
        services: ServiceContainer = Depends(get_services)
    ):
        store = services.cart.add_item(user_id, request.product_id, request.quantity, if_match)
        return cart_response(services, user_id, store, response)

    @app.put("/cart/items/{product_id}", response_model=CartResponse)
    def update_cart_item(
        product_id: str,
        request: QuantityUpdateRequest,
        response: Response,
        user_id: str = Depends(require_user),
        if_match: Optional[int] = Depends(parse_if_match),
        services: ServiceContainer = Depends(get_services)
    ):
        store = services.cart.update_quantity(user_id, product_id, request.quantity, if_match)
        return cart_response(services, user_id, store, response)

    @app.delete("/cart/items/{product_id}", response_model=CartResponse)
    def remove_cart_item(
        product_id: str,
        response: Response,
        user_id: str = Depends(require_user),
        if_match: Optional[int] = Depends(parse_if_match),
        services: ServiceContainer = Depends(get_services)
    ):
        store = services.cart.remove_item(user_id, product_id, if_match)
        return cart_response(services, user_id, store, response)

    @app.delete("/cart", response_model=CartResponse)
    def clear_cart(
        response: Response,
        user_id: str = Depends(require_user),
        if_match: Optional[int] = Depends(parse_if_match),
        services: ServiceContainer = Depends(get_services)
    ):
        store = services.cart.clear_cart(user_id, if_match)
        return cart_response(services, user_id, store, response)

    @app.post("/cart/coupon", response_model=CartResponse)
    def apply_coupon(
        request: CouponRequest,
        response: Response,
        user_id: str = Depends(require_user),
        if_match: Optional[int] = Depends(parse_if_match),
        services: ServiceContainer = Depends(get_services)
    ):
        store = services.cart.apply_coupon(user_id, request.code, if_match)
        return cart_response(services, user_id, store, response)

    @app.delete("/cart/coupon", response_model=CartResponse)
    def remove_coupon(
        response: Response,
        user_id: str = Depends(require_user),
        if_match: Optional[int] = Depends(parse_if_match),
        services: ServiceContainer = Depends(get_services)
    ):
        store = services.cart.remove_coupon(user_id, if_match)
        return cart_response(services, user_id, store, response)

    # Coupons
    @app.get("/coupons/{code}/validate")
    def validate_coupon(
        code: str,
        cart_total: Decimal = Query(..., ge=0, description="Cart subtotal to validate against"),
        services: ServiceContainer = Depends(get_services)
    ):
        coupon = services.coupons.get(code)
        discount = coupon_rules.evaluate(coupon, cart_total)
        return {
            "valid": True,
            "coupon": coupon,
            "discount": discount,
            "final_amount": cart_total - discount
        }

    @app.put("/coupons/{code}", response_model=Coupon)
    def save_coupon(code: str, coupon: Coupon, services: ServiceContainer = Depends(get_services)):
        if coupon.code != code.strip().upper():
            raise ValidationError("Coupon code in path and body must match")
        return services.coupons.save(coupon)

    # Products
    @app.put("/products/{product_id}", response_model=Product)
    def save_product(product_id: str, product: Product, services: ServiceContainer = Depends(get_services)):
        if product.product_id != product_id:
            raise ValidationError("Product id in path and body must match")
        return services.catalog.save(product)

    @app.get("/products/{product_id}", response_model=Product)
    def get_product(product_id: str, services: ServiceContainer = Depends(get_services)):
        return services.catalog.require(product_id)

    # Addresses
    @app.get("/addresses", response_model=List[Address])
    def list_addresses(user_id: str = Depends(require_user), services: ServiceContainer = Depends(get_services)):
        return services.addresses.list(user_id)

    @app.post("/addresses", response_model=Address, status_code=201)
    def add_address(
        form: AddressInput,
        user_id: str = Depends(require_user),
        services: ServiceContainer = Depends(get_services)
    ):
        return services.addresses.add(user_id, form)

    @app.put("/addresses/{address_id}/default", response_model=Address)
    def set_default_address(
        address_id: str,
        user_id: str = Depends(require_user),
        services: ServiceContainer = Depends(get_services)
    ):
        return services.addresses.set_default(user_id, address_id)

    @app.delete("/addresses/{address_id}", status_code=204)
    def delete_address(
        address_id: str,
        user_id: str = Depends(require_user),
        services: ServiceContainer = Depends(get_services)
    ):
        services.addresses.remove(user_id, address_id)
        return Response(status_code=204)

    # Wallet
    @app.get("/wallet")
    def get_wallet(user_id: str = Depends(require_user), services: ServiceContainer = Depends(get_services)):
        return {"balance": services.wallets.get_balance(user_id)}

    @app.put("/wallet")
    def set_wallet(
        request: WalletUpdate,
        user_id: str = Depends(require_user),
        services: ServiceContainer = Depends(get_services)
    ):
        return {"balance": services.wallets.set_balance(user_id, request.balance)}

    # Checkout
    @app.post("/checkout", response_model=CheckoutView)
    def start_checkout(user_id: str = Depends(require_user), services: ServiceContainer = Depends(get_services)):
        return services.checkout.start(user_id)

    @app.get("/checkout", response_model=CheckoutView)
    def get_checkout(user_id: str = Depends(require_user), services: ServiceContainer = Depends(get_services)):
        return services.checkout.view(user_id)

    @app.put("/checkout/address", response_model=CheckoutView)
    def set_checkout_address(
        request: AddressSelection,
        user_id: str = Depends(require_user),
        services: ServiceContainer = Depends(get_services)
    ):
        return services.checkout.set_address(user_id, request.address_id, request.address)

    @app.put("/checkout/payment", response_model=CheckoutView)
    def set_checkout_payment(
        request: PaymentSelection,
        user_id: str = Depends(require_user),
        services: ServiceContainer = Depends(get_services)
    ):
        return services.checkout.set_payment(user_id, request.payment_method, request.use_wallet)

    @app.post("/checkout/back", response_model=CheckoutView)
    def checkout_back(user_id: str = Depends(require_user), services: ServiceContainer = Depends(get_services)):
        return services.checkout.back(user_id)

    @app.post("/checkout/submit", response_model=OrderConfirmation, status_code=201)
    def submit_checkout(user_id: str = Depends(require_user), services: ServiceContainer = Depends(get_services)):
        return services.checkout.submit(user_id)

    @app.delete("/checkout", status_code=204)
    def abandon_checkout(user_id: str = Depends(require_user), services: ServiceContainer = Depends(get_services)):
        services.checkout.abandon(user_id)
        return Response(status_code=204)

    # Orders
    @app.post("/orders", response_model=OrderConfirmation, status_code=201)
    def create_order(
        submission: OrderSubmission,
        user_id: str = Depends(require_user),
        orders: LocalOrderBook = Depends(local_orders)
    ):
        if submission.user_id != user_id:
            raise ValidationError("Order user does not match X-User-ID")
        return orders.create_order(submission)

    @app.get("/orders", response_model=List[Order])
    def list_orders(
        status: Optional[OrderStatus] = Query(None),
        user_id: str = Depends(require_user),
        services: ServiceContainer = Depends(get_services)
    ):
        orders = services.order_client.list_orders(user_id)
        return [order for order in orders if status is None or order.status == status]

    @app.get("/orders/{order_id}", response_model=Order)
    def get_order(
        order_id: str,
        user_id: str = Depends(require_user),
        services: ServiceContainer = Depends(get_services)
    ):
        return owned_order(services, user_id, order_id)

    @app.get("/orders/{order_id}/tracking", response_model=TrackingView)
    def get_tracking(
        order_id: str,
        user_id: str = Depends(require_user),
        services: ServiceContainer = Depends(get_services)
    ):
        owned_order(services, user_id, order_id)
        return services.order_client.get_tracking(order_id)

    @app.post("/orders/{order_id}/cancel", response_model=Order)
    def cancel_order(
        order_id: str,
        request: CancelOrderRequest,
        user_id: str = Depends(require_user),
        services: ServiceContainer = Depends(get_services),
        orders: LocalOrderBook = Depends(local_orders)
    ):
        owned_order(services, user_id, order_id)
        return orders.cancel_order(order_id, request.reason)

    @app.patch("/orders/{order_id}/status", response_model=Order)
    def update_order_status(
        order_id: str,
        request: StatusUpdateRequest,
        orders: LocalOrderBook = Depends(local_orders)
    ):
        return orders.update_status(order_id, request.status)

    @app.post("/orders/{order_id}/assign/{partner_id}", response_model=Order)
    def assign_delivery_partner(
        order_id: str,
        partner_id: str,
        orders: LocalOrderBook = Depends(local_orders)
    ):
        return orders.assign_partner(order_id, partner_id)

    # Delivery partners
    @app.put("/delivery-partners/{partner_id}", response_model=DeliveryPartner)
    def register_partner(
        partner_id: str,
        profile: DeliveryPartnerProfile,
        services: ServiceContainer = Depends(get_services)
    ):
        return services.partners.register(partner_id, profile)

    @app.get("/delivery-partners/{partner_id}", response_model=DeliveryPartner)
    def get_partner(partner_id: str, services: ServiceContainer = Depends(get_services)):
        return services.partners.get(partner_id)

    @app.put("/delivery-partners/{partner_id}/location", response_model=DeliveryPartner)
    def update_partner_location(
        partner_id: str,
        request: LocationUpdate,
        services: ServiceContainer = Depends(get_services)
    ):
        partner = services.partners.get(partner_id)
        partner.update_location(request.lat, request.lng, request.address)
        return services.partners.save(partner)

    @app.post("/delivery-partners/{partner_id}/rating", response_model=DeliveryPartner)
    def rate_partner(
        partner_id: str,
        request: RatingRequest,
        services: ServiceContainer = Depends(get_services)
    ):
        partner = services.partners.get(partner_id)
        partner.update_rating(request.rating)
        return services.partners.save(partner)

    return app


def main():
    """Console entry point"""
    uvicorn.run(create_app(), host="0.0.0.0", port=Config.APP_PORT)


if __name__ == "__main__":
    main()

"""
Checkout service: persists a user's checkout session in Redis and drives the
orchestrator against the cart, saved addresses and wallet.
"""
import hashlib
import logging
from decimal import Decimal
from typing import Optional

from freshmart.cart_service import CartService
from freshmart.checkout import CheckoutOrchestrator, CheckoutState, CheckoutView
from freshmart.config import Config
from freshmart.exceptions import CheckoutNotFoundError, EmptyCartError, FreshMartError
from freshmart.models import Address, AddressInput, OrderConfirmation, PaymentMethod
from freshmart.repositories import AddressBook, WalletBalances

logger = logging.getLogger(__name__)


def _as_form(address: Address) -> AddressInput:
    return AddressInput(**address.model_dump(exclude={"address_id", "is_default"}))


class CheckoutService:
    """Service for checkout operations"""

    def __init__(
        self,
        redis,
        cart_service: CartService,
        order_client,
        addresses: Optional[AddressBook] = None,
        wallets: Optional[WalletBalances] = None
    ):
        self.redis = redis
        self.cart_service = cart_service
        self.order_client = order_client
        self.addresses = addresses or AddressBook(redis)
        self.wallets = wallets or WalletBalances(redis)

    def _get_checkout_key(self, user_id: str) -> str:
        return f"checkout:{user_id}"

    def _hash_user_id(self, user_id: str) -> str:
        """Hash user ID for logging (no PII)"""
        return hashlib.sha256(user_id.encode()).hexdigest()[:8]

    def _save(self, user_id: str, orchestrator: CheckoutOrchestrator) -> None:
        self.redis.set(
            self._get_checkout_key(user_id),
            orchestrator.state.model_dump_json(),
            ex=Config.CHECKOUT_TTL_SECONDS
        )

    def get(self, user_id: str) -> CheckoutOrchestrator:
        raw = self.redis.get(self._get_checkout_key(user_id))
        if raw is None:
            raise CheckoutNotFoundError()
        return CheckoutOrchestrator(CheckoutState.model_validate_json(raw))

    def start(self, user_id: str) -> CheckoutView:
        """
        Begin checkout for a non-empty cart.

        Any previous session is replaced. The default saved address is
        preselected but the user still confirms it to move on.
        """
        cart = self.cart_service.get_cart(user_id)
        if len(cart) == 0:
            raise EmptyCartError()

        orchestrator = CheckoutOrchestrator()
        default = self.addresses.default(user_id)
        if default is not None:
            orchestrator.select_address(_as_form(default), default.address_id)

        self._save(user_id, orchestrator)
        logger.info("Checkout started", extra={"hashed_user_id": self._hash_user_id(user_id)})
        return self.view(user_id, orchestrator)

    def set_address(
        self,
        user_id: str,
        address_id: Optional[str] = None,
        address: Optional[AddressInput] = None
    ) -> CheckoutView:
        """
        Confirm the delivery address and move to Payment.

        A saved address id wins over a form; with neither, the current
        selection (for example the preselected default) is confirmed.
        """
        orchestrator = self.get(user_id)
        if address_id is not None:
            saved = self.addresses.get(user_id, address_id)
            orchestrator.select_address(
                _as_form(saved),
                saved.address_id
            )
        elif address is not None:
            orchestrator.select_address(address)

        orchestrator.advance()
        self._save(user_id, orchestrator)
        return self.view(user_id, orchestrator)

    def set_payment(self, user_id: str, payment_method: Optional[PaymentMethod], use_wallet: bool = False) -> CheckoutView:
        orchestrator = self.get(user_id)
        balance = self.wallets.get_balance(user_id)
        orchestrator.select_payment(payment_method, use_wallet, balance)
        orchestrator.advance()
        self._save(user_id, orchestrator)
        return self.view(user_id, orchestrator)

    def back(self, user_id: str) -> CheckoutView:
        orchestrator = self.get(user_id)
        orchestrator.back()
        self._save(user_id, orchestrator)
        return self.view(user_id, orchestrator)

    def submit(self, user_id: str) -> OrderConfirmation:
        """
        Place the order.

        On success the cart and the session are cleared. On failure the
        user-visible error is kept on the session and the exception propagates.
        """
        orchestrator = self.get(user_id)
        cart = self.cart_service.get_cart(user_id)
        balance = self.wallets.get_balance(user_id)

        try:
            confirmation = orchestrator.submit(user_id, cart, self.order_client, balance)
        except FreshMartError:
            self._save(user_id, orchestrator)
            raise

        self.cart_service.clear_cart(user_id)
        self.redis.delete(self._get_checkout_key(user_id))
        logger.info(
            f"Order placed: {confirmation.order_id}",
            extra={"hashed_user_id": self._hash_user_id(user_id), "order_id": confirmation.order_id}
        )
        return confirmation

    def abandon(self, user_id: str) -> bool:
        return bool(self.redis.delete(self._get_checkout_key(user_id)))

    def view(self, user_id: str, orchestrator: Optional[CheckoutOrchestrator] = None) -> CheckoutView:
        orchestrator = orchestrator or self.get(user_id)
        cart = self.cart_service.get_cart(user_id)
        balance = self.wallets.get_balance(user_id) if orchestrator.state.use_wallet else Decimal("0")
        return orchestrator.view(cart.summary(orchestrator.state.use_wallet, balance))

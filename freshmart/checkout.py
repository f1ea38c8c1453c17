"""
Checkout flow: Address -> Payment -> Review -> submit.
"""
import logging
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from freshmart.cart import CartStore
from freshmart.exceptions import (
    CheckoutStepError,
    EmptyCartError,
    FreshMartError,
    TransportError,
    ValidationError
)
from freshmart.models import (
    AddressInput,
    OrderConfirmation,
    OrderItem,
    OrderSubmission,
    PaymentMethod,
    PriceSummary
)

logger = logging.getLogger(__name__)

SUBMIT_FAILED_MESSAGE = "Failed to place order. Please try again."


class CheckoutStep(str, Enum):
    ADDRESS = "address"
    PAYMENT = "payment"
    REVIEW = "review"


STEPS: List[CheckoutStep] = [CheckoutStep.ADDRESS, CheckoutStep.PAYMENT, CheckoutStep.REVIEW]


class CheckoutState(BaseModel):
    """Persisted checkout progress for one user"""
    step: CheckoutStep = CheckoutStep.ADDRESS
    address_id: Optional[str] = Field(None, description="Saved address the user picked")
    address: Optional[AddressInput] = Field(None, description="Address the order ships to")
    payment_method: Optional[PaymentMethod] = None
    use_wallet: bool = False
    error: Optional[str] = Field(None, description="Last user-visible error")


class CheckoutView(BaseModel):
    step: CheckoutStep
    steps: List[CheckoutStep] = Field(default_factory=lambda: list(STEPS))
    address_id: Optional[str] = None
    address: Optional[AddressInput] = None
    payment_method: Optional[PaymentMethod] = None
    use_wallet: bool = False
    error: Optional[str] = None
    summary: PriceSummary


class CheckoutOrchestrator:
    """
    Linear three-step checkout.

    Steps only move forward through advance(), which checks the gate of the
    current step: an address must be chosen before Payment, and a payment
    method before Review. back() returns to the previous step and keeps the
    selections made so far.
    """

    def __init__(self, state: Optional[CheckoutState] = None):
        self.state = state or CheckoutState()

    @property
    def step(self) -> CheckoutStep:
        return self.state.step

    def _require_step(self, step: CheckoutStep, action: str) -> None:
        if self.state.step != step:
            raise CheckoutStepError(f"Cannot {action} during the {self.state.step.value} step")

    def select_address(self, address: AddressInput, address_id: Optional[str] = None) -> None:
        """Pick a saved address (with its id) or a newly entered one"""
        self._require_step(CheckoutStep.ADDRESS, "change the address")
        self.state.address = address
        self.state.address_id = address_id

    def select_payment(
        self,
        method: Optional[PaymentMethod],
        use_wallet: bool = False,
        wallet_balance: Decimal = Decimal("0")
    ) -> None:
        self._require_step(CheckoutStep.PAYMENT, "change the payment method")
        if method == PaymentMethod.WALLET and wallet_balance <= 0:
            raise ValidationError("Wallet balance is empty")

        self.state.payment_method = method
        if method == PaymentMethod.WALLET:
            self.state.use_wallet = True
        else:
            self.state.use_wallet = use_wallet and wallet_balance > 0

    def advance(self) -> CheckoutStep:
        if self.state.step == CheckoutStep.ADDRESS:
            if self.state.address is None:
                raise CheckoutStepError("Select a saved address or fill in the delivery address")
            self.state.step = CheckoutStep.PAYMENT
        elif self.state.step == CheckoutStep.PAYMENT:
            if self.state.payment_method is None:
                raise CheckoutStepError("Select a payment method")
            self.state.step = CheckoutStep.REVIEW
        else:
            raise CheckoutStepError("Order is ready for review; submit it to continue")

        self.state.error = None
        return self.state.step

    def back(self) -> CheckoutStep:
        index = STEPS.index(self.state.step)
        if index == 0:
            raise CheckoutStepError("Already at the first step")
        self.state.step = STEPS[index - 1]
        self.state.error = None
        return self.state.step

    def build_submission(self, user_id: str, cart: CartStore, wallet_balance: Decimal = Decimal("0")) -> OrderSubmission:
        """Assemble the order payload from the cart and the selections"""
        self._require_step(CheckoutStep.REVIEW, "place the order")
        if len(cart) == 0:
            raise EmptyCartError()

        return OrderSubmission(
            user_id=user_id,
            items=[
                OrderItem(
                    product_id=item.product_id,
                    name=item.name,
                    quantity=item.quantity,
                    price=item.price_snapshot
                )
                for item in cart.items
            ],
            shipping_address=self.state.address,
            payment_method=self.state.payment_method,
            use_wallet=self.state.use_wallet,
            coupon_code=cart.coupon.code if cart.coupon else None,
            price_summary=cart.summary(self.state.use_wallet, wallet_balance)
        )

    def submit(self, user_id: str, cart: CartStore, order_client, wallet_balance: Decimal = Decimal("0")) -> OrderConfirmation:
        """
        Send the order to the order service.

        On failure the error is recorded on the state for display, the step
        stays at Review, and the exception is re-raised for the caller to map.
        """
        payload = self.build_submission(user_id, cart, wallet_balance)
        try:
            confirmation = order_client.submit_order(payload)
        except TransportError as e:
            self.state.error = SUBMIT_FAILED_MESSAGE
            logger.warning(f"Order submission failed: {e}")
            raise
        except FreshMartError as e:
            self.state.error = e.message
            logger.info(f"Order submission rejected: {e}")
            raise

        self.state.error = None
        return confirmation

    def view(self, summary: PriceSummary) -> CheckoutView:
        return CheckoutView(summary=summary, **self.state.model_dump())

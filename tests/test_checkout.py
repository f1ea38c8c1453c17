"""
Tests for the checkout orchestrator and the checkout session service
"""
import unittest
from decimal import Decimal
from unittest import mock

from freshmart.cart import CartStore
from freshmart.cart_service import CartService
from freshmart.checkout import SUBMIT_FAILED_MESSAGE, CheckoutOrchestrator, CheckoutStep
from freshmart.checkout_service import CheckoutService
from freshmart.exceptions import (
    CheckoutNotFoundError,
    CheckoutStepError,
    EmptyCartError,
    OrderRejectedError,
    OrderServiceError,
    ValidationError
)
from freshmart.models import OrderConfirmation, OrderStatus, PaymentMethod
from freshmart.repositories import AddressBook, CouponBook, ProductCatalog, WalletBalances

from support import address_form, flat_coupon, make_redis, product


def filled_cart() -> CartStore:
    cart = CartStore()
    cart.add(product("rice", price="225", stock=10), 2)
    return cart


class TestCheckoutOrchestrator(unittest.TestCase):

    def setUp(self):
        self.checkout = CheckoutOrchestrator()

    def to_review(self):
        self.checkout.select_address(address_form())
        self.checkout.advance()
        self.checkout.select_payment(PaymentMethod.UPI)
        self.checkout.advance()

    def test_starts_at_address(self):
        self.assertEqual(self.checkout.step, CheckoutStep.ADDRESS)

    def test_address_required_to_advance(self):
        with self.assertRaises(CheckoutStepError):
            self.checkout.advance()
        self.assertEqual(self.checkout.step, CheckoutStep.ADDRESS)

    def test_payment_required_to_advance(self):
        self.checkout.select_address(address_form())
        self.assertEqual(self.checkout.advance(), CheckoutStep.PAYMENT)
        with self.assertRaises(CheckoutStepError):
            self.checkout.advance()
        self.assertEqual(self.checkout.step, CheckoutStep.PAYMENT)

    def test_selections_only_in_their_step(self):
        with self.assertRaises(CheckoutStepError):
            self.checkout.select_payment(PaymentMethod.CARD)
        self.to_review()
        with self.assertRaises(CheckoutStepError):
            self.checkout.select_address(address_form())

    def test_back_keeps_selections(self):
        self.to_review()
        self.assertEqual(self.checkout.back(), CheckoutStep.PAYMENT)
        self.assertEqual(self.checkout.state.payment_method, PaymentMethod.UPI)
        self.checkout.back()
        with self.assertRaises(CheckoutStepError):
            self.checkout.back()

    def test_wallet_flag_needs_balance(self):
        self.checkout.select_address(address_form())
        self.checkout.advance()
        self.checkout.select_payment(PaymentMethod.CARD, use_wallet=True, wallet_balance=Decimal("0"))
        self.assertFalse(self.checkout.state.use_wallet)
        self.checkout.select_payment(PaymentMethod.CARD, use_wallet=True, wallet_balance=Decimal("20"))
        self.assertTrue(self.checkout.state.use_wallet)
        self.checkout.select_payment(PaymentMethod.WALLET, wallet_balance=Decimal("20"))
        self.assertTrue(self.checkout.state.use_wallet)

    def test_wallet_method_with_empty_balance(self):
        self.checkout.select_address(address_form())
        self.checkout.advance()
        with self.assertRaises(ValidationError):
            self.checkout.select_payment(PaymentMethod.WALLET, wallet_balance=Decimal("0"))
        self.assertIsNone(self.checkout.state.payment_method)

    def test_payment_step_checked_before_wallet_balance(self):
        with self.assertRaises(CheckoutStepError):
            self.checkout.select_payment(PaymentMethod.WALLET, wallet_balance=Decimal("0"))

    def test_build_submission(self):
        self.to_review()
        cart = filled_cart()
        cart.apply_coupon(flat_coupon(value="50"))
        payload = self.checkout.build_submission("user-1", cart)

        self.assertEqual(payload.user_id, "user-1")
        self.assertEqual(payload.payment_method, PaymentMethod.UPI)
        self.assertEqual(payload.coupon_code, "FLAT50")
        self.assertEqual(payload.items[0].quantity, 2)
        self.assertEqual(payload.items[0].price, Decimal("225"))
        self.assertEqual(payload.shipping_address.pin_code, "560001")
        self.assertEqual(payload.price_summary.grand_total, Decimal("463"))

    def test_submit_before_review(self):
        with self.assertRaises(CheckoutStepError):
            self.checkout.build_submission("user-1", filled_cart())

    def test_submit_empty_cart(self):
        self.to_review()
        with self.assertRaises(EmptyCartError):
            self.checkout.build_submission("user-1", CartStore())

    def test_submit_success(self):
        self.to_review()
        client = mock.Mock()
        client.submit_order.return_value = OrderConfirmation(order_id="ORD1", status=OrderStatus.PENDING)

        confirmation = self.checkout.submit("user-1", filled_cart(), client)

        self.assertEqual(confirmation.order_id, "ORD1")
        self.assertIsNone(self.checkout.state.error)
        client.submit_order.assert_called_once()

    def test_transport_failure_stays_on_review(self):
        self.to_review()
        client = mock.Mock()
        client.submit_order.side_effect = OrderServiceError("timeout")

        with self.assertRaises(OrderServiceError):
            self.checkout.submit("user-1", filled_cart(), client)

        self.assertEqual(self.checkout.step, CheckoutStep.REVIEW)
        self.assertEqual(self.checkout.state.error, SUBMIT_FAILED_MESSAGE)

    def test_rejection_message_surfaced(self):
        self.to_review()
        client = mock.Mock()
        client.submit_order.side_effect = OrderRejectedError("Address is outside delivery area")

        with self.assertRaises(OrderRejectedError):
            self.checkout.submit("user-1", filled_cart(), client)

        self.assertEqual(self.checkout.step, CheckoutStep.REVIEW)
        self.assertEqual(self.checkout.state.error, "Address is outside delivery area")


class TestCheckoutService(unittest.TestCase):

    def setUp(self):
        self.redis = make_redis()
        self.catalog = ProductCatalog(self.redis)
        self.catalog.save(product("rice", price="250", stock=20))
        self.cart_service = CartService(self.redis, self.catalog, CouponBook(self.redis))
        self.addresses = AddressBook(self.redis)
        self.wallets = WalletBalances(self.redis)
        self.order_client = mock.Mock()
        self.order_client.submit_order.return_value = OrderConfirmation(order_id="ORD42")
        self.service = CheckoutService(
            self.redis, self.cart_service, self.order_client, self.addresses, self.wallets
        )
        self.user_id = "user-7"

    def test_start_requires_items(self):
        with self.assertRaises(EmptyCartError):
            self.service.start(self.user_id)

    def test_no_session(self):
        with self.assertRaises(CheckoutNotFoundError):
            self.service.view(self.user_id)

    def test_default_address_preselected(self):
        self.addresses.add(self.user_id, address_form())
        saved = self.addresses.add(self.user_id, address_form(city="Mysuru"))
        self.addresses.set_default(self.user_id, saved.address_id)
        self.cart_service.add_item(self.user_id, "rice", 1)

        view = self.service.start(self.user_id)

        self.assertEqual(view.step, CheckoutStep.ADDRESS)
        self.assertEqual(view.address_id, saved.address_id)
        self.assertEqual(view.address.city, "Mysuru")
        self.assertEqual(self.service.set_address(self.user_id).step, CheckoutStep.PAYMENT)

    def test_full_flow_clears_cart_and_session(self):
        self.cart_service.add_item(self.user_id, "rice", 2)
        self.wallets.set_balance(self.user_id, Decimal("100"))
        self.service.start(self.user_id)
        self.service.set_address(self.user_id, address=address_form())
        view = self.service.set_payment(self.user_id, PaymentMethod.CARD, use_wallet=True)

        self.assertEqual(view.step, CheckoutStep.REVIEW)
        self.assertEqual(view.summary.wallet_used, Decimal("100"))
        self.assertEqual(view.summary.amount_payable, view.summary.grand_total - Decimal("100"))

        confirmation = self.service.submit(self.user_id)

        self.assertEqual(confirmation.order_id, "ORD42")
        payload = self.order_client.submit_order.call_args[0][0]
        self.assertTrue(payload.use_wallet)
        self.assertEqual(len(self.cart_service.get_cart(self.user_id)), 0)
        with self.assertRaises(CheckoutNotFoundError):
            self.service.get(self.user_id)

    def test_failed_submit_keeps_session_and_cart(self):
        self.order_client.submit_order.side_effect = OrderServiceError("connection refused")
        self.cart_service.add_item(self.user_id, "rice", 1)
        self.service.start(self.user_id)
        self.service.set_address(self.user_id, address=address_form())
        self.service.set_payment(self.user_id, PaymentMethod.COD)

        with self.assertRaises(OrderServiceError):
            self.service.submit(self.user_id)

        view = self.service.view(self.user_id)
        self.assertEqual(view.step, CheckoutStep.REVIEW)
        self.assertEqual(view.error, SUBMIT_FAILED_MESSAGE)
        self.assertEqual(len(self.cart_service.get_cart(self.user_id)), 1)

    def test_wallet_payment_during_address_step(self):
        self.cart_service.add_item(self.user_id, "rice", 1)
        self.service.start(self.user_id)
        with self.assertRaises(CheckoutStepError):
            self.service.set_payment(self.user_id, PaymentMethod.WALLET)
        self.assertEqual(self.service.view(self.user_id).step, CheckoutStep.ADDRESS)

    def test_back_and_abandon(self):
        self.cart_service.add_item(self.user_id, "rice", 1)
        self.service.start(self.user_id)
        self.service.set_address(self.user_id, address=address_form())
        self.assertEqual(self.service.back(self.user_id).step, CheckoutStep.ADDRESS)
        self.assertTrue(self.service.abandon(self.user_id))
        with self.assertRaises(CheckoutNotFoundError):
            self.service.get(self.user_id)


if __name__ == "__main__":
    unittest.main()

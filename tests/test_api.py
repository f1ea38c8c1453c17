"""
End-to-end tests for the HTTP API
"""
import unittest
from decimal import Decimal
from unittest import mock

from fastapi.testclient import TestClient

from freshmart.exceptions import OrderServiceError
from freshmart.main import create_app

from support import make_redis


def money(value) -> Decimal:
    return Decimal(str(value))


ADDRESS = {
    "name": "Asha Rao",
    "street": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pin_code": "560001",
    "phone": "9876543210",
}


class ApiTestCase(unittest.TestCase):

    order_client = None

    def setUp(self):
        self.app = create_app(redis_client=make_redis(), order_client=self.order_client)
        self.client = TestClient(self.app)
        self.headers = {"X-User-ID": "user-1"}

        self.client.put("/products/rice", json={"product_id": "rice", "name": "Rice 5kg", "price": "250", "stock": 10})
        self.client.put("/products/milk", json={"product_id": "milk", "name": "Milk", "price": "30", "stock": 3})
        self.client.put("/coupons/SAVE10", json={
            "code": "SAVE10", "discount_type": "percentage", "discount_value": "10", "max_discount": "80"
        })

    def add(self, product_id, quantity=1, **headers):
        return self.client.post(
            "/cart/items",
            json={"product_id": product_id, "quantity": quantity},
            headers={**self.headers, **headers}
        )


class TestCartApi(ApiTestCase):

    def test_user_header_required(self):
        response = self.client.get("/cart")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Validation error")

    def test_empty_cart(self):
        response = self.client.get("/cart", headers=self.headers)
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["items"], [])
        self.assertEqual(response.headers["ETag"], '"0"')

    def test_add_and_summary(self):
        response = self.add("rice", 4)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["ETag"], '"1"')
        body = response.json()
        self.assertEqual(body["total_items"], 4)
        self.assertEqual(money(body["summary"]["grand_total"]), Decimal("1050"))

    def test_coupon_scenario(self):
        self.add("rice", 4)
        response = self.client.post("/cart/coupon", json={"code": "save10"}, headers=self.headers)
        self.assertEqual(response.status_code, 200)
        summary = response.json()["summary"]
        self.assertEqual(money(summary["discount"]), Decimal("80"))
        self.assertEqual(money(summary["grand_total"]), Decimal("970"))

        response = self.client.delete("/cart/coupon", headers=self.headers)
        self.assertIsNone(response.json()["coupon"])

    def test_unknown_coupon(self):
        self.add("rice")
        response = self.client.post("/cart/coupon", json={"code": "BOGUS"}, headers=self.headers)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["reason"], "invalid code")

    def test_coupon_on_empty_cart(self):
        response = self.client.post("/cart/coupon", json={"code": "SAVE10"}, headers=self.headers)
        self.assertEqual(response.status_code, 400)

    def test_quantity_over_stock_reverts(self):
        self.add("milk", 3)
        response = self.client.put("/cart/items/milk", json={"quantity": 5}, headers=self.headers)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Only 3 items available in stock")

        cart = self.client.get("/cart", headers=self.headers).json()
        self.assertEqual(cart["items"][0]["quantity"], 3)

    def test_add_clamped_to_stock(self):
        response = self.add("milk", 7)
        self.assertEqual(response.json()["items"][0]["quantity"], 3)

    def test_if_match_conflict(self):
        self.add("rice")
        self.add("milk")
        response = self.add("rice", 1, **{"If-Match": '"1"'})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["current_version"], 2)

        response = self.add("rice", 1, **{"If-Match": 'W/"2"'})
        self.assertEqual(response.status_code, 200)

    def test_bad_if_match(self):
        response = self.add("rice", 1, **{"If-Match": "abc"})
        self.assertEqual(response.status_code, 400)

    def test_remove_and_clear(self):
        self.add("rice")
        self.add("milk")
        response = self.client.delete("/cart/items/milk", headers=self.headers)
        self.assertEqual([item["product_id"] for item in response.json()["items"]], ["rice"])

        response = self.client.delete("/cart", headers=self.headers)
        self.assertEqual(response.json()["items"], [])

    def test_unknown_product(self):
        response = self.add("caviar")
        self.assertEqual(response.status_code, 404)

    def test_validate_coupon(self):
        response = self.client.get("/coupons/SAVE10/validate", params={"cart_total": "1000"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(money(body["discount"]), Decimal("80"))
        self.assertEqual(money(body["final_amount"]), Decimal("920"))


class TestCheckoutApi(ApiTestCase):

    def checkout_to_review(self, payment="upi"):
        self.add("rice", 2)
        self.assertEqual(self.client.post("/checkout", headers=self.headers).status_code, 200)
        response = self.client.put("/checkout/address", json={"address": ADDRESS}, headers=self.headers)
        self.assertEqual(response.json()["step"], "payment")
        response = self.client.put("/checkout/payment", json={"payment_method": payment}, headers=self.headers)
        self.assertEqual(response.json()["step"], "review")

    def test_invalid_address_rejected(self):
        self.add("rice")
        self.client.post("/checkout", headers=self.headers)
        response = self.client.put(
            "/checkout/address",
            json={"address": {**ADDRESS, "pin_code": "5600"}},
            headers=self.headers
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.client.get("/checkout", headers=self.headers).json()["step"], "address")

    def test_payment_required(self):
        self.add("rice")
        self.client.post("/checkout", headers=self.headers)
        self.client.put("/checkout/address", json={"address": ADDRESS}, headers=self.headers)
        response = self.client.put("/checkout/payment", json={}, headers=self.headers)
        self.assertEqual(response.status_code, 400)

    def test_checkout_with_empty_cart(self):
        response = self.client.post("/checkout", headers=self.headers)
        self.assertEqual(response.status_code, 400)

    def test_place_order_and_track(self):
        self.checkout_to_review()
        response = self.client.post("/checkout/submit", headers=self.headers)
        self.assertEqual(response.status_code, 201)
        order_id = response.json()["order_id"]
        self.assertEqual(response.json()["status"], "pending")

        self.assertEqual(self.client.get("/cart", headers=self.headers).json()["items"], [])
        self.assertEqual(self.client.get("/products/rice").json()["stock"], 8)

        order = self.client.get(f"/orders/{order_id}", headers=self.headers).json()
        self.assertEqual(money(order["price_summary"]["grand_total"]), Decimal("565"))

        self.client.patch(f"/orders/{order_id}/status", json={"status": "confirmed"})
        tracking = self.client.get(f"/orders/{order_id}/tracking", headers=self.headers).json()
        self.assertEqual(tracking["status"], "confirmed")
        self.assertEqual([s["completed"] for s in tracking["timeline"]], [True, True, False, False, False])

        other_user = self.client.get(f"/orders/{order_id}", headers={"X-User-ID": "user-2"})
        self.assertEqual(other_user.status_code, 404)

    def test_price_change_after_review(self):
        self.checkout_to_review()
        self.client.put("/products/rice", json={"product_id": "rice", "name": "Rice 5kg", "price": "300", "stock": 10})

        response = self.client.post("/checkout/submit", headers=self.headers)
        self.assertEqual(response.status_code, 400)

        view = self.client.get("/checkout", headers=self.headers).json()
        self.assertEqual(view["step"], "review")
        self.assertIn("Order total changed", view["error"])
        self.assertEqual(self.client.get("/products/rice").json()["stock"], 10)
        self.assertEqual(self.client.get("/orders", headers=self.headers).json(), [])

    def test_invalid_status_transition(self):
        self.checkout_to_review()
        order_id = self.client.post("/checkout/submit", headers=self.headers).json()["order_id"]
        response = self.client.patch(f"/orders/{order_id}/status", json={"status": "delivered"})
        self.assertEqual(response.status_code, 400)

        response = self.client.patch(f"/orders/{order_id}/status", json={"status": "shipped"})
        self.assertEqual(response.status_code, 400)

    def test_cancel_order(self):
        self.checkout_to_review()
        order_id = self.client.post("/checkout/submit", headers=self.headers).json()["order_id"]
        response = self.client.post(f"/orders/{order_id}/cancel", json={"reason": "late"}, headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "cancelled")
        self.assertEqual(self.client.get("/products/rice").json()["stock"], 10)

        orders = self.client.get("/orders", params={"status": "cancelled"}, headers=self.headers).json()
        self.assertEqual([o["order_id"] for o in orders], [order_id])

    def test_partner_assignment_and_rating(self):
        self.checkout_to_review()
        order_id = self.client.post("/checkout/submit", headers=self.headers).json()["order_id"]

        response = self.client.put("/delivery-partners/dp-1", json={
            "name": "Ravi", "vehicle_type": "bike", "vehicle_number": "ka01ab1234",
            "license_number": "dl1", "is_online": True, "is_verified": True
        })
        self.assertEqual(response.json()["vehicle_number"], "KA01AB1234")
        self.client.put("/delivery-partners/dp-1/location", json={"lat": 12.97, "lng": 77.59})

        response = self.client.post(f"/orders/{order_id}/assign/dp-1")
        self.assertEqual(response.json()["delivery_partner_id"], "dp-1")

        tracking = self.client.get(f"/orders/{order_id}/tracking", headers=self.headers).json()
        self.assertEqual(tracking["delivery_partner"]["lat"], 12.97)

        response = self.client.post("/delivery-partners/dp-1/rating", json={"rating": 4})
        self.assertEqual(response.json()["rating"]["count"], 1)

    def test_back_and_abandon(self):
        self.checkout_to_review()
        self.assertEqual(self.client.post("/checkout/back", headers=self.headers).json()["step"], "payment")
        self.assertEqual(self.client.delete("/checkout", headers=self.headers).status_code, 204)
        self.assertEqual(self.client.get("/checkout", headers=self.headers).status_code, 404)


class TestRemoteOrderFailure(ApiTestCase):

    order_client = mock.Mock()

    def setUp(self):
        self.order_client.reset_mock()
        self.order_client.submit_order.side_effect = OrderServiceError("connection refused")
        super().setUp()

    def test_transport_failure_keeps_review(self):
        self.add("rice")
        self.client.post("/checkout", headers=self.headers)
        self.client.put("/checkout/address", json={"address": ADDRESS}, headers=self.headers)
        self.client.put("/checkout/payment", json={"payment_method": "cod"}, headers=self.headers)

        response = self.client.post("/checkout/submit", headers=self.headers)
        self.assertEqual(response.status_code, 502)

        view = self.client.get("/checkout", headers=self.headers).json()
        self.assertEqual(view["step"], "review")
        self.assertEqual(view["error"], "Failed to place order. Please try again.")
        self.assertEqual(len(self.client.get("/cart", headers=self.headers).json()["items"]), 1)

    def test_admin_routes_unavailable(self):
        response = self.client.patch("/orders/ORD1/status", json={"status": "confirmed"})
        self.assertEqual(response.status_code, 501)


class TestAccountApi(ApiTestCase):

    def test_addresses(self):
        first = self.client.post("/addresses", json=ADDRESS, headers=self.headers).json()
        second = self.client.post("/addresses", json={**ADDRESS, "city": "Mysuru"}, headers=self.headers).json()
        self.assertTrue(first["is_default"])
        self.assertFalse(second["is_default"])

        self.client.put(f"/addresses/{second['address_id']}/default", headers=self.headers)
        addresses = self.client.get("/addresses", headers=self.headers).json()
        self.assertEqual([a["is_default"] for a in addresses], [True, False])
        self.assertEqual(addresses[0]["city"], "Mysuru")

        self.client.delete(f"/addresses/{second['address_id']}", headers=self.headers)
        addresses = self.client.get("/addresses", headers=self.headers).json()
        self.assertEqual(len(addresses), 1)
        self.assertTrue(addresses[0]["is_default"])

    def test_bad_phone(self):
        response = self.client.post("/addresses", json={**ADDRESS, "phone": "12345"}, headers=self.headers)
        self.assertEqual(response.status_code, 400)

    def test_wallet(self):
        self.client.put("/wallet", json={"balance": "150"}, headers=self.headers)
        body = self.client.get("/wallet", headers=self.headers).json()
        self.assertEqual(money(body["balance"]), Decimal("150"))

    def test_health(self):
        body = self.client.get("/health").json()
        self.assertEqual(body["redis"]["status"], "healthy")
        self.assertEqual(body["order_service"], "local")

    def test_request_headers(self):
        response = self.client.get("/cart", headers={**self.headers, "X-Request-ID": "req-123"})
        self.assertEqual(response.headers["X-Request-ID"], "req-123")
        self.assertIn("X-Response-Time-Ms", response.headers)
        generated = self.client.get("/cart", headers=self.headers).headers["X-Request-ID"]
        self.assertEqual(len(generated), 32)


if __name__ == "__main__":
    unittest.main()

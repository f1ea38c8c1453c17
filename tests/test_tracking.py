"""
Tests for the order tracking timeline
"""
import unittest
from datetime import datetime, timezone
from decimal import Decimal

from freshmart import pricing
from freshmart.delivery import DeliveryPartner
from freshmart.models import Order, OrderItem, OrderStatus, PaymentMethod
from freshmart.tracking import TIMELINE, build_timeline, build_tracking, stage_index

from support import address_form


def make_order(status=OrderStatus.PENDING, partner_id=None) -> Order:
    return Order(
        order_id="ORD1",
        user_id="user-1",
        items=[OrderItem(product_id="rice", quantity=1, price=Decimal("250"))],
        shipping_address=address_form(),
        payment_method=PaymentMethod.UPI,
        status=status,
        price_summary=pricing.summarize(Decimal("250")),
        delivery_partner_id=partner_id,
        created_at=datetime(2026, 5, 1, tzinfo=timezone.utc)
    )


class TestTimeline(unittest.TestCase):

    def test_five_stages_in_order(self):
        self.assertEqual([status for status, _ in TIMELINE], [
            OrderStatus.PENDING,
            OrderStatus.CONFIRMED,
            OrderStatus.PREPARING,
            OrderStatus.OUT_FOR_DELIVERY,
            OrderStatus.DELIVERED,
        ])

    def test_stages_up_to_current_complete(self):
        timeline = build_timeline(OrderStatus.PREPARING)
        self.assertEqual([stage.completed for stage in timeline], [True, True, True, False, False])
        self.assertEqual([stage.current for stage in timeline], [False, False, True, False, False])

    def test_first_and_last(self):
        self.assertEqual(sum(stage.completed for stage in build_timeline(OrderStatus.PENDING)), 1)
        self.assertTrue(all(stage.completed for stage in build_timeline(OrderStatus.DELIVERED)))

    def test_cancelled_is_off_timeline(self):
        self.assertIsNone(stage_index(OrderStatus.CANCELLED))
        timeline = build_timeline(OrderStatus.CANCELLED)
        self.assertFalse(any(stage.completed or stage.current for stage in timeline))

    def test_accepts_status_string(self):
        timeline = build_timeline("out-for-delivery")
        self.assertTrue(timeline[3].current)


class TestTrackingView(unittest.TestCase):

    def test_without_partner(self):
        view = build_tracking(make_order(OrderStatus.CONFIRMED))
        self.assertEqual(view.status_label, "Confirmed")
        self.assertFalse(view.cancelled)
        self.assertIsNone(view.delivery_partner)

    def test_cancelled(self):
        view = build_tracking(make_order(OrderStatus.CANCELLED))
        self.assertTrue(view.cancelled)
        self.assertEqual(view.status_label, "Cancelled")

    def test_partner_snapshot(self):
        partner = DeliveryPartner(
            partner_id="dp-1", name="Ravi", vehicle_type="bike",
            vehicle_number="ka01", license_number="dl1"
        )
        partner.update_location(12.97, 77.59, "MG Road")
        view = build_tracking(make_order(OrderStatus.OUT_FOR_DELIVERY, "dp-1"), partner)
        self.assertEqual(view.delivery_partner.name, "Ravi")
        self.assertEqual(view.delivery_partner.lat, 12.97)
        self.assertEqual(view.delivery_partner.vehicle_type, "bike")


if __name__ == "__main__":
    unittest.main()

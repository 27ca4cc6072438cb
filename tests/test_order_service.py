"""
Tests for order creation, payment verification and tracking
"""
import unittest
import tempfile
import os
import re
import sqlite3
from datetime import datetime, timedelta
from unittest.mock import patch

from core.errors import (
    EmptyCart, GatewayRejected, GatewayUnavailable, InvalidTransition, NotFoundError, ValidationError
)
from models.meal import Meal
from models.order import OrderStatus, TrackingStage
from tests.support import (
    FakeClock, FakeGateway, RecordingNotifier, delivery_details, make_platform, seed_meals
)

TRACKING_NUMBER = re.compile(r"^FM-[0-9A-Z]+-[0-9A-Z]{5}$")


class OrderServiceTestCase(unittest.TestCase):

    def setUp(self):
        """Set up test database"""
        self.test_db = tempfile.NamedTemporaryFile(delete=False, suffix='.db')
        self.test_db.close()
        self.clock = FakeClock()
        self.gateway = FakeGateway()
        self.notifier = RecordingNotifier()
        self.platform = make_platform(self.test_db.name, self.gateway, self.notifier, self.clock)
        seed_meals(self.platform.meal_repo)
        self.carts = self.platform.cart_service
        self.orders = self.platform.order_service
        self.order_repo = self.platform.order_repo
        self.customer_id = "cust-1"

    def tearDown(self):
        """Clean up test database"""
        os.unlink(self.test_db.name)

    def checkout(self, *meals, customer_id=None, idempotency_key=None):
        customer_id = customer_id or self.customer_id
        for meal_id, quantity in meals:
            self.carts.add_to_cart(customer_id, meal_id, quantity=quantity)
        result = self.orders.create_from_cart(customer_id, delivery_details(),
                                              client_ip="10.0.0.1", idempotency_key=idempotency_key)
        self.clock.advance(minutes=1)
        return result

    def paid_order(self, *meals):
        result = self.checkout(*meals)
        order = self.order_repo.get_order_by_id(result["order"]["orderId"])
        self.orders.verify_payment(order.transaction.id)
        return self.order_repo.get_order_by_id(order.order_id)


class TestCreateFromCart(OrderServiceTestCase):

    def test_checkout_returns_payment_url_and_summary(self):
        result = self.checkout(("meal-biryani", 2))

        self.assertTrue(result["success"])
        self.assertEqual(result["checkoutUrl"], "https://pay.example.test/SP0001")
        self.assertRegex(result["order"]["trackingNumber"], TRACKING_NUMBER)
        # 400 + 20 + 100
        self.assertEqual(result["order"]["totalPrice"], 520)
        self.assertEqual(result["order"]["status"], "Pending")

    def test_order_is_persisted_with_snapshot(self):
        result = self.checkout(("meal-biryani", 2), ("meal-salad", 1))
        order = self.order_repo.get_order_by_id(result["order"]["orderId"])

        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.tracking_stage, TrackingStage.PLACED)
        self.assertEqual([u.stage for u in order.tracking_updates], ["placed"])
        self.assertEqual([item.meal_id for item in order.items], ["meal-biryani", "meal-salad"])
        self.assertEqual(order.items[0].line_total, 400)
        self.assertEqual(order.pricing.subtotal, 520)
        self.assertEqual(order.transaction.id, "SP0001")
        self.assertEqual(order.checkout_url, "https://pay.example.test/SP0001")
        self.assertEqual(order.delivery.city, "Dhaka")

    def test_gateway_receives_order_total(self):
        result = self.checkout(("meal-curry", 1))
        request = self.gateway.requests[0]

        self.assertEqual(request.order_id, result["order"]["orderId"])
        self.assertEqual(request.amount, result["order"]["totalPrice"])
        self.assertEqual(request.currency, "BDT")
        self.assertEqual(request.client_ip, "10.0.0.1")
        self.assertEqual(request.customer_post_code, "1205")

    def test_cart_is_cleared(self):
        self.checkout(("meal-biryani", 1))

        self.assertIsNone(self.platform.cart_repo.get_cart(self.customer_id))

    def test_empty_cart(self):
        with self.assertRaises(EmptyCart):
            self.orders.create_from_cart(self.customer_id, delivery_details())
        self.assertEqual(self.gateway.requests, [])
        self.assertEqual(self.order_repo.list_orders(), [])

    def test_catalog_price_is_used_at_order_time(self):
        self.carts.add_to_cart(self.customer_id, "meal-biryani", quantity=1)
        self.platform.meal_repo.save_meal(Meal("meal-biryani", "Kacchi Biryani", "prov-1", "Dhaka Kitchen", 220))

        result = self.orders.create_from_cart(self.customer_id, delivery_details())
        order = self.order_repo.get_order_by_id(result["order"]["orderId"])

        self.assertEqual(order.items[0].unit_price, 220)

    def test_meal_withdrawn_after_adding_keeps_cart(self):
        self.carts.add_to_cart(self.customer_id, "meal-salad", quantity=1)
        self.platform.meal_repo.save_meal(
            Meal("meal-salad", "Garden Salad", "prov-2", "Green Bowl", 120, is_available=False))

        with self.assertRaises(ValidationError):
            self.orders.create_from_cart(self.customer_id, delivery_details())
        self.assertIsNotNone(self.platform.cart_repo.get_cart(self.customer_id))
        self.assertEqual(self.order_repo.list_orders(), [])

    def test_gateway_failure_leaves_pending_order(self):
        self.gateway.initiate_error = GatewayUnavailable("Payment gateway timed out")
        self.carts.add_to_cart(self.customer_id, "meal-biryani", quantity=1)

        with self.assertRaises(GatewayUnavailable) as ctx:
            self.orders.create_from_cart(self.customer_id, delivery_details())

        order = self.order_repo.get_order_by_id(ctx.exception.order_id)
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertIsNone(order.checkout_url)
        self.assertIsNone(self.platform.cart_repo.get_cart(self.customer_id))

    def test_retry_payment_after_gateway_failure(self):
        self.gateway.initiate_error = GatewayRejected("Gateway authentication failed")
        self.carts.add_to_cart(self.customer_id, "meal-biryani", quantity=1)
        with self.assertRaises(GatewayRejected) as ctx:
            self.orders.create_from_cart(self.customer_id, delivery_details())

        self.gateway.initiate_error = None
        result = self.orders.retry_payment(ctx.exception.order_id)

        self.assertEqual(result["order"]["orderId"], ctx.exception.order_id)
        self.assertEqual(self.order_repo.get_order_by_id(ctx.exception.order_id).transaction.id, "SP0001")

    def test_retry_payment_on_paid_order(self):
        order = self.paid_order(("meal-biryani", 1))

        with self.assertRaises(InvalidTransition):
            self.orders.retry_payment(order.order_id)

    def test_same_idempotency_key_returns_same_order(self):
        first = self.checkout(("meal-biryani", 1), idempotency_key="key-1")
        second = self.orders.create_from_cart(self.customer_id, delivery_details(),
                                              idempotency_key="key-1")

        self.assertEqual(first["order"]["orderId"], second["order"]["orderId"])
        self.assertTrue(second["replayed"])
        self.assertEqual(len(self.gateway.requests), 1)
        self.assertEqual(len(self.order_repo.list_orders()), 1)

    def test_idempotency_keys_are_per_customer(self):
        self.checkout(("meal-biryani", 1), idempotency_key="key-1")
        self.checkout(("meal-curry", 1), customer_id="cust-2", idempotency_key="key-1")

        self.assertEqual(len(self.order_repo.list_orders()), 2)

    def test_tracking_numbers_are_unique(self):
        numbers = {self.checkout(("meal-curry", 1))["order"]["trackingNumber"] for _ in range(5)}

        self.assertEqual(len(numbers), 5)

    def test_create_order_without_cart(self):
        meals = [{"mealId": "meal-biryani", "quantity": 2,
                  "customization": {"addOns": [{"name": "Borhani", "price": 30}]}}]
        result = self.orders.create_order(self.customer_id, meals, delivery_details())

        self.assertEqual(result["order"]["totalPrice"], 583)

    def test_add_on_prices_come_from_catalog(self):
        meals = [{"mealId": "meal-biryani", "quantity": 2,
                  "customization": {"addOns": [{"name": "Borhani", "price": 0}]}}]
        result = self.orders.create_order(self.customer_id, meals, delivery_details())
        order = self.order_repo.get_order_by_id(result["order"]["orderId"])

        # (200 + 30) * 2 = 460, + 23 tax + 100 shipping
        self.assertEqual(order.pricing.subtotal, 460)
        self.assertEqual(order.items[0].customization.add_ons[0].price, 30)
        self.assertEqual(result["order"]["totalPrice"], 583)

    def test_unknown_add_on_is_rejected(self):
        meals = [{"mealId": "meal-salad", "quantity": 1,
                  "customization": {"addOns": [{"name": "Borhani", "price": 30}]}}]

        with self.assertRaises(ValidationError):
            self.orders.create_order(self.customer_id, meals, delivery_details())
        self.assertEqual(self.order_repo.list_orders(), [])

    def test_tracking_number_collision_is_retried(self):
        taken = self.checkout(("meal-curry", 1))["order"]["trackingNumber"]
        self.carts.add_to_cart(self.customer_id, "meal-biryani", quantity=1)

        with patch("services.order_service.generate_tracking_number",
                   side_effect=[taken, "FM-FRESH-AAAAA"]):
            result = self.orders.create_from_cart(self.customer_id, delivery_details())

        self.assertEqual(result["order"]["trackingNumber"], "FM-FRESH-AAAAA")
        self.assertEqual(len(self.order_repo.list_orders()), 2)
        self.assertIsNone(self.platform.cart_repo.get_cart(self.customer_id))

    def test_payment_reference_write_failure_keeps_checkout(self):
        self.carts.add_to_cart(self.customer_id, "meal-biryani", quantity=1)

        with patch.object(self.order_repo, "save_payment_reference",
                          side_effect=sqlite3.OperationalError("database is locked")):
            with self.assertLogs("services.order_service", level="ERROR") as logs:
                result = self.orders.create_from_cart(self.customer_id, delivery_details())

        self.assertEqual(result["checkoutUrl"], "https://pay.example.test/SP0001")
        self.assertTrue(any("SP0001" in line for line in logs.output))
        order = self.order_repo.get_order_by_id(result["order"]["orderId"])
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertIsNone(order.transaction.id)

    def test_concurrent_request_with_same_key_gets_first_order(self):
        first = self.checkout(("meal-biryani", 1), idempotency_key="key-1")
        self.carts.add_to_cart(self.customer_id, "meal-curry", quantity=1)
        lookup = self.order_repo.get_order_by_idempotency_key
        calls = []

        def not_yet_visible(customer_id, key):
            # 첫 조회 시점에는 다른 요청의 주문이 아직 커밋되지 않은 상황
            calls.append(key)
            return None if len(calls) == 1 else lookup(customer_id, key)

        with patch.object(self.order_repo, "get_order_by_idempotency_key", side_effect=not_yet_visible):
            second = self.orders.create_from_cart(self.customer_id, delivery_details(),
                                                  idempotency_key="key-1")

        self.assertEqual(second["order"]["orderId"], first["order"]["orderId"])
        self.assertTrue(second["replayed"])
        self.assertEqual(len(self.order_repo.list_orders()), 1)
        self.assertEqual(len(self.gateway.requests), 1)
        # 롤백되어 장바구니는 그대로 남음
        self.assertIsNotNone(self.platform.cart_repo.get_cart(self.customer_id))

    def test_create_order_needs_meals(self):
        with self.assertRaises(ValidationError):
            self.orders.create_order(self.customer_id, [], delivery_details())


class TestVerifyPayment(OrderServiceTestCase):

    def setUp(self):
        super().setUp()
        result = self.checkout(("meal-biryani", 1), ("meal-salad", 1))
        self.order_id = result["order"]["orderId"]
        self.sp_order_id = self.order_repo.get_order_by_id(self.order_id).transaction.id

    def reload(self):
        return self.order_repo.get_order_by_id(self.order_id)

    def test_success_marks_order_paid(self):
        result = self.orders.verify_payment(self.sp_order_id)
        order = self.reload()

        self.assertEqual(result["order"]["status"], "Paid")
        self.assertEqual(order.status, OrderStatus.PAID)
        self.assertEqual(order.estimated_delivery_date, self.clock.now + timedelta(days=7))
        self.assertEqual(order.transaction.bank_status, "Success")
        self.assertEqual(order.transaction.method, "bKash")

    def test_verifying_twice_is_the_same_as_once(self):
        self.orders.verify_payment(self.sp_order_id)
        first = self.reload()
        self.clock.advance(hours=3)
        self.orders.verify_payment(self.sp_order_id)
        second = self.reload()

        self.assertEqual(first.status, second.status)
        self.assertEqual(first.estimated_delivery_date, second.estimated_delivery_date)
        self.assertEqual(first.transaction, second.transaction)
        self.assertEqual(self.notifier.paid, [self.order_id])

    def test_providers_are_notified_once_each(self):
        self.orders.verify_payment(self.sp_order_id)

        self.assertEqual(sorted(n[1] for n in self.notifier.provider_notices), ["prov-1", "prov-2"])

    def test_failed_payment_stays_pending(self):
        self.gateway.bank_status = "Failed"
        self.orders.verify_payment(self.sp_order_id)
        order = self.reload()

        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertIsNone(order.estimated_delivery_date)
        self.assertEqual(self.notifier.paid, [])

    def test_unknown_bank_status_leaves_status(self):
        self.gateway.bank_status = None
        self.orders.verify_payment(self.sp_order_id)

        self.assertEqual(self.reload().status, OrderStatus.PENDING)
        self.assertIsNone(self.reload().estimated_delivery_date)

    def test_cancel_after_paid(self):
        self.orders.verify_payment(self.sp_order_id)
        self.gateway.bank_status = "Cancel"
        self.orders.verify_payment(self.sp_order_id)
        order = self.reload()

        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertIsNone(order.estimated_delivery_date)

    def test_cancelled_order_stays_cancelled_on_success(self):
        self.orders.cancel_order(self.order_id, "Kitchen closed")
        self.orders.verify_payment(self.sp_order_id)
        order = self.reload()

        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertIsNone(order.estimated_delivery_date)
        self.assertEqual(order.transaction.bank_status, "Success")
        self.assertEqual(self.notifier.paid, [])
        with self.assertRaises(InvalidTransition):
            self.orders.update_tracking(self.order_id, "approved", "Back in the kitchen")

    def test_cancelled_order_stays_cancelled_on_failure(self):
        self.gateway.bank_status = "Cancel"
        self.orders.verify_payment(self.sp_order_id)
        self.gateway.bank_status = "Failed"
        self.orders.verify_payment(self.sp_order_id)

        self.assertEqual(self.reload().status, OrderStatus.CANCELLED)

    def test_cancel_regardless_of_prior_state(self):
        self.orders.verify_payment(self.sp_order_id)
        self.orders.update_tracking(self.order_id, "shipped", "On the way")
        self.gateway.bank_status = "Cancel"
        self.orders.verify_payment(self.sp_order_id)
        order = self.reload()

        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertIsNone(order.estimated_delivery_date)

    def test_verification_does_not_touch_tracking(self):
        self.orders.verify_payment(self.sp_order_id)
        order = self.reload()

        self.assertEqual(order.tracking_stage, TrackingStage.PLACED)
        self.assertEqual(len(order.tracking_updates), 1)

    def test_shipped_order_keeps_status_on_success(self):
        self.orders.verify_payment(self.sp_order_id)
        self.orders.update_tracking(self.order_id, "shipped", "On the way")
        self.orders.verify_payment(self.sp_order_id)

        self.assertEqual(self.reload().status, OrderStatus.SHIPPED)
        self.assertEqual(self.notifier.paid, [self.order_id])

    def test_unknown_payment_reference(self):
        with self.assertRaises(NotFoundError):
            self.orders.verify_payment("SP9999")
        self.assertEqual(self.gateway.verified, [])

    def test_missing_payment_reference(self):
        with self.assertRaises(ValidationError):
            self.orders.verify_payment("")

    def test_gateway_outage_leaves_order_untouched(self):
        self.gateway.verify_error = GatewayUnavailable("Payment gateway unreachable")

        with self.assertRaises(GatewayUnavailable):
            self.orders.verify_payment(self.sp_order_id)
        order = self.reload()
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertIsNone(order.transaction.bank_status)


class TestTrackingAndAdmin(OrderServiceTestCase):

    def test_update_tracking_is_persisted(self):
        order = self.paid_order(("meal-biryani", 1))
        eta = datetime(2026, 3, 3, 13, 0, 0)

        self.orders.update_tracking(order.order_id, "processed", "Cooking", eta)
        stored = self.order_repo.get_order_by_id(order.order_id)

        self.assertEqual(stored.tracking_stage, TrackingStage.PROCESSED)
        self.assertTrue(stored.tracking_stages["approved"])
        self.assertEqual([u.stage for u in stored.tracking_updates], ["placed", "processed"])
        self.assertEqual(stored.estimated_delivery_date, eta)

    def test_cancel_order(self):
        order = self.paid_order(("meal-biryani", 1))

        self.orders.cancel_order(order.order_id, "Kitchen closed")
        stored = self.order_repo.get_order_by_id(order.order_id)

        self.assertEqual(stored.status, OrderStatus.CANCELLED)
        self.assertIsNone(stored.estimated_delivery_date)
        self.assertEqual(stored.tracking_updates[-1].stage, "cancelled")

    def test_backwards_tracking_is_not_persisted(self):
        order = self.paid_order(("meal-biryani", 1))
        self.orders.update_tracking(order.order_id, "shipped", "On the way")

        with self.assertRaises(InvalidTransition):
            self.orders.update_tracking(order.order_id, "approved", "Back to kitchen")
        self.assertEqual(len(self.order_repo.get_order_by_id(order.order_id).tracking_updates), 2)

    def test_track_order_by_number(self):
        result = self.checkout(("meal-curry", 2))

        tracked = self.orders.track_order(result["order"]["trackingNumber"])

        self.assertEqual(tracked["order"]["orderId"], result["order"]["orderId"])
        self.assertEqual(tracked["order"]["meals"], [{"mealName": "Chicken Curry", "quantity": 2}])
        self.assertNotIn("email", tracked["order"])

    def test_track_unknown_number(self):
        with self.assertRaises(NotFoundError):
            self.orders.track_order("FM-NOPE-00000")

    def test_provider_sees_mixed_orders(self):
        mixed = self.checkout(("meal-biryani", 1), ("meal-salad", 1))["order"]["orderId"]
        salad_only = self.checkout(("meal-salad", 2))["order"]["orderId"]
        curry_only = self.checkout(("meal-curry", 1))["order"]["orderId"]

        prov_1 = [o["orderId"] for o in self.orders.get_provider_orders("prov-1")["orders"]]
        prov_2 = [o["orderId"] for o in self.orders.get_provider_orders("prov-2")["orders"]]

        self.assertEqual(prov_1, [curry_only, mixed])
        self.assertEqual(prov_2, [salad_only, mixed])
        self.assertEqual(self.orders.get_provider_orders("prov-unknown")["orders"], [])

    def test_customer_orders_newest_first(self):
        first = self.checkout(("meal-curry", 1))["order"]["orderId"]
        second = self.checkout(("meal-salad", 1))["order"]["orderId"]
        self.checkout(("meal-biryani", 1), customer_id="cust-2")

        orders = self.orders.get_customer_orders(self.customer_id)["orders"]

        self.assertEqual([o["orderId"] for o in orders], [second, first])

    def test_revenue_counts_paid_orders(self):
        paid = self.paid_order(("meal-biryani", 1))
        self.checkout(("meal-curry", 1))

        result = self.orders.calculate_revenue()

        self.assertEqual(result["totalRevenue"], paid.total)

    def test_assign_tracking_number(self):
        order = self.order_repo.get_order_by_id(self.checkout(("meal-curry", 1))["order"]["orderId"])

        same = self.orders.assign_tracking_number(order.order_id, order.tracking_number)
        self.assertEqual(same["order"]["trackingNumber"], order.tracking_number)

        with self.assertRaises(InvalidTransition):
            self.orders.assign_tracking_number(order.order_id, "FM-OTHER-12345")

    def test_set_estimated_delivery(self):
        order = self.paid_order(("meal-curry", 1))
        eta = datetime(2026, 3, 5, 18, 0, 0)

        self.orders.set_estimated_delivery(order.order_id, eta)

        self.assertEqual(self.order_repo.get_order_by_id(order.order_id).estimated_delivery_date, eta)

    def test_delete_order(self):
        order_id = self.checkout(("meal-curry", 1))["order"]["orderId"]

        self.orders.delete_order(order_id)

        self.assertIsNone(self.order_repo.get_order_by_id(order_id))
        with self.assertRaises(NotFoundError):
            self.orders.delete_order(order_id)

    def test_unknown_order(self):
        with self.assertRaises(NotFoundError):
            self.orders.get_order_details("ORD_missing")


if __name__ == '__main__':
    unittest.main()

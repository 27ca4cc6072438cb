"""
Shared test doubles and fixtures
"""
from datetime import datetime, timedelta
from typing import List

from core.config import Settings, ShurjoPayConfig
from core.platform import MealOrderPlatform
from models.meal import Meal
from models.order import DeliveryDetails
from models.payment import PaymentInitiation, PaymentOutcome, PaymentResult
from services.notification_service import OrderNotifier
from services.payment_gateway import PaymentGateway


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeGateway(PaymentGateway):
    """In-memory stand-in for ShurjoPay"""

    def __init__(self):
        self.bank_status = "Success"
        self.initiate_error = None
        self.verify_error = None
        self.requests = []
        self.verified: List[str] = []
        self.closed = False
        self._counter = 0

    def initiate(self, request):
        self.requests.append(request)
        if self.initiate_error:
            raise self.initiate_error
        self._counter += 1
        sp_order_id = f"SP{self._counter:04d}"
        return PaymentInitiation(
            checkout_url=f"https://pay.example.test/{sp_order_id}",
            gateway_order_id=sp_order_id,
            raw_status="Initiated"
        )

    def verify(self, gateway_order_id):
        self.verified.append(gateway_order_id)
        if self.verify_error:
            raise self.verify_error
        return PaymentResult(
            gateway_order_id=gateway_order_id,
            outcome=PaymentOutcome.from_bank_status(self.bank_status),
            bank_status=self.bank_status,
            gateway_code="1000",
            gateway_message=self.bank_status or "Pending",
            method="bKash",
            timestamp="2026-03-01 12:05:00",
            transaction_status="Completed" if self.bank_status == "Success" else None
        )

    def close(self):
        self.closed = True


class RecordingNotifier(OrderNotifier):
    def __init__(self):
        self.paid = []
        self.provider_notices = []

    def order_paid(self, order):
        self.paid.append(order.order_id)

    def provider_order_received(self, order, provider_id, items):
        self.provider_notices.append((order.order_id, provider_id, len(items)))


def build_settings(db_path: str) -> Settings:
    return Settings(
        database_path=db_path,
        secret_key="test-secret",
        port=5000,
        debug=False,
        log_level="WARNING",
        shipping_cost=100,
        tax_rate=0.05,
        currency="BDT",
        delivery_days=7,
        shurjopay=ShurjoPayConfig(
            endpoint="https://sandbox.example.test",
            username="merchant",
            password="secret",
            prefix="FM",
            return_url="http://localhost:3000/order-success",
            cancel_url="http://localhost:3000/order-success"
        )
    )


def make_platform(db_path: str, gateway=None, notifier=None, clock=None) -> MealOrderPlatform:
    kwargs = {"clock": clock} if clock else {}
    return MealOrderPlatform(
        settings=build_settings(db_path),
        gateway=gateway or FakeGateway(),
        notifier=notifier or RecordingNotifier(),
        **kwargs
    )


def seed_meals(meal_repo):
    """Two providers; prov-1 sells biryani and curry, prov-2 sells salad"""
    meals = [
        Meal("meal-biryani", "Kacchi Biryani", "prov-1", "Dhaka Kitchen", 200,
             provider_email="kitchen@example.test", add_on_options=[{"name": "Borhani", "price": 30}]),
        Meal("meal-curry", "Chicken Curry", "prov-1", "Dhaka Kitchen", 180,
             add_on_options=[{"name": "Egg", "price": 30}]),
        Meal("meal-salad", "Garden Salad", "prov-2", "Green Bowl", 120),
        Meal("meal-soldout", "Beef Tehari", "prov-2", "Green Bowl", 90, is_available=False),
    ]
    for meal in meals:
        meal_repo.save_meal(meal)
    return meals


def delivery_details() -> DeliveryDetails:
    return DeliveryDetails(
        name="Rahim Uddin",
        email="rahim@example.test",
        phone="01700000000",
        address="House 12, Road 5",
        city="Dhaka",
        zip_code="1205",
        delivery_date="2026-03-03",
        delivery_slot="12:00-14:00"
    )

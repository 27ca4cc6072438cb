"""
Order service - handles order creation, payment and tracking
"""
import logging
import secrets
import sqlite3
import string
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from core.errors import (
    EmptyCart, FeedMeError, GatewayError, InvalidTransition, NotFoundError, ValidationError
)
from models.cart import Customization, LineItem
from models.order import (
    DeliveryDetails, Order, OrderItem, OrderStatus, TrackingStage, TrackingUpdate, Transaction
)
from models.payment import PaymentOutcome, PaymentRequest, PaymentResult
from database.connection import DatabaseConnection
from database.repository import CartRepository, MealRepository, OrderRepository
from .notification_service import LoggingNotifier, OrderNotifier, notify_order_paid
from .payment_gateway import PaymentGateway
from .pricing import PricingEngine, price_add_ons
from .tracking import TrackingStateMachine

logger = logging.getLogger(__name__)

PLACED_MESSAGE = "Order has been placed"
TRACKING_ALPHABET = string.ascii_uppercase + string.digits
MAX_TRACKING_ATTEMPTS = 5
FULFILLED_STATUSES = (OrderStatus.SHIPPED, OrderStatus.COMPLETED)
REVENUE_STATUSES = (OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.COMPLETED)


def _base36(number: int) -> str:
    digits = string.digits + string.ascii_uppercase
    result = ""
    while number:
        number, remainder = divmod(number, 36)
        result = digits[remainder] + result
    return result or "0"


def generate_tracking_number(now: datetime) -> str:
    """FM-<base36 millisecond timestamp>-<5 random characters>"""
    timestamp = _base36(int(now.timestamp() * 1000))
    suffix = "".join(secrets.choice(TRACKING_ALPHABET) for _ in range(5))
    return f"FM-{timestamp}-{suffix}"


class OrderService:
    # 주문 관련 비즈니스 로직을 처리하는 서비스 클래스

    def __init__(self, db_connection: DatabaseConnection, order_repository: OrderRepository,
                 cart_repository: CartRepository, meal_repository: MealRepository,
                 pricing_engine: PricingEngine, payment_gateway: PaymentGateway,
                 tracking: Optional[TrackingStateMachine] = None,
                 notifier: Optional[OrderNotifier] = None,
                 currency: str = "BDT", delivery_days: int = 7,
                 clock: Callable[[], datetime] = datetime.now):
        self.db = db_connection
        self.order_repo = order_repository
        self.cart_repo = cart_repository
        self.meal_repo = meal_repository
        self.pricing = pricing_engine
        self.gateway = payment_gateway
        self.tracking = tracking or TrackingStateMachine(clock)
        self.notifier = notifier or LoggingNotifier()
        self.currency = currency
        self.delivery_days = delivery_days
        self.clock = clock

    # === 주문 생성 ===
    def create_from_cart(self, customer_id: str, delivery: DeliveryDetails,
                         client_ip: str = "0.0.0.0",
                         idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        # 장바구니 내용을 바탕으로 주문 생성 후 결제 시작
        replay = self._replay(customer_id, idempotency_key, client_ip)
        if replay:
            return replay

        cart = self.cart_repo.get_cart(customer_id)
        if not cart or cart.is_empty:
            raise EmptyCart(customer_id)

        items = [self._resolve_item(item) for item in cart.items]
        order = self._build_order(customer_id, items, delivery, idempotency_key)

        # 주문 저장과 장바구니 삭제를 한 트랜잭션으로 처리
        if self._persist(order, clear_cart_for=customer_id) is not order:
            # 동시에 같은 멱등성 키로 생성된 주문이 먼저 저장됨
            return self._replay(customer_id, idempotency_key, client_ip)
        return self._start_payment(order, client_ip)

    def create_order(self, customer_id: str, meals: List[Dict[str, Any]], delivery: DeliveryDetails,
                     client_ip: str = "0.0.0.0",
                     idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        # 장바구니 없이 메뉴 목록으로 바로 주문
        if not meals:
            raise ValidationError.for_field("meals", "At least one meal is required")

        replay = self._replay(customer_id, idempotency_key, client_ip)
        if replay:
            return replay

        items = [
            self._resolve_item(LineItem(
                meal_id=meal["mealId"],
                meal_name="",
                provider_id="",
                provider_name="",
                unit_price=0,
                quantity=meal.get("quantity", 1),
                customization=Customization.from_dict(meal.get("customization")),
                delivery_date=delivery.delivery_date,
                delivery_slot=delivery.delivery_slot
            ))
            for meal in meals
        ]
        order = self._build_order(customer_id, items, delivery, idempotency_key)
        if self._persist(order) is not order:
            return self._replay(customer_id, idempotency_key, client_ip)
        return self._start_payment(order, client_ip)

    def retry_payment(self, order_id: str, client_ip: str = "0.0.0.0") -> Dict[str, Any]:
        # 결제 시작에 실패한 주문의 결제를 다시 시작
        order = self.get_order(order_id)
        if order.status != OrderStatus.PENDING:
            raise InvalidTransition(f"Order {order_id} is {order.status.value}; only pending orders can be paid")
        return self._start_payment(order, client_ip)

    # === 결제 검증 ===
    def verify_payment(self, gateway_order_id: str) -> Dict[str, Any]:
        # 게이트웨이 결제 결과를 조회해서 주문 상태에 반영 (같은 ID로 여러 번 호출해도 결과 동일)
        if not gateway_order_id:
            raise ValidationError.for_field("order_id", "order_id is required")

        order = self.order_repo.get_order_by_transaction_id(gateway_order_id)
        if not order:
            raise NotFoundError(f"No order for payment {gateway_order_id}")

        # 게이트웨이 장애 시 예외가 그대로 전달되고 주문은 변경되지 않음
        result = self.gateway.verify(gateway_order_id)

        became_paid = self.apply_payment_result(order, result)
        self.order_repo.save(order)
        logger.info("Order %s payment %s -> status %s",
                    order.order_id, result.outcome.value, order.status.value)

        if became_paid:
            notify_order_paid(self.notifier, order)

        return {
            "success": True,
            "payment": result.to_dict(),
            "order": order.to_dict(),
            "message": "Payment verified successfully"
        }

    def apply_payment_result(self, order: Order, result: PaymentResult) -> bool:
        """Apply a verification result to the order. Returns True on the first move into Paid.

        The transaction record is overwritten, so applying the same result
        twice leaves the order as applying it once. A cancelled order stays
        cancelled whatever the outcome. Tracking is not touched.
        """
        previous_status = order.status
        already_paid = previous_status in (OrderStatus.PAID,) + FULFILLED_STATUSES
        fulfilled = previous_status in FULFILLED_STATUSES

        order.transaction = Transaction(
            id=order.transaction.id or result.gateway_order_id,
            transaction_status=result.transaction_status or order.transaction.transaction_status,
            bank_status=result.bank_status,
            sp_code=result.gateway_code,
            sp_message=result.gateway_message,
            method=result.method,
            date_time=result.timestamp
        )

        if previous_status == OrderStatus.CANCELLED:
            # 취소된 주문은 결제 결과와 관계없이 취소 상태 유지
            return False

        if result.outcome == PaymentOutcome.CANCELLED:
            order.status = OrderStatus.CANCELLED
            order.estimated_delivery_date = None
            return False

        if fulfilled:
            # 배송이 시작된 주문은 결제 결과로 상태를 되돌리지 않음
            return False

        if result.outcome == PaymentOutcome.SUCCESS:
            order.status = OrderStatus.PAID
            if not already_paid or order.estimated_delivery_date is None:
                order.estimated_delivery_date = self.clock() + timedelta(days=self.delivery_days)
            return not already_paid

        if result.outcome == PaymentOutcome.FAILED:
            order.status = OrderStatus.PENDING

        order.estimated_delivery_date = None
        return False

    # === 배송 추적 ===
    def update_tracking(self, order_id: str, stage: str, message: str,
                        estimated_delivery_date: Optional[datetime] = None) -> Dict[str, Any]:
        # 배송 단계 변경 (제공자/관리자 전용), stage가 cancelled면 주문 취소
        order = self.get_order(order_id)
        if stage == "cancelled":
            update = self.tracking.cancel(order, message)
        else:
            update = self.tracking.advance(order, stage, message, estimated_delivery_date)

        self.order_repo.save(order, [update])
        return {
            "success": True,
            "order": order.to_dict(),
            "message": "Order tracking updated successfully"
        }

    def cancel_order(self, order_id: str, message: str = "Order has been cancelled") -> Dict[str, Any]:
        return self.update_tracking(order_id, "cancelled", message)

    def assign_tracking_number(self, order_id: str, tracking_number: str) -> Dict[str, Any]:
        # 추적 번호는 한 번 부여되면 변경 불가
        if not tracking_number:
            raise ValidationError.for_field("trackingNumber", "Tracking number is required")

        order = self.get_order(order_id)
        if order.tracking_number == tracking_number:
            return {"success": True, "order": order.to_dict(),
                    "message": "Tracking number already assigned"}
        if order.tracking_number:
            raise InvalidTransition(f"Order {order_id} already has tracking number {order.tracking_number}")
        if self.order_repo.tracking_number_exists(tracking_number):
            raise ValidationError.for_field("trackingNumber", "Tracking number is already in use")

        order.tracking_number = tracking_number
        self.order_repo.save(order)
        return {"success": True, "order": order.to_dict(),
                "message": "Tracking number assigned successfully"}

    def set_estimated_delivery(self, order_id: str, estimated_delivery_date: datetime) -> Dict[str, Any]:
        order = self.get_order(order_id)
        if order.is_cancelled:
            raise InvalidTransition(f"Order {order_id} is cancelled")

        order.estimated_delivery_date = estimated_delivery_date
        self.order_repo.save(order)
        return {"success": True, "order": order.to_dict(),
                "message": "Estimated delivery date updated successfully"}

    # === 조회 ===
    def get_order(self, order_id: str) -> Order:
        order = self.order_repo.get_order_by_id(order_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    def get_order_details(self, order_id: str) -> Dict[str, Any]:
        # 특정 주문의 상세 정보 조회
        order = self.get_order(order_id)
        return {
            "success": True,
            "order": order.to_dict(),
            "message": f"Order {order_id} retrieved successfully"
        }

    def track_order(self, tracking_number: str) -> Dict[str, Any]:
        # 추적 번호로 공개 조회 (인증 불필요)
        order = self.order_repo.get_order_by_tracking_number(tracking_number)
        if not order:
            raise NotFoundError("Order not found with this tracking number")
        return {
            "success": True,
            "order": {
                "orderId": order.order_id,
                "trackingNumber": order.tracking_number,
                "status": order.status.value,
                "trackingStages": order.tracking_stages,
                "trackingUpdates": [update.to_dict() for update in order.tracking_updates],
                "estimatedDeliveryDate": (
                    order.estimated_delivery_date.isoformat() if order.estimated_delivery_date else None
                ),
                "meals": [{"mealName": item.meal_name, "quantity": item.quantity} for item in order.items]
            },
            "message": "Order retrieved successfully"
        }

    def get_customer_orders(self, customer_id: str) -> Dict[str, Any]:
        return self._orders_response(self.order_repo.list_orders_by_customer(customer_id),
                                     "User orders retrieved successfully")

    def get_provider_orders(self, provider_id: str) -> Dict[str, Any]:
        # 제공자 메뉴 ID 목록 조회 후 해당 메뉴가 포함된 주문 검색
        meal_ids = self.meal_repo.get_meal_ids_by_provider(provider_id)
        orders = self.order_repo.list_orders_by_meal_ids(meal_ids)
        return self._orders_response(orders, "Provider orders retrieved successfully")

    def list_orders(self) -> Dict[str, Any]:
        return self._orders_response(self.order_repo.list_orders(), "Orders retrieved successfully")

    def calculate_revenue(self) -> Dict[str, Any]:
        return {
            "success": True,
            "totalRevenue": self.order_repo.calculate_revenue(REVENUE_STATUSES),
            "message": "Revenue calculated successfully"
        }

    def delete_order(self, order_id: str) -> Dict[str, Any]:
        # 관리자 전용 주문 삭제
        if not self.order_repo.delete_order(order_id):
            raise NotFoundError("Order not found")
        logger.info("Deleted order %s", order_id)
        return {"success": True, "message": "Order deleted successfully"}

    # === 내부 처리 ===
    def _resolve_item(self, item: LineItem) -> LineItem:
        # 주문 시점에 카탈로그 가격/제공자 정보를 다시 확인 (추가 옵션 가격 포함)
        meal = self.meal_repo.get_meal_by_id(item.meal_id)
        if not meal:
            raise NotFoundError(f"Meal not found: {item.meal_id}")
        if not meal.is_available:
            raise ValidationError.for_field("mealId", f"{meal.name} is not available right now")

        return LineItem(
            meal_id=meal.meal_id,
            meal_name=meal.name,
            provider_id=meal.provider_id,
            provider_name=meal.provider_name,
            unit_price=meal.price,
            quantity=item.quantity,
            customization=price_add_ons(meal, item.customization),
            delivery_date=item.delivery_date,
            delivery_slot=item.delivery_slot
        )

    def _build_order(self, customer_id: str, items: List[LineItem], delivery: DeliveryDetails,
                     idempotency_key: Optional[str]) -> Order:
        now = self.clock()
        order_id = f"ORD_{now.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"
        return Order(
            order_id=order_id,
            customer_id=customer_id,
            items=tuple(OrderItem.snapshot(str(uuid.uuid4()), order_id, item) for item in items),
            delivery=delivery,
            pricing=self.pricing.quote(items),
            status=OrderStatus.PENDING,
            tracking_stage=TrackingStage.PLACED,
            tracking_updates=[TrackingUpdate(stage=TrackingStage.PLACED.value,
                                             message=PLACED_MESSAGE, timestamp=now)],
            tracking_number=generate_tracking_number(now),
            idempotency_key=idempotency_key,
            created_at=now,
            updated_at=now
        )

    def _persist(self, order: Order, clear_cart_for: Optional[str] = None) -> Order:
        for _ in range(MAX_TRACKING_ATTEMPTS):
            try:
                with self.db.transaction() as conn:
                    self.order_repo.create_order(order, conn)
                    if clear_cart_for:
                        self.cart_repo.delete_cart(clear_cart_for, conn)
                logger.info("Created order %s (%s) total %s for %s",
                            order.order_id, order.tracking_number, order.total, order.customer_id)
                return order
            except sqlite3.IntegrityError as error:
                if "tracking_number" in str(error):
                    # 추적 번호 충돌 - 새 번호로 재시도
                    order.tracking_number = generate_tracking_number(self.clock())
                    continue
                if "idempotency_key" in str(error) and order.idempotency_key:
                    existing = self.order_repo.get_order_by_idempotency_key(
                        order.customer_id, order.idempotency_key)
                    if existing:
                        return existing
                raise
        raise FeedMeError("Could not allocate a unique tracking number")

    def _replay(self, customer_id: str, idempotency_key: Optional[str],
                client_ip: str) -> Optional[Dict[str, Any]]:
        # 같은 멱등성 키로 재요청하면 기존 주문을 반환
        if not idempotency_key:
            return None
        existing = self.order_repo.get_order_by_idempotency_key(customer_id, idempotency_key)
        if not existing:
            return None

        logger.info("Replaying order %s for idempotency key %s", existing.order_id, idempotency_key)
        if existing.checkout_url or existing.status != OrderStatus.PENDING:
            return self._checkout_response(existing, replayed=True)
        result = self._start_payment(existing, client_ip)
        result["replayed"] = True
        return result

    def _start_payment(self, order: Order, client_ip: str) -> Dict[str, Any]:
        request = PaymentRequest(
            order_id=order.order_id,
            amount=order.total,
            currency=self.currency,
            customer_name=order.delivery.name,
            customer_address=order.delivery.address,
            customer_email=order.delivery.email,
            customer_phone=order.delivery.phone,
            customer_city=order.delivery.city,
            customer_post_code=order.delivery.zip_code,
            client_ip=client_ip
        )

        try:
            initiation = self.gateway.initiate(request)
        except GatewayError as error:
            # 주문은 Pending으로 남아 있고 재시도 가능
            error.order_id = error.order_id or order.order_id
            logger.warning("Payment initiation failed for order %s: %s", order.order_id, error.message)
            raise

        order.transaction = Transaction(id=initiation.gateway_order_id,
                                        transaction_status=initiation.raw_status)
        order.checkout_url = initiation.checkout_url

        try:
            if not self.order_repo.save_payment_reference(order.order_id, order.transaction,
                                                          order.checkout_url):
                logger.warning("Order %s vanished before payment reference was stored", order.order_id)
        except sqlite3.Error:
            # 저장 실패해도 주문은 유지 (결제 재시도 가능)
            logger.exception("Could not store payment reference %s for order %s, reconcile with the gateway",
                             order.transaction.id, order.order_id)

        return self._checkout_response(order)

    def _checkout_response(self, order: Order, replayed: bool = False) -> Dict[str, Any]:
        return {
            "success": True,
            "checkoutUrl": order.checkout_url,
            "order": order.to_summary(),
            "replayed": replayed,
            "message": f"Order {order.order_id} has been placed"
        }

    def _orders_response(self, orders: List[Order], message: str) -> Dict[str, Any]:
        return {
            "success": True,
            "orders": [order.to_dict() for order in orders],
            "message": message
        }

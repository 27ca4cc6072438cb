"""
Database repository classes
"""
import sqlite3
import json
from datetime import datetime
from typing import List, Optional, Iterable, Sequence

from models.meal import Meal
from models.cart import Cart, Customization, LineItem, PriceBreakdown
from models.order import (
    DeliveryDetails, Order, OrderItem, OrderStatus, TrackingStage,
    TrackingUpdate, Transaction
)
from .connection import DatabaseConnection


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class MealRepository:
    # 메뉴 카탈로그 데이터 접근 계층

    def __init__(self, db_connection: DatabaseConnection):
        # DatabaseConnection 인스턴스 주입
        self.db = db_connection

    def save_meal(self, meal: Meal) -> Meal:
        # 메뉴 등록 또는 수정 (외부 관리 화면/시드 데이터용)
        with self.db.transaction() as conn:
            conn.execute("""
            INSERT INTO Meals (
                meal_id, name, provider_id, provider_name, provider_email,
                price, is_available, description, add_on_options
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(meal_id) DO UPDATE SET
                name = excluded.name,
                provider_id = excluded.provider_id,
                provider_name = excluded.provider_name,
                provider_email = excluded.provider_email,
                price = excluded.price,
                is_available = excluded.is_available,
                description = excluded.description,
                add_on_options = excluded.add_on_options
            """, (
                meal.meal_id, meal.name, meal.provider_id, meal.provider_name,
                meal.provider_email, meal.price, int(meal.is_available),
                meal.description, json.dumps(meal.add_on_options)
            ))
        return meal

    def get_meal_by_id(self, meal_id: str) -> Optional[Meal]:
        # 메뉴 ID로 특정 메뉴 상세 정보 조회
        with self.db.get_connection() as conn:
            row = conn.execute("SELECT * FROM Meals WHERE meal_id = ?", (meal_id,)).fetchone()
            return self._row_to_meal(row) if row else None

    def get_meal_ids_by_provider(self, provider_id: str) -> List[str]:
        with self.db.get_connection() as conn:
            rows = conn.execute("SELECT meal_id FROM Meals WHERE provider_id = ?",
                                (provider_id,)).fetchall()
            return [row["meal_id"] for row in rows]

    def _row_to_meal(self, row: sqlite3.Row) -> Meal:
        return Meal(
            meal_id=row["meal_id"],
            name=row["name"],
            provider_id=row["provider_id"],
            provider_name=row["provider_name"],
            provider_email=row["provider_email"],
            price=row["price"],
            is_available=bool(row["is_available"]),
            description=row["description"],
            add_on_options=json.loads(row["add_on_options"]) if row["add_on_options"] else []
        )


class CartRepository:
    # 장바구니 데이터 접근 계층 (고객별 장바구니 관리)

    def __init__(self, db_connection: DatabaseConnection):
        # DatabaseConnection 인스턴스 주입
        self.db = db_connection

    def get_cart(self, customer_id: str) -> Optional[Cart]:
        # 고객의 장바구니 조회 (없으면 None)
        with self.db.get_connection() as conn:
            cart_row = conn.execute("SELECT * FROM Carts WHERE customer_id = ?",
                                    (customer_id,)).fetchone()
            if not cart_row:
                return None

            item_rows = conn.execute("""
            SELECT * FROM Cart_Items WHERE customer_id = ?
            ORDER BY position
            """, (customer_id,)).fetchall()

            return Cart(
                customer_id=customer_id,
                items=[self._row_to_item(row) for row in item_rows],
                customer_email=cart_row["customer_email"],
                delivery_address=cart_row["delivery_address"] or "",
                created_at=cart_row["created_at"],
                updated_at=cart_row["updated_at"]
            )

    def save_cart(self, cart: Cart) -> Cart:
        # 장바구니 전체를 덮어쓰기 (읽기-수정-쓰기, 마지막 쓰기가 우선)
        now = datetime.now().isoformat()
        cart.created_at = cart.created_at or now
        cart.updated_at = now

        with self.db.transaction() as conn:
            conn.execute("""
            INSERT INTO Carts (customer_id, customer_email, delivery_address, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(customer_id) DO UPDATE SET
                customer_email = excluded.customer_email,
                delivery_address = excluded.delivery_address,
                updated_at = excluded.updated_at
            """, (cart.customer_id, cart.customer_email, cart.delivery_address,
                  cart.created_at, cart.updated_at))

            conn.execute("DELETE FROM Cart_Items WHERE customer_id = ?", (cart.customer_id,))
            for position, item in enumerate(cart.items):
                conn.execute("""
                INSERT INTO Cart_Items (
                    customer_id, meal_id, meal_name, provider_id, provider_name,
                    unit_price, quantity, customization, delivery_date, delivery_slot, position
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    cart.customer_id, item.meal_id, item.meal_name, item.provider_id,
                    item.provider_name, item.unit_price, item.quantity,
                    json.dumps(item.customization.to_dict()),  # 커스터마이징을 JSON으로 직렬화
                    item.delivery_date, item.delivery_slot, position
                ))
        return cart

    def delete_cart(self, customer_id: str, conn: Optional[sqlite3.Connection] = None) -> int:
        # 장바구니 레코드와 아이템 삭제, 삭제된 아이템 수 반환
        with self.db.transaction(conn) as tx:
            removed_items = tx.execute("SELECT COUNT(*) FROM Cart_Items WHERE customer_id = ?",
                                       (customer_id,)).fetchone()[0]
            tx.execute("DELETE FROM Cart_Items WHERE customer_id = ?", (customer_id,))
            tx.execute("DELETE FROM Carts WHERE customer_id = ?", (customer_id,))
            return removed_items

    def _row_to_item(self, row: sqlite3.Row) -> LineItem:
        # JSON으로 저장된 커스터마이징을 디시리얼라이즈
        customization = json.loads(row["customization"]) if row["customization"] else None
        return LineItem(
            meal_id=row["meal_id"],
            meal_name=row["meal_name"],
            provider_id=row["provider_id"],
            provider_name=row["provider_name"],
            unit_price=row["unit_price"],
            quantity=row["quantity"],
            customization=Customization.from_dict(customization),
            delivery_date=row["delivery_date"] or "",
            delivery_slot=row["delivery_slot"] or ""
        )


class OrderRepository:
    # 주문 데이터 접근 계층 (주문 생성 및 조회)

    def __init__(self, db_connection: DatabaseConnection):
        # DatabaseConnection 인스턴스 주입
        self.db = db_connection

    def create_order(self, order: Order, conn: Optional[sqlite3.Connection] = None) -> Order:
        # 주문, 주문 아이템, 최초 추적 기록을 한 트랜잭션으로 저장
        with self.db.transaction(conn) as tx:
            tx.execute("""
            INSERT INTO Orders (
                order_id, customer_id, customer_name, email, phone, address, city, zip_code,
                delivery_date, delivery_slot, subtotal, tax, shipping, total_price,
                status, tracking_stage, tracking_number, estimated_delivery_date,
                transaction_id, transaction_data, checkout_url, idempotency_key,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                order.order_id, order.customer_id, order.delivery.name, order.delivery.email,
                order.delivery.phone, order.delivery.address, order.delivery.city,
                order.delivery.zip_code, order.delivery.delivery_date, order.delivery.delivery_slot,
                order.pricing.subtotal, order.pricing.tax, order.pricing.shipping,
                order.pricing.total, order.status.value, order.tracking_stage.value,
                order.tracking_number, _format_datetime(order.estimated_delivery_date),
                order.transaction.id, json.dumps(order.transaction.to_dict()),
                order.checkout_url, order.idempotency_key,
                _format_datetime(order.created_at), _format_datetime(order.updated_at)
            ))

            for position, item in enumerate(order.items):
                tx.execute("""
                INSERT INTO Order_Items (
                    order_item_id, order_id, meal_id, meal_name, provider_id, provider_name,
                    unit_price, quantity, customization, line_total, delivery_date,
                    delivery_slot, position
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    item.order_item_id, order.order_id, item.meal_id, item.meal_name,
                    item.provider_id, item.provider_name, item.unit_price, item.quantity,
                    json.dumps(item.customization.to_dict()), item.line_total,
                    item.delivery_date, item.delivery_slot, position
                ))

            self._insert_updates(tx, order.order_id, order.tracking_updates)
        return order

    def save(self, order: Order, new_updates: Iterable[TrackingUpdate] = ()) -> Order:
        # 주문의 변경 가능한 필드 저장 + 새 추적 기록 추가 (기존 기록은 수정하지 않음)
        order.updated_at = datetime.now()
        with self.db.transaction() as tx:
            tx.execute("""
            UPDATE Orders SET
                status = ?, tracking_stage = ?, tracking_number = ?,
                estimated_delivery_date = ?, transaction_id = ?, transaction_data = ?,
                checkout_url = ?, updated_at = ?
            WHERE order_id = ?
            """, (
                order.status.value, order.tracking_stage.value, order.tracking_number,
                _format_datetime(order.estimated_delivery_date), order.transaction.id,
                json.dumps(order.transaction.to_dict()), order.checkout_url,
                _format_datetime(order.updated_at), order.order_id
            ))
            self._insert_updates(tx, order.order_id, new_updates)
        return order

    def save_payment_reference(self, order_id: str, transaction: Transaction,
                               checkout_url: Optional[str]) -> bool:
        # 결제 게이트웨이 참조 ID와 결제 URL 저장
        with self.db.transaction() as tx:
            cursor = tx.execute("""
            UPDATE Orders SET transaction_id = ?, transaction_data = ?, checkout_url = ?,
                              updated_at = ?
            WHERE order_id = ?
            """, (transaction.id, json.dumps(transaction.to_dict()), checkout_url,
                  datetime.now().isoformat(), order_id))
            return cursor.rowcount > 0

    def get_order_by_id(self, order_id: str) -> Optional[Order]:
        return self._find_one("order_id = ?", (order_id,))

    def get_order_by_tracking_number(self, tracking_number: str) -> Optional[Order]:
        return self._find_one("tracking_number = ?", (tracking_number,))

    def get_order_by_transaction_id(self, transaction_id: str) -> Optional[Order]:
        return self._find_one("transaction_id = ?", (transaction_id,))

    def get_order_by_idempotency_key(self, customer_id: str, idempotency_key: str) -> Optional[Order]:
        return self._find_one("customer_id = ? AND idempotency_key = ?",
                              (customer_id, idempotency_key))

    def tracking_number_exists(self, tracking_number: str) -> bool:
        with self.db.get_connection() as conn:
            row = conn.execute("SELECT 1 FROM Orders WHERE tracking_number = ?",
                               (tracking_number,)).fetchone()
            return row is not None

    def list_orders(self) -> List[Order]:
        # 전체 주문 목록 (최신순)
        return self._find_many("1 = 1", ())

    def list_orders_by_customer(self, customer_id: str) -> List[Order]:
        # 고객별 주문 목록 (최신순)
        return self._find_many("customer_id = ?", (customer_id,))

    def list_orders_by_meal_ids(self, meal_ids: Sequence[str]) -> List[Order]:
        # 주어진 메뉴 중 하나라도 포함한 주문 목록 (최신순)
        if not meal_ids:
            return []
        placeholders = ", ".join("?" for _ in meal_ids)
        return self._find_many(
            f"order_id IN (SELECT DISTINCT order_id FROM Order_Items WHERE meal_id IN ({placeholders}))",
            tuple(meal_ids)
        )

    def calculate_revenue(self, statuses: Sequence[OrderStatus]) -> float:
        placeholders = ", ".join("?" for _ in statuses)
        with self.db.get_connection() as conn:
            row = conn.execute(
                f"SELECT COALESCE(SUM(total_price), 0) FROM Orders WHERE status IN ({placeholders})",
                tuple(status.value for status in statuses)
            ).fetchone()
            return row[0]

    def delete_order(self, order_id: str) -> bool:
        # 주문 삭제 (관리자 전용)
        with self.db.transaction() as tx:
            cursor = tx.execute("DELETE FROM Orders WHERE order_id = ?", (order_id,))
            return cursor.rowcount > 0

    def _insert_updates(self, tx: sqlite3.Connection, order_id: str,
                        updates: Iterable[TrackingUpdate]):
        for update in updates:
            tx.execute("""
            INSERT INTO Tracking_Updates (order_id, stage, message, timestamp)
            VALUES (?, ?, ?, ?)
            """, (order_id, update.stage, update.message, update.timestamp.isoformat()))

    def _find_one(self, where: str, params: tuple) -> Optional[Order]:
        with self.db.get_connection() as conn:
            row = conn.execute(f"SELECT * FROM Orders WHERE {where}", params).fetchone()
            return self._row_to_order(conn, row) if row else None

    def _find_many(self, where: str, params: tuple) -> List[Order]:
        with self.db.get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM Orders WHERE {where} ORDER BY created_at DESC, rowid DESC", params
            ).fetchall()
            return [self._row_to_order(conn, row) for row in rows]

    def _row_to_order(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Order:
        order_id = row["order_id"]

        # 해당 주문의 아이템들 가져오기
        item_rows = conn.execute(
            "SELECT * FROM Order_Items WHERE order_id = ? ORDER BY position", (order_id,)
        ).fetchall()
        items = tuple(
            OrderItem(
                order_item_id=item["order_item_id"],
                order_id=order_id,
                meal_id=item["meal_id"],
                meal_name=item["meal_name"],
                provider_id=item["provider_id"],
                provider_name=item["provider_name"],
                unit_price=item["unit_price"],
                quantity=item["quantity"],
                customization=Customization.from_dict(
                    json.loads(item["customization"]) if item["customization"] else None
                ),
                line_total=item["line_total"],
                delivery_date=item["delivery_date"] or "",
                delivery_slot=item["delivery_slot"] or ""
            )
            for item in item_rows
        )

        update_rows = conn.execute(
            "SELECT stage, message, timestamp FROM Tracking_Updates WHERE order_id = ? ORDER BY update_id",
            (order_id,)
        ).fetchall()
        updates = [
            TrackingUpdate(stage=u["stage"], message=u["message"],
                           timestamp=datetime.fromisoformat(u["timestamp"]))
            for u in update_rows
        ]

        return Order(
            order_id=order_id,
            customer_id=row["customer_id"],
            items=items,
            delivery=DeliveryDetails(
                name=row["customer_name"],
                email=row["email"],
                phone=row["phone"],
                address=row["address"],
                city=row["city"],
                zip_code=row["zip_code"],
                delivery_date=row["delivery_date"] or "",
                delivery_slot=row["delivery_slot"] or ""
            ),
            pricing=PriceBreakdown(
                subtotal=row["subtotal"],
                tax=row["tax"],
                shipping=row["shipping"],
                total=row["total_price"]
            ),
            status=OrderStatus(row["status"]),
            tracking_stage=TrackingStage(row["tracking_stage"]),
            tracking_updates=updates,
            tracking_number=row["tracking_number"],
            estimated_delivery_date=_parse_datetime(row["estimated_delivery_date"]),
            transaction=Transaction.from_dict(
                json.loads(row["transaction_data"]) if row["transaction_data"] else None
            ),
            checkout_url=row["checkout_url"],
            idempotency_key=row["idempotency_key"],
            created_at=_parse_datetime(row["created_at"]),
            updated_at=_parse_datetime(row["updated_at"])
        )

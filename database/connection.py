"""
Database connection management
"""
import logging
import sqlite3
from contextlib import contextmanager
from typing import Generator, Optional

logger = logging.getLogger(__name__)


class DatabaseConnection:
    # 데이터베이스 연결을 관리하는 클래스

    def __init__(self, db_path: str = "FeedMeDB.db"):
        # 데이터베이스 파일 경로 설정 및 초기화
        self.db_path = db_path
        self.init_database()

    def init_database(self):
        # 데이터베이스 연결 초기화 및 필요한 테이블 생성
        with self.transaction() as conn:
            cursor = conn.cursor()

            # 메뉴 카탈로그 (메뉴 등록/수정은 외부 관리 화면에서 처리)
            cursor.execute('''
            CREATE TABLE IF NOT EXISTS Meals (
                meal_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                provider_id TEXT NOT NULL,
                provider_name TEXT NOT NULL,
                provider_email TEXT,
                price REAL NOT NULL,
                is_available INTEGER NOT NULL DEFAULT 1,
                description TEXT,
                add_on_options TEXT
            )
            ''')
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_meals_provider ON Meals(provider_id)")

            # 고객별 장바구니 (아이템이 없으면 레코드도 없음)
            cursor.execute('''
            CREATE TABLE IF NOT EXISTS Carts (
                customer_id TEXT PRIMARY KEY,
                customer_email TEXT,
                delivery_address TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            ''')

            cursor.execute('''
            CREATE TABLE IF NOT EXISTS Cart_Items (
                customer_id TEXT NOT NULL,
                meal_id TEXT NOT NULL,
                meal_name TEXT NOT NULL,
                provider_id TEXT NOT NULL,
                provider_name TEXT NOT NULL,
                unit_price REAL NOT NULL,
                quantity INTEGER NOT NULL DEFAULT 1,
                customization TEXT,
                delivery_date TEXT,
                delivery_slot TEXT,
                position INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY(customer_id, meal_id),
                FOREIGN KEY(customer_id) REFERENCES Carts(customer_id) ON DELETE CASCADE
            )
            ''')

            # 주문 정보를 저장하는 테이블 생성
            cursor.execute('''
            CREATE TABLE IF NOT EXISTS Orders (
                order_id TEXT PRIMARY KEY,
                customer_id TEXT NOT NULL,
                customer_name TEXT NOT NULL,
                email TEXT NOT NULL,
                phone TEXT NOT NULL,
                address TEXT NOT NULL,
                city TEXT NOT NULL,
                zip_code TEXT NOT NULL,
                delivery_date TEXT,
                delivery_slot TEXT,
                subtotal REAL NOT NULL,
                tax REAL NOT NULL,
                shipping REAL NOT NULL,
                total_price INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'Pending',
                tracking_stage TEXT NOT NULL DEFAULT 'placed',
                tracking_number TEXT UNIQUE,
                estimated_delivery_date TEXT,
                transaction_id TEXT,
                transaction_data TEXT,
                checkout_url TEXT,
                idempotency_key TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(customer_id, idempotency_key)
            )
            ''')
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_orders_customer ON Orders(customer_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_orders_transaction ON Orders(transaction_id)")

            # 주문 아이템 스냅샷 (주문 시점의 가격 고정)
            cursor.execute('''
            CREATE TABLE IF NOT EXISTS Order_Items (
                order_item_id TEXT PRIMARY KEY,
                order_id TEXT NOT NULL,
                meal_id TEXT NOT NULL,
                meal_name TEXT NOT NULL,
                provider_id TEXT NOT NULL,
                provider_name TEXT NOT NULL,
                unit_price REAL NOT NULL,
                quantity INTEGER NOT NULL,
                customization TEXT,
                line_total REAL NOT NULL,
                delivery_date TEXT,
                delivery_slot TEXT,
                position INTEGER NOT NULL DEFAULT 0,
                FOREIGN KEY(order_id) REFERENCES Orders(order_id) ON DELETE CASCADE
            )
            ''')
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_order_items_meal ON Order_Items(meal_id)")

            # 배송 추적 기록 (추가만 가능)
            cursor.execute('''
            CREATE TABLE IF NOT EXISTS Tracking_Updates (
                update_id INTEGER PRIMARY KEY AUTOINCREMENT,
                order_id TEXT NOT NULL,
                stage TEXT NOT NULL,
                message TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                FOREIGN KEY(order_id) REFERENCES Orders(order_id) ON DELETE CASCADE
            )
            ''')

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        # 컨텍스트 매니저를 사용하여 데이터베이스 연결 자동 관리
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self, conn: Optional[sqlite3.Connection] = None) -> Generator[sqlite3.Connection, None, None]:
        # 하나의 트랜잭션으로 묶어서 실행 (conn이 주어지면 바깥 트랜잭션에 참여)
        if conn is not None:
            yield conn
            return

        with self.get_connection() as new_conn:
            try:
                yield new_conn
                new_conn.commit()
            except Exception:
                new_conn.rollback()
                logger.debug("Rolled back transaction on %s", self.db_path)
                raise

"""
Main MealOrderPlatform class - wires repositories and services together
"""
from datetime import datetime
from typing import Callable, Optional

from database.connection import DatabaseConnection
from database.repository import CartRepository, MealRepository, OrderRepository
from services.cart_service import CartService
from services.notification_service import LoggingNotifier, OrderNotifier
from services.order_service import OrderService
from services.payment_gateway import PaymentGateway, ShurjoPayGateway
from services.pricing import PricingEngine
from services.tracking import TrackingStateMachine
from .config import Settings


class MealOrderPlatform:
    # 모든 서비스를 조율하는 중앙 관리자 - HTTP 레이어는 이 객체만 사용

    def __init__(self, settings: Optional[Settings] = None, db_path: Optional[str] = None,
                 gateway: Optional[PaymentGateway] = None,
                 notifier: Optional[OrderNotifier] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.settings = settings or Settings.from_env()

        # 데이터베이스 연결 초기화
        self.db_connection = DatabaseConnection(db_path or self.settings.database_path)

        # 리포지토리 레이어 초기화 (데이터 접근 계층)
        self.meal_repo = MealRepository(self.db_connection)
        self.cart_repo = CartRepository(self.db_connection)
        self.order_repo = OrderRepository(self.db_connection)

        # 서비스 레이어 초기화 (비즈니스 로직 계층)
        self.pricing = PricingEngine(self.settings.tax_rate, self.settings.shipping_cost)
        self.gateway = gateway or ShurjoPayGateway(self.settings.shurjopay)
        self.tracking = TrackingStateMachine(clock)
        self.cart_service = CartService(self.cart_repo, self.meal_repo, self.pricing)
        self.order_service = OrderService(
            self.db_connection,
            self.order_repo,
            self.cart_repo,
            self.meal_repo,
            self.pricing,
            self.gateway,
            tracking=self.tracking,
            notifier=notifier or LoggingNotifier(),
            currency=self.settings.currency,
            delivery_days=self.settings.delivery_days,
            clock=clock
        )

    def close(self) -> None:
        # 서버 종료 시 게이트웨이 HTTP 연결 정리
        self.gateway.close()

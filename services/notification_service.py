"""
Order notifications - fire-and-forget messages to customers and providers
"""
import logging
from collections import defaultdict
from typing import Dict, List

from models.order import Order, OrderItem

logger = logging.getLogger(__name__)


class OrderNotifier:
    # 알림 발송 인터페이스 (이메일 템플릿 렌더링은 범위 밖)

    def order_paid(self, order: Order):
        raise NotImplementedError

    def provider_order_received(self, order: Order, provider_id: str, items: List[OrderItem]):
        raise NotImplementedError


class LoggingNotifier(OrderNotifier):
    """Writes notifications to the log. Used when no mail transport is configured."""

    def order_paid(self, order: Order):
        logger.info("Order %s (%s) paid - confirmation for %s",
                    order.order_id, order.tracking_number, order.delivery.email)

    def provider_order_received(self, order: Order, provider_id: str, items: List[OrderItem]):
        provider_total = sum(item.line_total for item in items)
        logger.info("Provider %s has %d meal(s) worth %.2f in order %s",
                    provider_id, len(items), provider_total, order.order_id)


def items_by_provider(order: Order) -> Dict[str, List[OrderItem]]:
    # 주문 아이템을 제공자별로 묶기
    grouped = defaultdict(list)
    for item in order.items:
        grouped[item.provider_id].append(item)
    return dict(grouped)


def notify_order_paid(notifier: OrderNotifier, order: Order):
    """Send paid-order notifications. Failures are logged and never reach the caller."""
    try:
        notifier.order_paid(order)
        for provider_id, items in items_by_provider(order).items():
            notifier.provider_order_received(order, provider_id, items)
    except Exception:
        logger.exception("Failed to send notifications for order %s", order.order_id)

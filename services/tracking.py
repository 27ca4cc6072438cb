"""
Delivery tracking state machine
"""
import logging
from datetime import datetime
from typing import Callable, Optional, Union

from core.errors import InvalidTransition, ValidationError
from models.order import CANCELLED_STAGE, Order, OrderStatus, TrackingStage, TrackingUpdate

logger = logging.getLogger(__name__)

# 취소는 배송 시작 전 단계에서만 가능
CANCELLABLE_STAGES = (TrackingStage.PLACED, TrackingStage.APPROVED, TrackingStage.PROCESSED)

STATUS_ON_STAGE = {
    TrackingStage.SHIPPED: OrderStatus.SHIPPED,
    TrackingStage.DELIVERED: OrderStatus.COMPLETED,
}


def parse_stage(value: Union[str, TrackingStage]) -> TrackingStage:
    if isinstance(value, TrackingStage):
        return value
    try:
        return TrackingStage(value)
    except ValueError:
        raise ValidationError.for_field("stage", f"Unknown tracking stage: {value}")


class TrackingStateMachine:
    """Moves an order forward through placed -> approved -> processed -> shipped -> delivered.

    Every change appends exactly one TrackingUpdate to the order; earlier
    entries are never touched. Moving backwards raises InvalidTransition.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self.clock = clock

    def advance(self, order: Order, target: Union[str, TrackingStage], message: str,
                estimated_delivery_date: Optional[datetime] = None) -> TrackingUpdate:
        target = parse_stage(target)

        if order.is_cancelled:
            raise InvalidTransition(f"Order {order.order_id} is cancelled")
        if target.rank < order.tracking_stage.rank:
            raise InvalidTransition(
                f"Cannot move order {order.order_id} from {order.tracking_stage.value} back to {target.value}"
            )

        previous = order.tracking_stage
        # 단계 하나만 저장하므로 이전 단계들은 자동으로 완료 처리됨
        order.tracking_stage = target

        new_status = STATUS_ON_STAGE.get(target)
        if new_status:
            order.status = new_status

        if estimated_delivery_date:
            order.estimated_delivery_date = estimated_delivery_date

        update = TrackingUpdate(stage=target.value, message=message, timestamp=self.clock())
        order.tracking_updates.append(update)

        logger.info("Order %s tracking %s -> %s", order.order_id, previous.value, target.value)
        return update

    def cancel(self, order: Order, message: str) -> TrackingUpdate:
        if order.is_cancelled:
            raise InvalidTransition(f"Order {order.order_id} is already cancelled")
        if order.tracking_stage not in CANCELLABLE_STAGES:
            raise InvalidTransition(
                f"Order {order.order_id} cannot be cancelled once {order.tracking_stage.value}"
            )

        order.status = OrderStatus.CANCELLED
        order.estimated_delivery_date = None

        update = TrackingUpdate(stage=CANCELLED_STAGE, message=message, timestamp=self.clock())
        order.tracking_updates.append(update)

        logger.info("Order %s cancelled at stage %s", order.order_id, order.tracking_stage.value)
        return update

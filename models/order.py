"""
Order related data models
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Dict, Any, Tuple
from enum import Enum

from .cart import Customization, LineItem, PriceBreakdown


class OrderStatus(Enum):
    PENDING = "Pending"
    PAID = "Paid"
    SHIPPED = "Shipped"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class TrackingStage(Enum):
    """Delivery stages in strict order. Cancellation is tracked on OrderStatus."""
    PLACED = "placed"
    APPROVED = "approved"
    PROCESSED = "processed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"

    @classmethod
    def ordered(cls) -> List["TrackingStage"]:
        return list(cls)

    @property
    def rank(self) -> int:
        return TrackingStage.ordered().index(self)

    def reached(self, stage: "TrackingStage") -> bool:
        """True if an order at this stage has passed through `stage`"""
        return stage.rank <= self.rank


CANCELLED_STAGE = "cancelled"


@dataclass(frozen=True)
class OrderItem:
    """Order item data model - price snapshot taken at order time"""
    order_item_id: str
    order_id: str
    meal_id: str
    meal_name: str
    provider_id: str
    provider_name: str
    unit_price: float
    quantity: int
    customization: Customization
    line_total: float
    delivery_date: str = ""
    delivery_slot: str = ""

    @classmethod
    def snapshot(cls, order_item_id: str, order_id: str, item: LineItem) -> "OrderItem":
        return cls(
            order_item_id=order_item_id,
            order_id=order_id,
            meal_id=item.meal_id,
            meal_name=item.meal_name,
            provider_id=item.provider_id,
            provider_name=item.provider_name,
            unit_price=item.unit_price,
            quantity=item.quantity,
            customization=Customization.from_dict(item.customization.to_dict()),
            line_total=item.line_total,
            delivery_date=item.delivery_date,
            delivery_slot=item.delivery_slot
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "orderItemId": self.order_item_id,
            "mealId": self.meal_id,
            "mealName": self.meal_name,
            "providerId": self.provider_id,
            "providerName": self.provider_name,
            "price": self.unit_price,
            "quantity": self.quantity,
            "customization": self.customization.to_dict(),
            "subtotal": self.line_total,
            "deliveryDate": self.delivery_date,
            "deliverySlot": self.delivery_slot
        }


@dataclass
class DeliveryDetails:
    """Customer contact and delivery information"""
    name: str
    email: str
    phone: str
    address: str
    city: str
    zip_code: str
    delivery_date: str = ""
    delivery_slot: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "zipCode": self.zip_code,
            "deliveryDate": self.delivery_date,
            "deliverySlot": self.delivery_slot
        }


@dataclass
class TrackingUpdate:
    """One audit trail entry"""
    stage: str
    message: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "message": self.message,
            "timestamp": self.timestamp.isoformat()
        }


@dataclass
class Transaction:
    """Payment record embedded in the order. Field names follow the ShurjoPay wire format."""
    id: Optional[str] = None
    transaction_status: Optional[str] = None
    bank_status: Optional[str] = None
    sp_code: Optional[str] = None
    sp_message: Optional[str] = None
    method: Optional[str] = None
    date_time: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "transactionStatus": self.transaction_status,
            "bank_status": self.bank_status,
            "sp_code": self.sp_code,
            "sp_message": self.sp_message,
            "method": self.method,
            "date_time": self.date_time
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Transaction":
        data = data or {}
        return cls(
            id=data.get("id"),
            transaction_status=data.get("transactionStatus"),
            bank_status=data.get("bank_status"),
            sp_code=data.get("sp_code"),
            sp_message=data.get("sp_message"),
            method=data.get("method"),
            date_time=data.get("date_time")
        )


@dataclass
class Order:
    """Order data model"""
    order_id: str
    customer_id: str
    items: Tuple[OrderItem, ...]
    delivery: DeliveryDetails
    pricing: PriceBreakdown
    status: OrderStatus = OrderStatus.PENDING
    tracking_stage: TrackingStage = TrackingStage.PLACED
    tracking_updates: List[TrackingUpdate] = field(default_factory=list)
    tracking_number: Optional[str] = None
    estimated_delivery_date: Optional[datetime] = None
    transaction: Transaction = field(default_factory=Transaction)
    checkout_url: Optional[str] = None
    idempotency_key: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def total(self) -> int:
        return self.pricing.total

    @property
    def is_cancelled(self) -> bool:
        return self.status == OrderStatus.CANCELLED

    @property
    def tracking_stages(self) -> Dict[str, bool]:
        """Per-stage flags derived from the current stage"""
        return {stage.value: self.tracking_stage.reached(stage) for stage in TrackingStage}

    @property
    def meal_ids(self) -> List[str]:
        return [item.meal_id for item in self.items]

    def to_summary(self) -> Dict[str, Any]:
        return {
            "orderId": self.order_id,
            "trackingNumber": self.tracking_number,
            "totalPrice": self.total,
            "status": self.status.value
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        result = {
            "orderId": self.order_id,
            "customerId": self.customer_id,
            "meals": [item.to_dict() for item in self.items],
            "status": self.status.value,
            "trackingStages": self.tracking_stages,
            "trackingUpdates": [update.to_dict() for update in self.tracking_updates],
            "trackingNumber": self.tracking_number,
            "estimatedDeliveryDate": (
                self.estimated_delivery_date.isoformat() if self.estimated_delivery_date else None
            ),
            "transaction": self.transaction.to_dict(),
            "checkoutUrl": self.checkout_url,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None
        }
        result.update(self.delivery.to_dict())
        result.update(self.pricing.to_dict())
        return result

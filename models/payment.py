"""
Payment gateway data models
"""
from dataclasses import dataclass
from typing import Optional, Dict, Any
from enum import Enum


class PaymentOutcome(Enum):
    """Verified state of a payment. Gateway unavailability is raised, not returned."""
    SUCCESS = "success"
    PENDING = "pending"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def from_bank_status(cls, bank_status: Optional[str]) -> "PaymentOutcome":
        if bank_status == "Success":
            return cls.SUCCESS
        if bank_status == "Failed":
            return cls.FAILED
        if bank_status == "Cancel":
            return cls.CANCELLED
        return cls.PENDING


@dataclass
class PaymentRequest:
    """Payload sent to the gateway when a checkout is started"""
    order_id: str
    amount: float
    currency: str
    customer_name: str
    customer_address: str
    customer_email: str
    customer_phone: str
    customer_city: str
    customer_post_code: str
    client_ip: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "amount": self.amount,
            "currency": self.currency,
            "customer_name": self.customer_name,
            "customer_address": self.customer_address,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "customer_city": self.customer_city,
            "customer_post_code": self.customer_post_code,
            "client_ip": self.client_ip
        }


@dataclass
class PaymentInitiation:
    """Gateway answer to a checkout request"""
    checkout_url: str
    gateway_order_id: str
    raw_status: Optional[str] = None


@dataclass
class PaymentResult:
    """Gateway answer to a verification request"""
    gateway_order_id: str
    outcome: PaymentOutcome
    bank_status: Optional[str] = None
    gateway_code: Optional[str] = None
    gateway_message: Optional[str] = None
    method: Optional[str] = None
    timestamp: Optional[str] = None
    transaction_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.gateway_order_id,
            "outcome": self.outcome.value,
            "bank_status": self.bank_status,
            "sp_code": self.gateway_code,
            "sp_message": self.gateway_message,
            "method": self.method,
            "date_time": self.timestamp,
            "transaction_status": self.transaction_status
        }

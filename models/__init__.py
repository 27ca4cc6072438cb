"""
Models package for FeedMe Orders
Contains data models and type definitions
"""

from .meal import Meal, SpiceLevel
from .cart import AddOn, Customization, LineItem, PriceBreakdown, Cart
from .order import (
    Order, OrderItem, OrderStatus, TrackingStage, TrackingUpdate,
    Transaction, DeliveryDetails
)
from .payment import PaymentOutcome, PaymentRequest, PaymentInitiation, PaymentResult

__all__ = [
    'Meal', 'SpiceLevel',
    'AddOn', 'Customization', 'LineItem', 'PriceBreakdown', 'Cart',
    'Order', 'OrderItem', 'OrderStatus', 'TrackingStage', 'TrackingUpdate',
    'Transaction', 'DeliveryDetails',
    'PaymentOutcome', 'PaymentRequest', 'PaymentInitiation', 'PaymentResult'
]

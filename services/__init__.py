"""
Services package for FeedMe Orders
Contains business logic services
"""

from .pricing import PricingEngine
from .cart_service import CartService
from .order_service import OrderService
from .tracking import TrackingStateMachine
from .payment_gateway import PaymentGateway, ShurjoPayGateway
from .notification_service import OrderNotifier, LoggingNotifier

__all__ = [
    'PricingEngine', 'CartService', 'OrderService', 'TrackingStateMachine',
    'PaymentGateway', 'ShurjoPayGateway', 'OrderNotifier', 'LoggingNotifier'
]

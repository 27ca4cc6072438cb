"""
Database package for FeedMe Orders
Contains database connection and repository classes
"""

from .connection import DatabaseConnection
from .repository import MealRepository, CartRepository, OrderRepository

__all__ = [
    'DatabaseConnection',
    'MealRepository', 'CartRepository', 'OrderRepository'
]

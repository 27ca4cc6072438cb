"""
Core package for FeedMe Orders
Contains configuration, error types and service wiring
"""

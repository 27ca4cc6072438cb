"""
Test package for FeedMe Orders
"""

"""
HTTP service for the revenue cycle engine.
"""

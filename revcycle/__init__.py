"""
Revenue cycle engine: claims, invoices, payments and risk score sync.
"""

__version__ = "1.0.0"

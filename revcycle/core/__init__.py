"""
Core enums, capability table and engine configuration.
"""

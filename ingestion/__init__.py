"""
Data Ingestion Module

Maps raw daily price files onto the canonical panel and validates it:
- Column aliasing for common provider exports
- Schema checks that fail before any computation
"""

__version__ = "0.0.1"

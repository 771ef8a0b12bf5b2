"""
Analysis Engine Module

Calculates panel metrics from canonical daily prices:
- Daily returns from lagged adjusted prices
- Monthly and yearly bars
- Rolling volatility and rolling volume (trailing / centered)
- Pooled feature correlation
"""

__version__ = "0.0.1"

"""
eigentrader: autonomous spot-trading agent driven by verifiable EigenAI inference.
"""

__version__ = "0.1.0"

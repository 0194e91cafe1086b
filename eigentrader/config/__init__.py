"""
Configuration package.

Environment-driven settings and the token registry.
"""

from eigentrader.config.config import Settings, env_bool, is_valid_private_key
from eigentrader.config.tokens import TOKENS, TokenMetadata, parse_trading_pairs, resolve_token

__all__ = [
    "Settings",
    "env_bool",
    "is_valid_private_key",
    "TOKENS",
    "TokenMetadata",
    "parse_trading_pairs",
    "resolve_token",
]

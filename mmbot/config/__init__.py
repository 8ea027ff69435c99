"""
Configuration package.

Settings come from the environment (and .env via python-dotenv).
"""

from mmbot.config.config import Settings, TradeParams, env_bool

__all__ = [
    "Settings",
    "TradeParams",
    "env_bool",
]

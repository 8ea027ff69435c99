"""
Strategy package: the order-placing loops.

LiquidityPlanner keeps resting liquidity, DepthBuilder keeps visible depth
and PriceMaker moves the price. All implement TradingStrategy.
"""

from mmbot.strategy.base import PairStrategy, StrategyDeps, TradingStrategy
from mmbot.strategy.depth_builder import DepthBuilder
from mmbot.strategy.liquidity_planner import LiquidityPlanner
from mmbot.strategy.price_maker import Action, Decision, PriceMaker

__all__ = [
    "PairStrategy",
    "StrategyDeps",
    "TradingStrategy",
    "DepthBuilder",
    "LiquidityPlanner",
    "Action",
    "Decision",
    "PriceMaker",
]

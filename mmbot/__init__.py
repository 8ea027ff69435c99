"""
mmbot: decision core of a cryptocurrency market-making bot.
"""

__version__ = "0.1.0"

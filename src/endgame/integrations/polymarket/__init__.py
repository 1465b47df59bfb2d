"""Polymarket CLOB integration: REST venue client and market-channel feed."""

from endgame.integrations.polymarket.client import PolymarketVenue
from endgame.integrations.polymarket.feed import FeedError, MarketFeed
from endgame.integrations.polymarket.types import PolymarketSettings

__all__ = ["PolymarketVenue", "MarketFeed", "FeedError", "PolymarketSettings"]

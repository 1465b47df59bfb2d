"""Polymarket connection settings."""

from dataclasses import dataclass
from typing import Optional

from endgame.core.config import ConfigManager

DEFAULT_CLOB_URL = "https://clob.polymarket.com"
DEFAULT_WS_URL = "wss://ws-subscriptions-clob.polymarket.com/ws/market"
POLYGON_CHAIN_ID = 137

# /markets pagination terminator
END_CURSOR = "LTE="


@dataclass(frozen=True)
class PolymarketSettings:
    """Venue endpoints and credentials.

    Attributes:
        private_key: Polygon wallet key used to sign orders. Empty means
            read-only: markets and books are available, orders are refused.
        proxy_wallet: Optional Polymarket proxy (funder) address.
        signature_type: 0=EOA, 1=Magic, 2=Browser proxy.
        api_key / api_secret / api_passphrase: CLOB L2 credentials. Derived
            from the private key when left empty.
        clob_url: CLOB REST base URL.
        ws_url: Market channel WebSocket URL.
        http_timeout: Per-request timeout for REST calls, in seconds.
        http_proxy: Optional proxy for REST calls.
        reconnect_base_delay: First reconnect delay; doubles per attempt.
        max_reconnect_attempts: Attempts before the feed gives up.
        ping_interval: Seconds between keepalive pings.
    """

    private_key: str = ""
    proxy_wallet: Optional[str] = None
    signature_type: int = 0
    chain_id: int = POLYGON_CHAIN_ID

    api_key: str = ""
    api_secret: str = ""
    api_passphrase: str = ""

    clob_url: str = DEFAULT_CLOB_URL
    ws_url: str = DEFAULT_WS_URL
    http_timeout: float = 30.0
    http_proxy: Optional[str] = None

    reconnect_base_delay: float = 1.0
    max_reconnect_attempts: int = 10
    ping_interval: float = 30.0

    @property
    def can_trade(self) -> bool:
        return bool(self.private_key)

    @classmethod
    def from_config(cls, config: ConfigManager) -> "PolymarketSettings":
        return cls(
            private_key=config.get_str("polymarket.private_key"),
            proxy_wallet=config.get_str("polymarket.proxy_wallet") or None,
            signature_type=config.get_int("polymarket.signature_type", 0),
            chain_id=config.get_int("polymarket.chain_id", POLYGON_CHAIN_ID),
            api_key=config.get_str("polymarket.api_key"),
            api_secret=config.get_str("polymarket.api_secret"),
            api_passphrase=config.get_str("polymarket.api_passphrase"),
            clob_url=config.get_str("polymarket.clob_url", DEFAULT_CLOB_URL),
            ws_url=config.get_str("polymarket.ws_url", DEFAULT_WS_URL),
            http_timeout=config.get_float("polymarket.http_timeout_seconds", 30.0),
            http_proxy=config.get_str("polymarket.http_proxy") or None,
            reconnect_base_delay=config.get_float("feed.reconnect_base_delay_seconds", 1.0),
            max_reconnect_attempts=config.get_int("feed.max_reconnect_attempts", 10),
            ping_interval=config.get_float("feed.ping_interval_seconds", 30.0),
        )

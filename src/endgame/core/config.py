"""
Configuration loading: TOML file with environment variable overrides.

Lookup order (first hit wins):
1. Explicit overrides (command-line flags)
2. Environment variables (ENDGAME_* prefix)
3. TOML file
4. Defaults passed by the caller
"""
import os
import tomllib
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional


class ConfigManager:
    """Dot-notation configuration access over a TOML document.

    Usage:
        config = ConfigManager(Path("config/default.toml"))
        level = config.get("bot.log_level", "INFO")
        ceiling = config.get_decimal("trading.max_total_exposure", Decimal("5000"))
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        env_prefix: str = "ENDGAME_",
        overrides: Optional[dict[str, Any]] = None,
    ) -> None:
        """Initialize ConfigManager.

        Args:
            config_path: TOML file to read (skipped if missing)
            env_prefix: Prefix for environment variable overrides
            overrides: Dot-notation values that beat both env and file,
                used for command-line flags
        """
        self._data: dict[str, Any] = {}
        self._env_prefix = env_prefix
        self._config_path = config_path
        self._overrides = dict(overrides or {})

        if config_path and config_path.exists():
            self._load_toml(config_path)

    def _load_toml(self, path: Path) -> None:
        with open(path, "rb") as f:
            self._data = tomllib.load(f)

    def _get_nested(self, data: dict[str, Any], key: str) -> tuple[bool, Any]:
        """Walk a dot-notation key. Returns (found, value)."""
        current: Any = data
        for part in key.split("."):
            if not isinstance(current, dict) or part not in current:
                return False, None
            current = current[part]
        return True, current

    def _env_key(self, key: str) -> str:
        return self._env_prefix + key.upper().replace(".", "_")

    def _get_env_value(self, key: str) -> tuple[bool, Any]:
        env_key = self._env_key(key)
        if env_key in os.environ:
            return True, self._parse_env_value(os.environ[env_key])
        return False, None

    def _parse_env_value(self, value: str) -> Any:
        """Coerce an environment string into bool, number, list or str."""
        lowered = value.lower()
        if lowered in ("true", "yes", "on"):
            return True
        if lowered in ("false", "no", "off"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if "," in value:
            return [v.strip() for v in value.split(",")]

        return value

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dot-notation key."""
        if key in self._overrides:
            return self._overrides[key]

        found, value = self._get_env_value(key)
        if found:
            return value

        found, value = self._get_nested(self._data, key)
        if found:
            return value

        return default

    def get_str(self, key: str, default: str = "") -> str:
        value = self.get(key)
        if value is None:
            return default
        return str(value)

    def get_decimal(self, key: str, default: Decimal = Decimal("0")) -> Decimal:
        """Get a value as Decimal (floats go through str to keep their digits)."""
        value = self.get(key)
        if value is None:
            return default
        return Decimal(str(value))

    def get_float(self, key: str, default: float = 0.0) -> float:
        value = self.get(key)
        if value is None:
            return default
        return float(value)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ("true", "1", "yes", "on")
        return bool(value)

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.get(key)
        if value is None:
            return default
        return int(value)


@dataclass(frozen=True)
class TradingSettings:
    """Thresholds and limits shared by scanner, detector, executor and ledger.

    All prices are probabilities in [0, 1]; sizes and money are USD.
    """

    min_profit_threshold: Decimal = Decimal("0.005")
    max_position_size: Decimal = Decimal("500")
    max_total_exposure: Decimal = Decimal("5000")
    default_order_size: Decimal = Decimal("100")
    min_certainty_price: Decimal = Decimal("0.98")
    strict_certainty_price: Decimal = Decimal("0.99")
    max_buy_price: Decimal = Decimal("0.995")
    daily_loss_limit: Decimal = Decimal("500")
    max_positions_per_market: int = 1

    market_scan_interval: float = 30.0
    order_book_refresh_interval: float = 1.0
    status_report_interval: float = 60.0

    opportunity_ttl: float = 5.0
    submission_delay: float = 0.1

    @classmethod
    def from_config(cls, config: ConfigManager) -> "TradingSettings":
        d = cls()
        return cls(
            min_profit_threshold=config.get_decimal(
                "trading.min_profit_threshold", d.min_profit_threshold
            ),
            max_position_size=config.get_decimal(
                "trading.max_position_size", d.max_position_size
            ),
            max_total_exposure=config.get_decimal(
                "trading.max_total_exposure", d.max_total_exposure
            ),
            default_order_size=config.get_decimal(
                "trading.default_order_size", d.default_order_size
            ),
            min_certainty_price=config.get_decimal(
                "trading.min_certainty_price", d.min_certainty_price
            ),
            strict_certainty_price=config.get_decimal(
                "trading.strict_certainty_price", d.strict_certainty_price
            ),
            max_buy_price=config.get_decimal("trading.max_buy_price", d.max_buy_price),
            daily_loss_limit=config.get_decimal(
                "trading.daily_loss_limit", d.daily_loss_limit
            ),
            max_positions_per_market=config.get_int(
                "trading.max_positions_per_market", d.max_positions_per_market
            ),
            market_scan_interval=config.get_float(
                "timing.market_scan_interval_seconds", d.market_scan_interval
            ),
            order_book_refresh_interval=config.get_float(
                "timing.order_book_refresh_seconds", d.order_book_refresh_interval
            ),
            status_report_interval=config.get_float(
                "timing.status_report_seconds", d.status_report_interval
            ),
            opportunity_ttl=config.get_float(
                "execution.opportunity_ttl_seconds", d.opportunity_ttl
            ),
            submission_delay=config.get_float(
                "execution.submission_delay_seconds", d.submission_delay
            ),
        )

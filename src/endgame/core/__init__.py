"""Core infrastructure - config, events, logging, lifecycle, scheduling."""

from endgame.core.config import ConfigManager, TradingSettings
from endgame.core.events import EventBus
from endgame.core.lifecycle import BaseComponent, HealthCheckResult, HealthStatus
from endgame.core.logging import setup_logging
from endgame.core.scheduler import Scheduler

__all__ = [
    "ConfigManager",
    "TradingSettings",
    "EventBus",
    "BaseComponent",
    "HealthCheckResult",
    "HealthStatus",
    "setup_logging",
    "Scheduler",
]

"""
Configuration management for TradeBridge
Loads configuration from YAML files and environment variables
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import yaml
from dotenv import load_dotenv


DEFAULT_SYMBOL_VARIANTS: Dict[str, List[str]] = {
    "XAUUSD": ["XAUUSD", "GOLD", "XAUUSDm", "XAUUSD.", "XAUUSD.r", "GOLDm", "GOLD.", "XAUUSD_o"],
    "XAGUSD": ["XAGUSD", "SILVER", "XAGUSDm", "XAGUSD.", "XAGUSD.r", "SILVERm", "SILVER.", "XAGUSD_o"],
    "BTCUSD": ["BTCUSD", "BTCUSDm", "BTCUSD.", "BITCOIN", "BTC/USD", "BTCUSD_o"],
    "ETHUSD": ["ETHUSD", "ETHUSDm", "ETHUSD.", "ETHEREUM", "ETH/USD", "ETHUSD_o"],
}

DEFAULT_TIMEFRAMES: Tuple[str, ...] = ("M1", "M5", "M15", "M30", "H1", "H4", "D1")


class Config:
    """Configuration manager for the TradeBridge execution layer"""

    def __init__(self, config_dir: str = "configs"):
        """
        Initialize configuration manager

        Args:
            config_dir: Directory containing configuration files
        """
        self.config_dir = Path(config_dir)
        self.project_root = Path(__file__).parent.parent.parent

        # Load environment variables
        load_dotenv(self.project_root / ".env")

        self.main_config = self._load_yaml("config.yaml")

    def _load_yaml(self, filename: str) -> Dict[str, Any]:
        """Load YAML configuration file, empty when the file is absent"""
        config_path = self.project_root / self.config_dir / filename
        if not config_path.exists():
            return {}

        with open(config_path, "r") as f:
            return yaml.safe_load(f) or {}

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key

        Args:
            key: Configuration key in dot notation (e.g., 'cache.price_ttl_ms')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self.main_config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def get_env(self, key: str, default: Any = None) -> Any:
        """Get environment variable"""
        return os.getenv(key, default)

    # MT5 Configuration
    @property
    def mt5_login(self) -> int:
        """Get MT5 login from environment"""
        login = self.get_env("MT5_LOGIN")
        if not login:
            raise ValueError(
                "MT5_LOGIN not set in .env file. "
                "Copy .env.example to .env and add your MT5 credentials."
            )
        return int(login)

    @property
    def mt5_password(self) -> str:
        """Get MT5 password from environment"""
        password = self.get_env("MT5_PASSWORD")
        if not password or password == "your_password_here":
            raise ValueError(
                "MT5_PASSWORD not set in .env file. "
                "Copy .env.example to .env and add your MT5 credentials."
            )
        return password

    @property
    def mt5_server(self) -> str:
        """Get MT5 server from environment"""
        server = self.get_env("MT5_SERVER")
        if not server:
            raise ValueError(
                "MT5_SERVER not set in .env file. "
                "Copy .env.example to .env and add your MT5 credentials."
            )
        return server

    @property
    def account_id(self) -> Optional[str]:
        """Trading account the caches are scoped to"""
        return self.get_env("ACCOUNT_ID", self.get("account.account_id"))

    # Cache / execution
    @property
    def price_ttl_ms(self) -> int:
        return int(self.get_env("PRICE_CACHE_TTL_MS", self.get("cache.price_ttl_ms", 1000)))

    @property
    def execution_timeout_ms(self) -> int:
        return int(self.get_env("EXECUTION_TIMEOUT_MS", self.get("execution.timeout_ms", 5000)))

    @property
    def slippage_points(self) -> int:
        return int(self.get_env("SLIPPAGE_POINTS", self.get("execution.slippage_points", 2)))

    @property
    def min_lot_size(self) -> float:
        return float(self.get_env("MIN_LOT_SIZE", self.get("validation.min_lot_size", 0.01)))

    @property
    def max_lot_size(self) -> float:
        return float(self.get_env("MAX_LOT_SIZE", self.get("validation.max_lot_size", 100)))

    # Directories
    @property
    def logs_dir(self) -> Path:
        """Get logs directory path"""
        logs_path = self.project_root / "logs"
        logs_path.mkdir(parents=True, exist_ok=True)
        return logs_path

    # Logging Configuration
    @property
    def log_level(self) -> str:
        """Get log level"""
        return self.get_env("LOG_LEVEL", self.get("logging.level", "INFO"))

    def __repr__(self) -> str:
        return f"Config(account={self.account_id}, ttl={self.price_ttl_ms}ms)"


@dataclass
class ExecutionSettings:
    """Resolved settings handed to each execution component"""

    price_ttl_ms: int = 1000
    execution_timeout_ms: int = 5000
    read_timeout_ms: int = 5000
    slippage_points: int = 2
    order_comment: str = "TRADEBRIDGE"
    magic_number: int = 29301991
    max_workers: int = 16
    min_lot_size: float = 0.01
    max_lot_size: float = 100.0
    min_sl_distance_points: float = 10
    min_tp_distance_points: float = 10
    default_stop: Optional[Dict] = field(default_factory=lambda: {"type": "points", "value": 50})
    default_target: Optional[Dict] = field(default_factory=lambda: {"type": "points", "value": 100})
    timeframes: Tuple[str, ...] = DEFAULT_TIMEFRAMES
    subscriber_queue_size: int = 100
    poll_interval_ms: int = 100
    symbol_variants: Dict[str, List[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_SYMBOL_VARIANTS.items()}
    )
    account_id: Optional[str] = None

    @classmethod
    def from_config(cls, config: Config) -> "ExecutionSettings":
        """Build settings from YAML + environment"""
        variants = {k: list(v) for k, v in DEFAULT_SYMBOL_VARIANTS.items()}
        for symbol, names in (config.get("symbols.variants") or {}).items():
            variants[symbol.upper()] = list(names)

        return cls(
            price_ttl_ms=config.price_ttl_ms,
            execution_timeout_ms=config.execution_timeout_ms,
            read_timeout_ms=int(config.get("execution.read_timeout_ms", 5000)),
            slippage_points=config.slippage_points,
            order_comment=config.get("execution.order_comment", "TRADEBRIDGE"),
            magic_number=int(config.get("execution.magic_number", 29301991)),
            max_workers=int(config.get("execution.max_workers", 16)),
            min_lot_size=config.min_lot_size,
            max_lot_size=config.max_lot_size,
            min_sl_distance_points=float(config.get("risk.min_sl_distance_points", 10)),
            min_tp_distance_points=float(config.get("risk.min_tp_distance_points", 10)),
            default_stop=config.get("risk.default_stop", {"type": "points", "value": 50}),
            default_target=config.get("risk.default_target", {"type": "points", "value": 100}),
            timeframes=tuple(config.get("market_data.timeframes", DEFAULT_TIMEFRAMES)),
            subscriber_queue_size=int(config.get("market_data.subscriber_queue_size", 100)),
            poll_interval_ms=int(config.get("market_data.poll_interval_ms", 100)),
            symbol_variants=variants,
            account_id=config.account_id,
        )

    @property
    def price_ttl(self) -> float:
        return self.price_ttl_ms / 1000.0

    @property
    def execution_timeout(self) -> float:
        return self.execution_timeout_ms / 1000.0

    @property
    def read_timeout(self) -> float:
        return self.read_timeout_ms / 1000.0


# Global configuration instance
_config = None


def get_config() -> Config:
    """Get global configuration instance (singleton)"""
    global _config
    if _config is None:
        _config = Config()
    return _config

"""Engine configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings


class ConfigError(Exception):
    """Raised at startup when a required setting is missing or invalid."""


class EngineConfig(BaseSettings):
    """All engine constants, overridable via CONVERGENCE_* env vars."""

    # --- Storage ---
    DB_PATH: str = "data/convergence.db"

    # --- Hyperliquid ---
    HL_INFO_URL: str = "https://api.hyperliquid.xyz/info"
    HL_LEADERBOARD_URL: str = "https://stats-data.hyperliquid.xyz/Mainnet/leaderboard"
    HTTP_TIMEOUT: float = 15.0
    PRICE_STALE_SECONDS: float = 120.0

    # --- HTTP API ---
    API_KEY: str = ""
    REQUIRE_API_KEY: bool = False

    # --- Quality tiers ---
    ELITE_MIN_PNL_7D: float = 25_000
    ELITE_MIN_PNL_30D: float = 25_000
    ELITE_MIN_WIN_RATE: float = 0.50
    ELITE_MIN_TRADES: int = 15
    ELITE_MIN_PROFIT_FACTOR: float = 1.5

    GOOD_MIN_PNL_7D: float = 5_000
    GOOD_MIN_PNL_30D: float = 5_000
    GOOD_MIN_WIN_RATE: float = 0.48
    GOOD_MIN_TRADES: int = 8
    GOOD_MIN_PROFIT_FACTOR: float = 1.2

    MIN_TRADES_TO_CLASSIFY: int = 5
    QUALITY_LOOKBACK_DAYS: int = 30

    # --- Signal eligibility ---
    MIN_AGREEMENT: float = 0.65
    MIN_ELITE_FOR_SIGNAL: int = 1
    MIN_GOOD_FOR_SIGNAL: int = 2
    MIN_COMBINED_PNL_7D: float = 10_000
    MIN_AVG_WIN_RATE: float = 0.50

    # --- Signal levels ---
    LIQ_STOP_BUFFER: float = 0.20
    MIN_STOP_DISTANCE: float = 0.03
    DEFAULT_STOP_PCT: float = 0.03
    ENTRY_RANGE_FALLBACK_PCT: float = 0.01
    MAX_RISK_PER_TRADE: float = 0.02
    MAX_SUGGESTED_LEVERAGE: float = 10.0

    # --- Signal strength ---
    STRONG_MIN_ELITE: int = 2
    STRONG_MIN_GOOD: int = 4
    STRONG_MIXED: dict = Field(default={"elite": 1, "good": 2})

    # --- Lifecycle ---
    EXPIRY_HOURS: float = 4.0
    SIGNAL_RETENTION_DAYS: int = 90
    POSITION_STALE_MINUTES: int = 30

    # --- Batching ---
    BATCH_SIZE: int = 10
    BATCH_DELAY_SECONDS: float = 0.5
    ITEM_TIMEOUT_SECONDS: float = 20.0

    # --- Snapshot buffer ---
    BUFFER_MAX_SIZE: int = 50
    BUFFER_MAX_AGE_SECONDS: float = 10.0

    # --- Discovery ---
    DISCOVERY_MIN_MONTH_PNL: float = 10_000
    DISCOVERY_MIN_ACCOUNT_VALUE: float = 50_000
    DISCOVERY_MAX_WALLETS: int = 200

    # --- Scheduler intervals (seconds) ---
    POSITION_REFRESH_INTERVAL: int = 60
    SYNTHESIS_INTERVAL: int = 300
    SIGNAL_TRACKING_INTERVAL: int = 30
    EXPIRY_SWEEP_INTERVAL: int = 60
    QUALITY_REEVAL_INTERVAL: int = 6 * 3600
    DISCOVERY_INTERVAL: int = 24 * 3600
    RETENTION_INTERVAL: int = 24 * 3600

    # --- Performance reads ---
    PERFORMANCE_LOOKBACK_DAYS: int = 30

    # --- Backtest ---
    BACKTEST_MAX_HOURS: int = 168
    BACKTEST_LOOKBACK_DAYS: int = 180
    BACKTEST_MAX_SIGNALS: int = 500

    model_config = {
        "env_prefix": "CONVERGENCE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def validate_required(self) -> None:
        """Refuse to start without the settings the process cannot run without."""
        if not self.DB_PATH:
            raise ConfigError("CONVERGENCE_DB_PATH must be set")
        if not self.HL_INFO_URL:
            raise ConfigError("CONVERGENCE_HL_INFO_URL must be set")
        if self.REQUIRE_API_KEY and not self.API_KEY:
            raise ConfigError("CONVERGENCE_API_KEY is required when CONVERGENCE_REQUIRE_API_KEY is set")

"""Core data structures for the convergence signal engine.

Domain records are plain dataclasses.  Raw Hyperliquid ``/info`` payloads are
parsed with Pydantic v2 models at the client boundary and converted into the
domain records before any engine code sees them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

ISO_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Format a datetime as a sortable UTC ISO string."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(ISO_FORMAT)


def parse_iso(value: str) -> datetime:
    """Parse an ISO string written by :func:`to_iso` (or any ISO 8601 form)."""
    try:
        return datetime.strptime(value, ISO_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt


def from_millis(ms: int | float) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def to_millis(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class QualityTier(Enum):
    ELITE = "elite"
    GOOD = "good"
    UNQUALIFIED = "unqualified"

    @property
    def rank(self) -> int:
        """Total order used for tier comparisons: unqualified < good < elite."""
        return {"unqualified": 0, "good": 1, "elite": 2}[self.value]


class Direction(Enum):
    LONG = "long"
    SHORT = "short"


class SignalStrength(Enum):
    STRONG = "strong"
    MEDIUM = "medium"


class Outcome(Enum):
    STOPPED = "stopped"
    TP1 = "tp1"
    TP2 = "tp2"
    TP3 = "tp3"
    EXPIRED = "expired"
    CLOSED = "closed"
    OPEN = "open"


# ---------------------------------------------------------------------------
# Wallet quality
# ---------------------------------------------------------------------------


@dataclass
class ClosedTrade:
    """A fill that realized PnL."""

    coin: str
    closed_pnl: float
    timestamp: datetime
    notional: float = 0.0


@dataclass
class WalletQuality:
    address: str
    tier: QualityTier = QualityTier.UNQUALIFIED
    pnl_7d: float = 0.0
    pnl_30d: float = 0.0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    trade_count: int = 0
    account_value: float = 0.0
    is_tracked: bool = False
    analyzed_at: datetime | None = None


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------


@dataclass
class Position:
    """Latest known open position for one (wallet, coin)."""

    wallet: str
    coin: str
    size: float  # signed: negative for shorts
    entry_price: float
    leverage: float
    liquidation_price: float | None
    notional_value: float
    unrealized_pnl: float = 0.0
    updated_at: datetime | None = None

    @property
    def direction(self) -> Direction:
        return Direction.LONG if self.size > 0 else Direction.SHORT


@dataclass
class WalletSnapshot:
    """One wallet's full set of open positions at fetch time."""

    address: str
    positions: list[Position]
    account_value: float
    fetched_at: datetime


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------


@dataclass
class TraderPosition:
    """A quality-tiered wallet's position inside a convergence group."""

    address: str
    tier: QualityTier
    entry_price: float
    leverage: float
    liquidation_price: float | None
    notional_value: float
    pnl_7d: float
    pnl_30d: float
    win_rate: float
    profit_factor: float


@dataclass
class SignalCandidate:
    """Per-coin dominant-side group computed each synthesis cycle."""

    coin: str
    direction: Direction
    elite_traders: list[TraderPosition] = field(default_factory=list)
    good_traders: list[TraderPosition] = field(default_factory=list)
    opposing_count: int = 0
    directional_agreement: float = 0.0
    combined_pnl_7d: float = 0.0
    combined_pnl_30d: float = 0.0
    avg_win_rate: float = 0.0
    avg_profit_factor: float = 0.0
    avg_leverage: float = 0.0
    total_position_value: float = 0.0

    @property
    def elite_count(self) -> int:
        return len(self.elite_traders)

    @property
    def good_count(self) -> int:
        return len(self.good_traders)

    @property
    def members(self) -> list[TraderPosition]:
        return self.elite_traders + self.good_traders


@dataclass
class Signal:
    coin: str
    direction: Direction
    elite_count: int
    good_count: int
    total_traders: int
    combined_pnl_7d: float
    avg_win_rate: float
    avg_profit_factor: float
    total_position_value: float
    suggested_entry: float
    entry_range_low: float
    entry_range_high: float
    stop_loss: float
    stop_distance_pct: float
    take_profit_1: float
    take_profit_2: float
    take_profit_3: float
    suggested_leverage: float
    risk_score: int
    confidence: int
    signal_strength: SignalStrength
    opposing_count: int = 0
    directional_agreement: float = 0.0
    traders: list[str] = field(default_factory=list)
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None
    expires_at: datetime | None = None
    invalidated_at: datetime | None = None
    invalidation_reason: str | None = None
    # Live tracking, filled in by the signal tracker
    entry_price: float | None = None
    current_price: float | None = None
    current_pnl_pct: float | None = None
    max_pnl_pct: float = 0.0
    min_pnl_pct: float = 0.0
    peak_price: float | None = None
    trough_price: float | None = None
    hit_stop: bool = False
    hit_tp1: bool = False
    hit_tp2: bool = False
    hit_tp3: bool = False
    outcome: Outcome | None = None
    final_pnl_pct: float | None = None
    closed_at: datetime | None = None
    id: int | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.coin, self.direction.value)


@dataclass
class SignalTracking:
    """One price observation applied to an active signal.

    ``outcome`` is set only when this observation closes the signal.
    """

    signal_id: int
    current_price: float
    current_pnl_pct: float
    max_pnl_pct: float
    min_pnl_pct: float
    peak_price: float
    trough_price: float
    hit_stop: bool = False
    hit_tp1: bool = False
    hit_tp2: bool = False
    hit_tp3: bool = False
    outcome: Outcome | None = None
    close_reason: str | None = None


@dataclass
class Candle:
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


# ---------------------------------------------------------------------------
# Raw Hyperliquid payloads: POST /info
# ---------------------------------------------------------------------------


class HlLeverage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = "cross"
    value: float = 1.0


class HlPosition(BaseModel):
    """``assetPositions[].position`` from ``clearinghouseState``.

    Numeric values arrive as strings; Pydantic coerces them to floats.
    """

    model_config = ConfigDict(populate_by_name=True)

    coin: str
    szi: float
    entry_px: float | None = Field(default=None, alias="entryPx")
    position_value: float = Field(default=0.0, alias="positionValue")
    unrealized_pnl: float = Field(default=0.0, alias="unrealizedPnl")
    liquidation_px: float | None = Field(default=None, alias="liquidationPx")
    leverage: HlLeverage = Field(default_factory=HlLeverage)


class HlAssetPosition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str | None = None
    position: HlPosition


class HlMarginSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_value: float = Field(default=0.0, alias="accountValue")


class HlClearinghouseState(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    margin_summary: HlMarginSummary = Field(
        default_factory=HlMarginSummary, alias="marginSummary"
    )
    asset_positions: list[HlAssetPosition] = Field(
        default_factory=list, alias="assetPositions"
    )


class HlFill(BaseModel):
    """A single fill from ``userFillsByTime``.

    ``closed_pnl`` is the realized PnL of the fill (0 for opens/adds).
    """

    model_config = ConfigDict(populate_by_name=True)

    coin: str
    px: float
    sz: float
    side: str
    time: int
    closed_pnl: float = Field(default=0.0, alias="closedPnl")
    dir: str | None = None
    hash: str | None = None
    fee: float | None = None


class HlCandle(BaseModel):
    """One entry of ``candleSnapshot``."""

    model_config = ConfigDict(populate_by_name=True)

    t: int
    o: float
    h: float
    l: float  # noqa: E741
    c: float
    v: float = 0.0

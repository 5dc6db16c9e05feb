"""Enumerations used across the intelligence core."""

from enum import Enum


class Direction(str, Enum):
    LONG = "long"
    SHORT = "short"


class Resolution(str, Enum):
    """Win / loss / break-even classification of a closed prediction."""

    WIN = "win"
    LOSS = "loss"
    BREAKEVEN = "breakeven"


class AssetType(str, Enum):
    STOCK = "stock"
    PENNY_STOCK = "penny_stock"
    OPTION = "option"
    CRYPTO = "crypto"
    FUTURE = "future"


class CatalystCategory(str, Enum):
    EARNINGS = "earnings"
    FDA_APPROVAL = "fda_approval"
    GOVERNMENT_CONTRACT = "government_contract"
    MERGER_ACQUISITION = "merger_acquisition"
    PRODUCT_LAUNCH = "product_launch"
    ANALYST_UPGRADE = "analyst_upgrade"
    ANALYST_DOWNGRADE = "analyst_downgrade"
    INSIDER_BUYING = "insider_buying"
    INSIDER_SELLING = "insider_selling"
    TECHNICAL_BREAKOUT = "technical_breakout"
    MOMENTUM_SURGE = "momentum_surge"
    SECTOR_ROTATION = "sector_rotation"
    MACRO_EVENT = "macro_event"
    AI_NEWS = "ai_news"
    QUANTUM_NEWS = "quantum_news"
    CRYPTO_NEWS = "crypto_news"
    OTHER = "other"


class ConfidenceTier(str, Enum):
    """Sample-size label gating how far a signal statistic is trusted."""

    UNTESTED = "untested"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class Freshness(str, Enum):
    """Derived-cache state. There is no partially fresh state."""

    STALE = "stale"
    FRESH = "fresh"


class WeightSource(str, Enum):
    COMPUTED = "computed"
    OVERRIDDEN = "overridden"

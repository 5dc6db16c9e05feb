"""Keyword categorisation of free-text catalysts.

Ideas arrive with a human-written catalyst ("Q3 earnings beat, guidance
raised").  Grouping by catalyst needs a closed vocabulary, so free text is
mapped onto :class:`CatalystCategory` by first keyword match in the
declaration order below.
"""

from __future__ import annotations

from .enums import CatalystCategory

CATALYST_KEYWORDS: dict[CatalystCategory, tuple[str, ...]] = {
    CatalystCategory.EARNINGS: (
        "earnings", "eps", "revenue", "quarterly", "annual report",
        "guidance", "beat", "miss",
    ),
    CatalystCategory.FDA_APPROVAL: (
        "fda", "approval", "drug", "clinical trial", "phase", "therapeutic",
    ),
    CatalystCategory.GOVERNMENT_CONTRACT: (
        "government", "contract", "dod", "pentagon", "defense", "federal",
        "military",
    ),
    CatalystCategory.MERGER_ACQUISITION: (
        "merger", "acquisition", "buyout", "takeover", "m&a", "consolidation",
    ),
    CatalystCategory.PRODUCT_LAUNCH: (
        "launch", "product", "release", "unveil", "announcement",
    ),
    CatalystCategory.ANALYST_UPGRADE: (
        "upgrade", "buy rating", "outperform", "price target raised",
    ),
    CatalystCategory.ANALYST_DOWNGRADE: (
        "downgrade", "sell rating", "underperform", "price target lowered",
    ),
    CatalystCategory.INSIDER_BUYING: (
        "insider buying", "insider purchase", "ceo bought", "director bought",
    ),
    CatalystCategory.INSIDER_SELLING: (
        "insider selling", "insider sale", "ceo sold", "director sold",
    ),
    CatalystCategory.TECHNICAL_BREAKOUT: (
        "breakout", "resistance", "support", "technical", "chart pattern",
        "golden cross",
    ),
    CatalystCategory.MOMENTUM_SURGE: (
        "momentum", "surge", "spike", "unusual volume", "flow",
    ),
    CatalystCategory.SECTOR_ROTATION: (
        "sector", "rotation", "industry trend",
    ),
    CatalystCategory.MACRO_EVENT: (
        "fed", "fomc", "interest rate", "inflation", "cpi", "jobs report",
        "gdp",
    ),
    CatalystCategory.AI_NEWS: (
        "artificial intelligence", "machine learning", "nvidia", "gpu",
        "data center", " ai ",
    ),
    CatalystCategory.QUANTUM_NEWS: (
        "quantum", "qubit", "ionq", "rigetti",
    ),
    CatalystCategory.CRYPTO_NEWS: (
        "crypto", "bitcoin", "ethereum", "blockchain", "defi", "nft",
    ),
}


def categorize_catalyst(text: str | None) -> CatalystCategory:
    """Map catalyst free text to a category (``OTHER`` when nothing matches)."""
    if not text:
        return CatalystCategory.OTHER
    # Pad so short tokens like " ai " only match whole words
    lowered = f" {text.lower()} "
    for category, keywords in CATALYST_KEYWORDS.items():
        for keyword in keywords:
            if keyword in lowered:
                return category
    return CatalystCategory.OTHER

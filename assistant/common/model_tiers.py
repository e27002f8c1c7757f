"""
Model Tier System for pipeline model calls.

Two tiers are used by the pipeline:
- FAST: short classification / ranking calls (page classifier fallback,
  per-chunk relevance ranking)
- GENERAL: longer structured extraction (job detail, company facts)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict

from assistant.common.config import Config


class ModelTier(str, Enum):
    """Model tiers for completion calls."""

    FAST = "fast"
    GENERAL = "general"


@dataclass
class TierModelConfig:
    """Model assignment and default limits for a tier."""

    tier: ModelTier
    model: str
    default_max_tokens: int
    default_timeout_ms: int


TIER_CONFIGS: Dict[ModelTier, TierModelConfig] = {
    ModelTier.FAST: TierModelConfig(
        tier=ModelTier.FAST,
        model=Config.FAST_MODEL,
        default_max_tokens=512,
        default_timeout_ms=30000,
    ),
    ModelTier.GENERAL: TierModelConfig(
        tier=ModelTier.GENERAL,
        model=Config.GENERAL_MODEL,
        default_max_tokens=2048,
        default_timeout_ms=Config.LLM_TIMEOUT_MS,
    ),
}

from .dual_tier import DualTierCache, truncate_recent
from .memory import MemoryTier

__all__ = ["DualTierCache", "MemoryTier", "truncate_recent"]

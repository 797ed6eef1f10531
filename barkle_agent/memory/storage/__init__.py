from .memories import MemoryMemoriesMixin
from .messages import MemoryMessagesMixin
from .processed_events import MemoryProcessedEventsMixin
from .rate_limits import MemoryRateLimitsMixin, RateDecision
from .schema import MemorySchemaMixin

__all__ = [
    "MemorySchemaMixin",
    "MemoryMessagesMixin",
    "MemoryRateLimitsMixin",
    "MemoryProcessedEventsMixin",
    "MemoryMemoriesMixin",
    "RateDecision",
]

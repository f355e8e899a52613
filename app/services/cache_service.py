"""In-process result cache for comparable searches.

Key = canonical criteria serialization + index version + learning-store
version, so a hit is always identical to a fresh computation against the
same snapshot. TTL and size bound follow settings.result_cache_*.

The key does not carry the clock. A relationship that decays below the
nearby floor keeps serving its cached nearby-urbanization result until the
entry expires, so staleness is bounded by the TTL. Settings rejects a TTL
above 1% of the relationship half-life.
"""
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Optional

from app.config import settings
from app.core.logging import get_logger
from app.schemas.search_schema import ComparablesResult, SearchCriteria

logger = get_logger(__name__)


class ResultCache:
    def __init__(self, ttl_seconds: Optional[int] = None, max_entries: Optional[int] = None):
        self.ttl_seconds = settings.result_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.max_entries = settings.result_cache_max_entries if max_entries is None else max_entries
        self._entries: OrderedDict[str, tuple[datetime, ComparablesResult]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(criteria: SearchCriteria, index_version: int, store_version: int) -> str:
        return f"{index_version}:{store_version}:{criteria.cache_key()}"

    def get(self, key: str) -> Optional[ComparablesResult]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        stored_at, result = entry
        if (datetime.now(timezone.utc) - stored_at).total_seconds() >= self.ttl_seconds:
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return result.model_copy(deep=True)

    def put(self, key: str, result: ComparablesResult) -> None:
        if self.max_entries <= 0:
            return
        self._entries[key] = (datetime.now(timezone.utc), result.model_copy(deep=True))
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def invalidate(self, *_args) -> None:
        if self._entries:
            logger.debug("Result cache cleared (%d entries)", len(self._entries))
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

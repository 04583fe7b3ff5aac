from typing import Dict, Any, Awaitable, Callable, Optional
import asyncio
from datetime import datetime, timedelta, timezone

from infrastructure.config import get_config

TokenCounter = Callable[[str], Awaitable[int]]


def as_token_counter(tokenizer: Any) -> TokenCounter:
    """Normalize an async callable or an object with get_token_count() into a TokenCounter"""

    get_token_count = getattr(tokenizer, "get_token_count", None)
    if get_token_count is not None and callable(get_token_count):
        return get_token_count
    if callable(tokenizer):
        return tokenizer
    raise TypeError(f"Unsupported tokenizer: {type(tokenizer).__name__}")


class CachedTokenCounter:
    """Token counter wrapper that memoizes counts per text with TTL support.

    Expired counts are evicted whenever a new count is stored.
    """

    def __init__(self, tokenizer: Any, ttl: Optional[int] = None):
        self.count_tokens = as_token_counter(tokenizer)
        self.ttl = ttl if ttl is not None else get_config().tokenizer_cache_ttl
        self.cache: Dict[str, Dict[str, Any]] = {}
        self.hits = 0
        self.misses = 0
        self._lock = asyncio.Lock()

    async def __call__(self, text: str) -> int:
        return await self.get_token_count(text)

    async def get_token_count(self, text: str) -> int:
        """Return the cached count for text, asking the tokenizer on a miss"""

        async with self._lock:
            entry = self.cache.get(text)
            if entry is not None:
                if datetime.now(timezone.utc) <= entry["expires_at"]:
                    self.hits += 1
                    return entry["value"]
                del self.cache[text]
            self.misses += 1

        count = await self.count_tokens(text)

        async with self._lock:
            now = datetime.now(timezone.utc)
            self._evict_expired(now)
            self.cache[text] = {
                "value": count,
                "expires_at": now + timedelta(seconds=self.ttl)
            }

        return count

    async def clear_expired(self) -> int:
        """Clear expired entries and return count"""

        async with self._lock:
            return self._evict_expired(datetime.now(timezone.utc))

    def _evict_expired(self, now: datetime) -> int:
        expired_keys = [
            key for key, entry in self.cache.items()
            if now > entry["expires_at"]
        ]

        for key in expired_keys:
            del self.cache[key]

        return len(expired_keys)

    async def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""

        async with self._lock:
            return {
                "total_keys": len(self.cache),
                "hits": self.hits,
                "misses": self.misses
            }

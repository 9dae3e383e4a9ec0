"""
Redis cache for the sector catalog.
Sectors change rarely and are read on every pincode lookup, so lists and
lookups are cached with a TTL and dropped on any sector write.
"""
import json
from typing import Optional, Any, List
from redis.asyncio import Redis

from backend.app.core.config import REDIS_HOST, REDIS_PORT, REDIS_DB


class CacheService:
    """Service for caching operations using Redis."""

    _redis: Optional[Redis] = None

    # Default TTL values (in seconds)
    TTL_SECTORS = 3600         # 1 hour - sectors rarely change
    TTL_DEFAULT = 300          # 5 minutes - default for other data

    # Cache key prefixes
    KEY_SECTORS = "sectors:all"
    KEY_SECTORS_CITY = "sectors:city:{city_name}"
    KEY_PINCODE = "sectors:pincode:{pincode}"

    @classmethod
    async def get_redis(cls) -> Redis:
        """Get or create Redis connection."""
        if cls._redis is None:
            cls._redis = Redis(
                host=REDIS_HOST,
                port=REDIS_PORT,
                db=REDIS_DB,
                decode_responses=True
            )
        return cls._redis

    @classmethod
    async def close(cls):
        """Close Redis connection."""
        if cls._redis:
            await cls._redis.close()
            cls._redis = None

    def __init__(self, redis: Redis):
        self.redis = redis

    async def get(self, key: str) -> Optional[Any]:
        data = await self.redis.get(key)
        if data:
            return json.loads(data)
        return None

    async def set(self, key: str, value: Any, ttl: int = TTL_DEFAULT):
        await self.redis.set(key, json.dumps(value, ensure_ascii=False), ex=ttl)

    async def delete(self, key: str):
        await self.redis.delete(key)

    async def delete_pattern(self, pattern: str):
        """Delete all keys matching pattern."""
        keys = await self.redis.keys(pattern)
        if keys:
            await self.redis.delete(*keys)

    # ----- Sector catalog -----

    def _sectors_key(self, city_name: Optional[str]) -> str:
        if city_name:
            return self.KEY_SECTORS_CITY.format(city_name=city_name.lower())
        return self.KEY_SECTORS

    async def get_sectors(self, city_name: Optional[str] = None) -> Optional[List[dict]]:
        return await self.get(self._sectors_key(city_name))

    async def set_sectors(self, sectors: List[dict], city_name: Optional[str] = None):
        await self.set(self._sectors_key(city_name), sectors, self.TTL_SECTORS)

    async def get_sector_for_pincode(self, pincode: str) -> Optional[dict]:
        return await self.get(self.KEY_PINCODE.format(pincode=pincode))

    async def set_sector_for_pincode(self, pincode: str, sector: dict):
        await self.set(self.KEY_PINCODE.format(pincode=pincode), sector, self.TTL_SECTORS)

    async def invalidate_sectors(self):
        """Drop every cached sector list and pincode lookup."""
        await self.delete_pattern("sectors:*")

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time

import redis.asyncio as redis

from ..clients.github import GitHubClient
from ..config import Settings
from ..models.analysis import GitHubStats

logger = logging.getLogger(__name__)


class GitHubStatsService:
    """GitHub metrics with a short-lived cache keyed by a hash of the access token."""

    def __init__(self, client: GitHubClient, settings: Settings) -> None:
        self._client = client
        self._ttl = max(0, int(settings.github_cache_ttl_seconds))
        self._cache: dict[str, tuple[float, GitHubStats]] = {}
        self._cache_lock = asyncio.Lock()

        self._cache_backend = settings.cache_backend.lower()
        self._cache_namespace = settings.cache_namespace
        self._redis_client = self._initialise_redis(settings)

    def _initialise_redis(self, settings: Settings):
        if self._cache_backend != 'redis':
            return None
        if not settings.redis_url:
            logger.warning('CACHE_BACKEND=redis but REDIS_URL is not configured; falling back to memory cache')
            return None
        client = redis.from_url(settings.redis_url, encoding='utf-8', decode_responses=True)
        logger.info('Redis cache enabled (namespace=%s)', self._cache_namespace)
        return client

    @staticmethod
    def _token_key(access_token: str) -> str:
        return hashlib.sha256(access_token.encode('utf-8')).hexdigest()

    async def get_stats(self, access_token: str, force_refresh: bool = False) -> GitHubStats:
        key = self._token_key(access_token)
        cached = self._from_memory(key, force_refresh)
        if cached is not None:
            return cached

        async with self._cache_lock:
            cached = self._from_memory(key, force_refresh)
            if cached is not None:
                return cached

            if not force_refresh and self._redis_client:
                stored = await self._load_from_redis(key)
                if stored is not None:
                    self._cache[key] = (time.monotonic(), stored)
                    logger.debug('Loaded GitHub stats for %s from redis cache', stored.username)
                    return stored

            stats = await self._client.fetch_stats(access_token)
            self._prune_expired()
            self._cache[key] = (time.monotonic(), stats)
            if self._redis_client:
                await self._store_in_redis(key, stats)
            logger.debug('Fetched GitHub stats for %s', stats.username)
            return stats

    def _from_memory(self, key: str, force_refresh: bool) -> GitHubStats | None:
        if force_refresh or self._ttl <= 0:
            return None
        entry = self._cache.get(key)
        if entry is None:
            return None
        if (time.monotonic() - entry[0]) < self._ttl:
            return entry[1]
        self._cache.pop(key, None)
        return None

    def _prune_expired(self) -> None:
        cutoff = time.monotonic() - self._ttl
        for key in [key for key, (stored_at, _) in self._cache.items() if stored_at <= cutoff]:
            del self._cache[key]

    async def _load_from_redis(self, key: str) -> GitHubStats | None:
        try:
            payload = await self._redis_client.get(f'{self._cache_namespace}:github:{key}')
        except redis.RedisError:
            logger.exception('Unable to read GitHub stats from redis')
            return None
        if not payload:
            return None
        try:
            return GitHubStats.model_validate(json.loads(payload))
        except (json.JSONDecodeError, ValueError):
            logger.warning('Invalid GitHub stats payload in redis cache; ignoring')
            return None

    async def _store_in_redis(self, key: str, stats: GitHubStats) -> None:
        if self._ttl <= 0:
            return
        try:
            await self._redis_client.set(
                f'{self._cache_namespace}:github:{key}',
                stats.model_dump_json(by_alias=True),
                ex=self._ttl,
            )
        except redis.RedisError:
            logger.exception('Failed to persist GitHub stats to redis')

    async def close(self) -> None:
        if self._redis_client is not None:
            await self._redis_client.aclose()

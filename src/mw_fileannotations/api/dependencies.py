from functools import lru_cache

import httpx
import redis.asyncio as redis

from ..config import settings
from ..wiki.api_client import MediaWikiClient
from ..annotations.store import AnnotationStore
from ..annotations.orchestrator import AnnotationBatchRenderer
from ..cache.coordinator import CacheCoordinator
from ..cache.store import CacheStore, InMemoryCacheStore
from ..cache.redis_store import RedisCacheStore
from ..cache.watermarks import InMemoryWatermarkStore, RedisWatermarkStore, WatermarkStore
from ..enrichment.fetchers import (
    CommonsCategoryFetcher,
    ImagePropertyDiscovery,
    RemoteApiClient,
    WdImageFetcher,
    WikidataEntityFetcher,
    WikipediaArticleFetcher,
)
from ..enrichment.pipeline import AnnotationEnricher


@lru_cache
def get_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=settings.http_timeout_seconds,
        follow_redirects=True,
    )


@lru_cache
def get_redis_client() -> redis.Redis:
    return redis.from_url(settings.redis_url, decode_responses=True)


@lru_cache
def get_mw_client() -> MediaWikiClient:
    return MediaWikiClient(client=get_http_client())


@lru_cache
def get_annotation_store() -> AnnotationStore:
    return AnnotationStore(get_mw_client())


@lru_cache
def get_cache_store() -> CacheStore:
    if settings.cache_backend == "redis":
        return RedisCacheStore(client=get_redis_client())
    return InMemoryCacheStore()


@lru_cache
def get_watermarks() -> WatermarkStore:
    if settings.cache_backend == "redis":
        return RedisWatermarkStore(get_redis_client())
    return InMemoryWatermarkStore()


@lru_cache
def get_coordinator() -> CacheCoordinator:
    return CacheCoordinator(get_cache_store())


@lru_cache
def get_enricher() -> AnnotationEnricher:
    api = RemoteApiClient(get_http_client())
    discovery = ImagePropertyDiscovery(api)
    return AnnotationEnricher(
        coordinator=get_coordinator(),
        watermarks=get_watermarks(),
        commons=CommonsCategoryFetcher(api),
        wikipedia=WikipediaArticleFetcher(api),
        wikidata=WikidataEntityFetcher(api, discovery, WdImageFetcher(api)),
        discovery=discovery,
    )


@lru_cache
def get_batch_renderer() -> AnnotationBatchRenderer:
    return AnnotationBatchRenderer(
        store=get_annotation_store(),
        renderer=get_mw_client(),
        enricher=get_enricher(),
    )

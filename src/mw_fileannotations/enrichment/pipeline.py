"""
Enrichment Pipeline

classify -> (cache-wrapped) fetch -> render, for one rendered annotation.

Each enrichment kind contributes only a compute function; caching,
single-flight, elastic TTL, freshness floors and purging all live in the
cache coordinator.
"""

from __future__ import annotations

import json
import logging
from typing import List, Optional
from urllib.parse import quote, urlsplit

from ..auth.models import UserContext
from ..cache.coordinator import CacheCoordinator, ComputeResult
from ..cache.watermarks import WatermarkStore
from ..config import settings
from ..core.errors import CacheBackendFailure
from .classifier import classify
from .fetchers import (
    CommonsCategoryFetcher,
    ImagePropertyDiscovery,
    WikidataEntityFetcher,
    WikipediaArticleFetcher,
)
from .models import CommonsCategory, FetchFailed, WikidataEntity, WikipediaArticle
from .renderers import render_commons_category, render_wikidata_entity, render_wikipedia_article

logger = logging.getLogger("fa.enrich")

KEY_PREFIX = "fileannotations"


def make_key(*parts: str) -> str:
    return ":".join([KEY_PREFIX, *(quote(part, safe="") for part in parts)])


IMAGE_PROPERTIES_KEY = make_key("wdimageprops")


def _cacheable(result) -> bool:
    return not (isinstance(result, FetchFailed) and result.is_transient)


class AnnotationEnricher:
    """
    Replaces a rendered annotation that is a lone link to a Commons
    category, Wikipedia article or Wikidata entity with an enriched
    fragment. Anything else passes through untouched.
    """

    def __init__(
        self,
        coordinator: CacheCoordinator,
        watermarks: WatermarkStore,
        commons: CommonsCategoryFetcher,
        wikipedia: WikipediaArticleFetcher,
        wikidata: WikidataEntityFetcher,
        discovery: ImagePropertyDiscovery,
        commons_base_url: Optional[str] = None,
    ) -> None:
        self._coordinator = coordinator
        self._watermarks = watermarks
        self._commons = commons
        self._wikipedia = wikipedia
        self._wikidata = wikidata
        self._discovery = discovery
        self._commons_base_url = commons_base_url or settings.commons_base_url
        discovery.cached = self.image_properties

    async def enrich(self, rendered: str, viewer: UserContext) -> str:
        link = classify(rendered)
        if link is None:
            return rendered

        logger.debug("Enriching %s", link)

        if isinstance(link, CommonsCategory):
            return await self._commons_category(link, viewer)
        if isinstance(link, WikipediaArticle):
            return await self._wikipedia_article(link, viewer)
        if isinstance(link, WikidataEntity):
            return await self._wikidata_entity(link, viewer)
        return rendered

    # ------------------------------------------------------------------
    # Per-kind compute functions
    # ------------------------------------------------------------------

    async def _commons_category(self, link: CommonsCategory, viewer: UserContext) -> str:
        async def compute() -> ComputeResult:
            result = await self._commons.fetch(link.name)
            return ComputeResult(
                render_commons_category(link, result, self._commons_base_url),
                cacheable=_cacheable(result),
            )

        return await self._coordinator.get_or_compute(
            make_key("commonscategory", link.name),
            compute,
            min_as_of=await self._floor(viewer, "commons"),
        )

    async def _wikipedia_article(self, link: WikipediaArticle, viewer: UserContext) -> str:
        async def compute() -> ComputeResult:
            result = await self._wikipedia.fetch(link)
            return ComputeResult(render_wikipedia_article(result), cacheable=_cacheable(result))

        return await self._coordinator.get_or_compute(
            make_key("wikipediapage", link.host, link.article),
            compute,
            min_as_of=await self._floor(viewer, urlsplit(link.host).netloc),
        )

    async def _wikidata_entity(self, link: WikidataEntity, viewer: UserContext) -> str:
        language = viewer.language

        async def compute() -> ComputeResult:
            result = await self._wikidata.fetch(link.entity_id, language)
            cacheable = _cacheable(result) and not getattr(result, "image_failed", False)
            return ComputeResult(render_wikidata_entity(result, language), cacheable=cacheable)

        return await self._coordinator.get_or_compute(
            make_key("wikidataentity", language, link.entity_id),
            compute,
            min_as_of=await self._floor(viewer, "wikidata"),
        )

    async def image_properties(self) -> List[str]:
        """Discovered image properties, cached for months without a floor."""

        async def compute() -> ComputeResult:
            discovered = await self._discovery.discover()
            if isinstance(discovered, FetchFailed):
                return ComputeResult("[]", cacheable=False)
            return ComputeResult(json.dumps(discovered))

        raw = await self._coordinator.get_or_compute(
            IMAGE_PROPERTIES_KEY,
            compute,
            max_ttl=settings.discovery_cache_ttl,
            elastic=False,
        )
        return json.loads(raw)

    # ------------------------------------------------------------------
    # Freshness floor
    # ------------------------------------------------------------------

    async def _floor(self, viewer: UserContext, source: str) -> Optional[float]:
        if viewer.is_anonymous:
            return None
        try:
            return await self._watermarks.get_last_observed_write(viewer.username, source)
        except CacheBackendFailure as exc:
            logger.warning("Ignoring freshness floor for %s: %s", viewer.username, exc)
            return None

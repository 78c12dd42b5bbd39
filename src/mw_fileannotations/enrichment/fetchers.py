"""
Remote Data Fetchers

One fetcher per enrichment kind, each issuing GET requests against a
remote MediaWiki / Wikibase / SPARQL API and parsing the JSON answer into
an intermediate record (see `enrichment.models`).

Failure semantics
-----------------
Fetchers never raise for ordinary remote failures. Transport errors,
non-2xx answers, undecodable bodies and API `error` objects raise
`FetchFailure` inside `RemoteApiClient` and come back out as a `FetchFailed`
value, which the pipeline renders as an empty block and marks uncacheable.

Response shapes
---------------
Requests ask for `formatversion=2` (page lists), but page lists are read
from either the list shape or the legacy dict-by-page-id
shape, always first-by-index.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx

from ..config import settings
from ..core.errors import FetchFailure, PartialDataFailure
from .models import (
    ArticleResult,
    ArticleSummary,
    CategoryMember,
    CategoryMembers,
    CategoryResult,
    EntityData,
    EntityResult,
    FetchFailed,
    WdImage,
    WikipediaArticle,
)

logger = logging.getLogger("fa.fetch")


CATEGORY_MEMBER_LIMIT = 5
CATEGORY_THUMB_SIZE = 100
ARTICLE_THUMB_SIZE = 250
ARTICLE_SENTENCES = 4
ENTITY_IMAGE_SIZE = 200

# Well-known image properties, most preferred first: image, flag image,
# seal image, coat of arms image, logo image, collage image, sectional
# view, icon, route map.
PREFERRED_IMAGE_PROPERTIES = (
    "P18",
    "P41",
    "P158",
    "P94",
    "P154",
    "P2716",
    "P2713",
    "P2910",
    "P15",
)

IMAGE_PROPERTY_QUERY = """
SELECT ?property WHERE {
  ?property wikibase:propertyType wikibase:CommonsMedia ;
            wdt:P31 wd:Q26940804 .
}
"""


# ---------------------------------------------------------------------
# Shared HTTP plumbing
# ---------------------------------------------------------------------

class RemoteApiClient:
    """
    Thin GET-JSON wrapper shared by all fetchers.

    Parameters
    ----------
    client : Optional[httpx.AsyncClient]
        Shared client (connection pooling, test transports). When omitted a
        client is opened per call.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client

    async def get_json(
        self,
        url: str,
        params: Dict[str, Any],
        mediawiki: bool = True,
    ) -> Union[Dict[str, Any], FetchFailed]:
        """
        GET `url` and decode the JSON answer.

        Returns
        -------
        Union[Dict[str, Any], FetchFailed]
            The decoded object, or the reason the call produced nothing.
        """
        try:
            return await self._get_json(url, params, mediawiki)
        except FetchFailure as exc:
            logger.warning("GET %s failed: %s", url, exc)
            return FetchFailed(reason=exc.reason, status=exc.status)

    async def _get_json(
        self,
        url: str,
        params: Dict[str, Any],
        mediawiki: bool,
    ) -> Dict[str, Any]:
        if mediawiki:
            params = {"format": "json", "formatversion": 2, **params}
        headers = {
            "User-Agent": settings.http_user_agent,
            "Accept": "application/json" if mediawiki else "application/sparql-results+json",
        }

        try:
            if self._client is not None:
                resp = await self._client.get(url, params=params, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
                    resp = await client.get(url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise FetchFailure(f"transport:{type(exc).__name__}") from exc

        if not resp.is_success:
            raise FetchFailure("http_status", resp.status_code)

        try:
            data = resp.json()
        except ValueError as exc:
            # Covers undecodable bytes as well as malformed JSON.
            raise FetchFailure("invalid_json", resp.status_code) from exc

        if not isinstance(data, dict):
            raise FetchFailure("invalid_json", resp.status_code)

        if mediawiki and "error" in data:
            code = data["error"].get("code", "unknown") if isinstance(data["error"], dict) else "unknown"
            raise FetchFailure(f"api_error:{code}", resp.status_code)

        return data


def query_pages(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Page list of an `action=query` answer, normalized or legacy shape."""
    pages = (data.get("query") or {}).get("pages") or []
    if isinstance(pages, dict):
        pages = list(pages.values())
    return [page for page in pages if isinstance(page, dict)]


def first_imageinfo(page: Dict[str, Any]) -> Dict[str, Any]:
    """
    Raises
    ------
    PartialDataFailure
        If the page has no image info with both URLs.
    """
    info = page.get("imageinfo") or []
    if not info or not isinstance(info[0], dict):
        raise PartialDataFailure(f"{page.get('title')} has no imageinfo")
    if not info[0].get("descriptionurl") or not info[0].get("thumburl"):
        raise PartialDataFailure(f"{page.get('title')} has no thumbnail")
    return info[0]


# ---------------------------------------------------------------------
# Commons category
# ---------------------------------------------------------------------

class CommonsCategoryFetcher:
    """Up to five file members of a Commons category with 100x100 thumbnails."""

    def __init__(self, api: RemoteApiClient, api_url: Optional[str] = None) -> None:
        self._api = api
        self._api_url = api_url or str(settings.commons_api_url)

    async def fetch(self, category_name: str) -> CategoryResult:
        data = await self._api.get_json(
            self._api_url,
            {
                "action": "query",
                "generator": "categorymembers",
                "gcmtype": "file",
                "gcmtitle": category_name,
                "gcmlimit": CATEGORY_MEMBER_LIMIT,
                "prop": "imageinfo",
                "iiprop": "url",
                "iiurlwidth": CATEGORY_THUMB_SIZE,
                "iiurlheight": CATEGORY_THUMB_SIZE,
            },
        )
        if isinstance(data, FetchFailed):
            return data

        members = []
        for page in query_pages(data):
            try:
                info = first_imageinfo(page)
            except PartialDataFailure as exc:
                logger.debug("Skipping category member: %s", exc)
                continue
            members.append(
                CategoryMember(
                    description_url=info["descriptionurl"],
                    thumb_url=info["thumburl"],
                )
            )
            if len(members) == CATEGORY_MEMBER_LIMIT:
                break

        return CategoryMembers(members=members)


# ---------------------------------------------------------------------
# Wikipedia article
# ---------------------------------------------------------------------

class WikipediaArticleFetcher:
    """Page image (250px) and a four-sentence extract of one article."""

    def __init__(self, api: RemoteApiClient) -> None:
        self._api = api

    async def fetch(self, article: WikipediaArticle) -> ArticleResult:
        data = await self._api.get_json(
            article.api_url,
            {
                "action": "query",
                "titles": article.article,
                "prop": "pageimages|extracts",
                "piprop": "thumbnail|name",
                "pithumbsize": ARTICLE_THUMB_SIZE,
                "exsentences": ARTICLE_SENTENCES,
                "redirects": 1,
            },
        )
        if isinstance(data, FetchFailed):
            return data

        pages = query_pages(data)
        if not pages or "missing" in pages[0] or "invalid" in pages[0]:
            return FetchFailed(reason="missing")

        page = pages[0]
        thumbnail = page.get("thumbnail") or {}
        return ArticleSummary(
            title=page.get("title", article.article),
            extract_html=page.get("extract") or "",
            thumbnail_url=thumbnail.get("source"),
            width=thumbnail.get("width"),
            height=thumbnail.get("height"),
        )


# ---------------------------------------------------------------------
# Wikidata entity
# ---------------------------------------------------------------------

class WdImageFetcher:
    """Image info (200x200 thumbnail) for a Commons file by name."""

    def __init__(self, api: RemoteApiClient, api_url: Optional[str] = None) -> None:
        self._api = api
        self._api_url = api_url or str(settings.commons_api_url)

    async def fetch(self, file_name: str) -> Union[WdImage, FetchFailed, None]:
        """
        Returns None when the file exists nowhere or has no thumbnail, and
        FetchFailed when Commons could not be asked.
        """
        data = await self._api.get_json(
            self._api_url,
            {
                "action": "query",
                "prop": "imageinfo",
                "titles": f"File:{file_name}",
                "iiprop": "url",
                "iiurlwidth": ENTITY_IMAGE_SIZE,
                "iiurlheight": ENTITY_IMAGE_SIZE,
            },
        )
        if isinstance(data, FetchFailed):
            return data

        pages = query_pages(data)
        if not pages:
            return None
        try:
            info = first_imageinfo(pages[0])
        except PartialDataFailure as exc:
            logger.info("No image for %s: %s", file_name, exc)
            return None
        return WdImage(description_url=info["descriptionurl"], thumb_url=info["thumburl"])


class ImagePropertyDiscovery:
    """
    Discovers which Wikidata properties are image-property predicates.

    The answer changes on the scale of months, so it is cached for
    `discovery_cache_ttl` without a freshness floor. `cached` wraps the
    lookup; it is the cache coordinator's `get_or_compute` bound to the
    discovery key (see `enrichment.pipeline`).
    """

    def __init__(self, api: RemoteApiClient, sparql_url: Optional[str] = None) -> None:
        self._api = api
        self._sparql_url = sparql_url or str(settings.wikidata_sparql_url)
        self.cached: Optional[Callable[[], Awaitable[List[str]]]] = None

    async def discover(self) -> Union[List[str], FetchFailed]:
        data = await self._api.get_json(
            self._sparql_url,
            {"query": IMAGE_PROPERTY_QUERY, "format": "json"},
            mediawiki=False,
        )
        if isinstance(data, FetchFailed):
            return data

        properties = []
        for binding in (data.get("results") or {}).get("bindings") or []:
            uri = ((binding.get("property") or {}).get("value")) or ""
            pid = uri.rsplit("/", 1)[-1]
            if pid.startswith("P") and pid[1:].isdigit():
                properties.append(pid)
        return sorted(set(properties), key=lambda p: int(p[1:]))

    async def properties(self) -> List[str]:
        if self.cached is not None:
            return await self.cached()
        discovered = await self.discover()
        return [] if isinstance(discovered, FetchFailed) else discovered


def first_statement_value(statements: Any) -> Any:
    """
    Value of the best statement: preferred rank first, never deprecated,
    skipping novalue/somevalue snaks.
    """
    if not isinstance(statements, list):
        return None

    ranked = sorted(
        (s for s in statements if isinstance(s, dict) and s.get("rank") != "deprecated"),
        key=lambda s: 0 if s.get("rank") == "preferred" else 1,
    )
    for statement in ranked:
        datavalue = (statement.get("mainsnak") or {}).get("datavalue")
        if datavalue and "value" in datavalue:
            return datavalue["value"]
    return None


def image_property_order(discovered: List[str]) -> List[str]:
    order = list(PREFERRED_IMAGE_PROPERTIES)
    order.extend(p for p in discovered if p not in PREFERRED_IMAGE_PROPERTIES)
    return order


class WikidataEntityFetcher:
    """Labels, descriptions and claims of one entity, plus one image."""

    def __init__(
        self,
        api: RemoteApiClient,
        discovery: ImagePropertyDiscovery,
        image_fetcher: WdImageFetcher,
        api_url: Optional[str] = None,
    ) -> None:
        self._api = api
        self._discovery = discovery
        self._images = image_fetcher
        self._api_url = api_url or str(settings.wikidata_api_url)

    async def fetch(self, entity_id: str, language: str) -> EntityResult:
        languages = ["en"] if language == "en" else ["en", language]
        data = await self._api.get_json(
            self._api_url,
            {
                "action": "wbgetentities",
                "ids": entity_id,
                "languages": "|".join(languages),
                "props": "labels|descriptions|claims",
            },
        )
        if isinstance(data, FetchFailed):
            return data

        entities = data.get("entities") or {}
        entity = entities.get(entity_id)
        if entity is None and len(entities) == 1:
            # Redirected ids come back under their target id.
            entity = next(iter(entities.values()))
        if not isinstance(entity, dict) or "missing" in entity:
            logger.info("Wikidata has no entity %s", entity_id)
            return EntityData(entity_id=entity_id)

        claims = {
            pid: value
            for pid, value in (
                (pid, first_statement_value(statements))
                for pid, statements in (entity.get("claims") or {}).items()
            )
            if value is not None
        }

        result = EntityData(
            entity_id=entity_id,
            labels=_term_values(entity.get("labels")),
            descriptions=_term_values(entity.get("descriptions")),
            claims=claims,
        )

        image_file = await self._pick_image(claims)
        if image_file is None:
            return result

        image = await self._images.fetch(image_file)
        if isinstance(image, FetchFailed):
            result.image_failed = True
        else:
            result.image = image
        return result

    async def _pick_image(self, claims: Dict[str, Any]) -> Optional[str]:
        # No claims at all and no recognized property are the same case.
        if not claims:
            return None

        for pid in PREFERRED_IMAGE_PROPERTIES:
            if isinstance(claims.get(pid), str):
                return claims[pid]

        for pid in image_property_order(await self._discovery.properties()):
            if isinstance(claims.get(pid), str):
                return claims[pid]
        return None


def _term_values(terms: Any) -> Dict[str, str]:
    if not isinstance(terms, dict):
        return {}
    return {
        lang: term["value"]
        for lang, term in terms.items()
        if isinstance(term, dict) and term.get("value")
    }

import httpx
import pytest

from mw_fileannotations.auth.models import UserContext
from mw_fileannotations.cache.coordinator import CacheCoordinator
from mw_fileannotations.cache.store import InMemoryCacheStore
from mw_fileannotations.cache.watermarks import InMemoryWatermarkStore
from mw_fileannotations.enrichment.fetchers import (
    CommonsCategoryFetcher,
    ImagePropertyDiscovery,
    RemoteApiClient,
    WdImageFetcher,
    WikidataEntityFetcher,
    WikipediaArticleFetcher,
)
from mw_fileannotations.enrichment.pipeline import IMAGE_PROPERTIES_KEY, AnnotationEnricher, make_key

ANONYMOUS = UserContext(username="anonymous", client_id="anonymous")
ALICE = UserContext(username="Alice", language="en", client_id="FileAnnotations")

COMMONS_LINK = '<p><a href="https://commons.wikimedia.org/wiki/Category:Cats">Cats</a></p>'
ARTICLE_LINK = '<p><a href="https://en.wikipedia.org/wiki/Domestic_cat">cat</a></p>'
ENTITY_LINK = '<p><a href="https://www.wikidata.org/wiki/Q146">cat</a></p>'


class RemoteWikis:
    """Answers Commons, Wikipedia, Wikidata and SPARQL requests from mutable state."""

    def __init__(self):
        self.requests = []
        self.label = "house cat"
        self.entity_claims = {}
        self.sparql_pids = []
        self.article_status = 200

    def count(self, host):
        return sum(1 for r in self.requests if r.url.host == host)

    def __call__(self, request):
        self.requests.append(request)
        host = request.url.host
        if host == "commons.wikimedia.org":
            if "generator" in request.url.params:
                return httpx.Response(200, json={"query": {"pages": [self._imageinfo("File:Cat1.jpg")]}})
            return httpx.Response(200, json={"query": {"pages": [self._imageinfo(request.url.params["titles"])]}})
        if host == "en.wikipedia.org":
            if self.article_status != 200:
                return httpx.Response(self.article_status)
            return httpx.Response(
                200,
                json={"query": {"pages": [{"title": "Cat", "extract": "<p>Cats purr.</p>"}]}},
            )
        if host == "www.wikidata.org":
            return httpx.Response(
                200,
                json={
                    "entities": {
                        "Q146": {
                            "id": "Q146",
                            "labels": {"en": {"value": self.label}},
                            "claims": self.entity_claims,
                        }
                    }
                },
            )
        if host == "query.wikidata.org":
            bindings = [{"property": {"value": f"http://www.wikidata.org/entity/{p}"}} for p in self.sparql_pids]
            return httpx.Response(200, json={"results": {"bindings": bindings}})
        return httpx.Response(404)

    @staticmethod
    def _imageinfo(title):
        return {
            "title": title,
            "imageinfo": [
                {
                    "descriptionurl": f"https://commons.wikimedia.org/wiki/{title}",
                    "thumburl": "https://upload.wikimedia.org/thumb.jpg",
                }
            ],
        }


@pytest.fixture
def remote():
    return RemoteWikis()


@pytest.fixture
def cache():
    return InMemoryCacheStore()


@pytest.fixture
def watermarks():
    return InMemoryWatermarkStore()


@pytest.fixture
def enricher(remote, cache, watermarks):
    api = RemoteApiClient(httpx.AsyncClient(transport=httpx.MockTransport(remote)))
    discovery = ImagePropertyDiscovery(api, "https://query.wikidata.org/sparql")
    return AnnotationEnricher(
        coordinator=CacheCoordinator(cache, min_ttl=60, max_ttl=86400, stale_ttl=86400),
        watermarks=watermarks,
        commons=CommonsCategoryFetcher(api, "https://commons.wikimedia.org/w/api.php"),
        wikipedia=WikipediaArticleFetcher(api),
        wikidata=WikidataEntityFetcher(
            api,
            discovery,
            WdImageFetcher(api, "https://commons.wikimedia.org/w/api.php"),
            "https://www.wikidata.org/w/api.php",
        ),
        discovery=discovery,
        commons_base_url="https://commons.wikimedia.org",
    )


def test_make_key_quotes_parts():
    assert make_key("wikipediapage", "https://en.wikipedia.org", "Cat") == (
        "fileannotations:wikipediapage:https%3A%2F%2Fen.wikipedia.org:Cat"
    )
    assert make_key("wikidataentity", "de", "Q146") == "fileannotations:wikidataentity:de:Q146"


@pytest.mark.asyncio
async def test_unrecognized_fragment_passes_through(enricher, remote):
    fragment = "<p>Just a cat</p>"

    assert await enricher.enrich(fragment, ANONYMOUS) is fragment
    assert remote.requests == []


@pytest.mark.asyncio
async def test_commons_category_is_fetched_once(enricher, remote, cache):
    first = await enricher.enrich(COMMONS_LINK, ANONYMOUS)
    second = await enricher.enrich(COMMONS_LINK, ANONYMOUS)

    assert first == second
    assert 'class="commons-category-annotation"' in first
    assert "See more images" in first
    assert remote.count("commons.wikimedia.org") == 1
    assert await cache.get(make_key("commonscategory", "Category:Cats")) is not None


@pytest.mark.asyncio
async def test_failed_fetch_is_not_cached(enricher, remote, cache):
    remote.article_status = 503

    html = await enricher.enrich(ARTICLE_LINK, ANONYMOUS)
    assert html == '<div class="wikipedia-article-annotation"></div>'

    remote.article_status = 200
    html = await enricher.enrich(ARTICLE_LINK, ANONYMOUS)
    assert "<p>Cats purr.</p>" in html
    assert remote.count("en.wikipedia.org") == 2


@pytest.mark.asyncio
async def test_entity_cache_is_per_language(enricher, remote):
    german = UserContext(username="anonymous", language="de", client_id="anonymous")

    await enricher.enrich(ENTITY_LINK, ANONYMOUS)
    await enricher.enrich(ENTITY_LINK, german)
    await enricher.enrich(ENTITY_LINK, german)

    assert remote.count("www.wikidata.org") == 2


@pytest.mark.asyncio
async def test_viewer_sees_own_edit_after_watermark(enricher, remote, cache, watermarks):
    before = await enricher.enrich(ENTITY_LINK, ALICE)
    assert "house cat" in before

    remote.label = "domestic cat"
    # Another reader keeps getting the cached value.
    assert await enricher.enrich(ENTITY_LINK, ANONYMOUS) == before

    cached = await cache.get(make_key("wikidataentity", "en", "Q146"))
    await watermarks.record_write("Alice", "wikidata", at=cached.stored_at + 1)
    after = await enricher.enrich(ENTITY_LINK, ALICE)

    assert "domestic cat" in after
    # Changed under the floor: purged, not overwritten.
    assert await cache.get(make_key("wikidataentity", "en", "Q146")) is None


@pytest.mark.asyncio
async def test_watermark_for_other_source_does_not_force_refetch(enricher, remote, watermarks):
    await enricher.enrich(ENTITY_LINK, ALICE)
    await watermarks.record_write("Alice", "commons")
    await enricher.enrich(ENTITY_LINK, ALICE)

    assert remote.count("www.wikidata.org") == 1


@pytest.mark.asyncio
async def test_image_property_discovery_is_cached(enricher, remote, cache):
    remote.entity_claims = {"P9999": [{"mainsnak": {"datavalue": {"value": "Diagram.svg"}}, "rank": "normal"}]}
    german = UserContext(username="anonymous", language="de", client_id="anonymous")
    remote.sparql_pids = ["P9999"]

    first = await enricher.enrich(ENTITY_LINK, ANONYMOUS)
    await enricher.enrich(ENTITY_LINK, german)

    assert 'class="wikidata-image"' in first
    assert remote.count("query.wikidata.org") == 1
    entry = await cache.get(IMAGE_PROPERTIES_KEY)
    assert entry.value == '["P9999"]'

import asyncio

import httpx
import pytest

from mw_fileannotations.annotations.models import Annotation, AnnotationDocument
from mw_fileannotations.annotations.orchestrator import AnnotationBatchRenderer
from mw_fileannotations.annotations.store import annotations_title
from mw_fileannotations.auth.models import UserContext
from mw_fileannotations.cache.coordinator import CacheCoordinator
from mw_fileannotations.cache.store import InMemoryCacheStore
from mw_fileannotations.cache.watermarks import InMemoryWatermarkStore
from mw_fileannotations.core.errors import MediaWikiRequestError, MediaWikiResponseError
from mw_fileannotations.enrichment.fetchers import (
    CommonsCategoryFetcher,
    ImagePropertyDiscovery,
    RemoteApiClient,
    WdImageFetcher,
    WikidataEntityFetcher,
    WikipediaArticleFetcher,
)
from mw_fileannotations.enrichment.pipeline import AnnotationEnricher

ANONYMOUS = UserContext(username="anonymous", client_id="anonymous")


def doc(*contents):
    return AnnotationDocument(
        annotations=[Annotation(content=c, x=10 * i, y=20, width=50, height=40) for i, c in enumerate(contents)]
    )


class FakeStore:
    def __init__(self, documents, failing=()):
        self.documents = documents
        self.failing = set(failing)

    def page_title(self, file_title):
        return annotations_title(file_title, "File annotations")

    async def get_annotations(self, file_title):
        if file_title in self.failing:
            raise MediaWikiRequestError("host wiki down")
        return self.documents.get(file_title)


class FakeRenderer:
    """Wraps text in a paragraph unless a canned rendering is given."""

    def __init__(self, rendered=None, failing=()):
        self.rendered = rendered or {}
        self.failing = set(failing)
        self.calls = []

    async def parse(self, text, title):
        self.calls.append((text, title))
        if text in self.failing:
            raise MediaWikiResponseError("internal_api_error")
        return self.rendered.get(text, f"<p>{text}</p>")


class FakeEnricher:
    def __init__(self, delays=None, failing=(), replacement="<div>enriched</div>"):
        self.delays = delays or {}
        self.failing = set(failing)
        self.replacement = replacement

    async def enrich(self, rendered, viewer):
        await asyncio.sleep(self.delays.get(rendered, 0))
        if rendered in self.failing:
            raise ValueError("unexpected payload")
        if "link" in rendered:
            return self.replacement
        return rendered


def batch(store, renderer=None, enricher=None, deadline=10):
    return AnnotationBatchRenderer(
        store=store,
        renderer=renderer or FakeRenderer(),
        enricher=enricher or FakeEnricher(),
        deadline_seconds=deadline,
    )


# ---------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_files_come_back_in_lexicographic_order():
    store = FakeStore({"Zebra.jpg": doc("stripes"), "Antelope.jpg": doc("horns")})

    result = await batch(store).render_batch(["Zebra.jpg", "Antelope.jpg"], parse=False, viewer=ANONYMOUS)

    assert list(result) == ["Antelope.jpg", "Zebra.jpg"]


@pytest.mark.asyncio
async def test_duplicate_titles_are_rendered_once():
    store = FakeStore({"Cat.jpg": doc("meow")})

    result = await batch(store).render_batch(["Cat.jpg", "Cat.jpg"], parse=False, viewer=ANONYMOUS)

    assert list(result) == ["Cat.jpg"]


@pytest.mark.asyncio
async def test_annotations_keep_stored_order_despite_completion_order():
    store = FakeStore({"Cat.jpg": doc("link slow", "link fast", "plain")})
    enricher = FakeEnricher(delays={"<p>link slow</p>": 0.05})

    result = await batch(store, enricher=enricher).render_batch(["Cat.jpg"], parse=True, viewer=ANONYMOUS)

    items = result["Cat.jpg"]
    assert [item.index for item in items] == [0, 1, 2]
    assert [item.text for item in items] == ["link slow", "link fast", "plain"]
    assert items[2].parsed == "<p>plain</p>"


# ---------------------------------------------------------------------
# Output shape
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unparsed_batch_has_geometry_and_no_html():
    store = FakeStore({"Cat.jpg": doc("meow", "purr")})
    renderer = FakeRenderer()

    result = await batch(store, renderer=renderer).render_batch(["Cat.jpg"], parse=False, viewer=ANONYMOUS)

    second = result["Cat.jpg"][1]
    assert (second.text, second.index, second.x, second.y, second.width, second.height) == ("purr", 1, 10, 20, 50, 40)
    assert second.parsed is None
    assert renderer.calls == []


@pytest.mark.asyncio
async def test_markup_is_rendered_in_annotation_page_context():
    store = FakeStore({"File:Cat.jpg": doc("meow")})
    renderer = FakeRenderer()

    await batch(store, renderer=renderer).render_batch(["File:Cat.jpg"], parse=True, viewer=ANONYMOUS)

    assert renderer.calls == [("meow", "File annotations:Cat.jpg")]


@pytest.mark.asyncio
async def test_file_without_annotations_is_empty_list():
    result = await batch(FakeStore({})).render_batch(["Nothing.jpg"], parse=True, viewer=ANONYMOUS)
    assert result == {"Nothing.jpg": []}


# ---------------------------------------------------------------------
# Failure isolation
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unreadable_file_does_not_affect_others():
    store = FakeStore({"A.jpg": doc("a"), "B.jpg": doc("b")}, failing={"A.jpg"})

    result = await batch(store).render_batch(["A.jpg", "B.jpg"], parse=True, viewer=ANONYMOUS)

    assert result["A.jpg"] == []
    assert result["B.jpg"][0].parsed == "<p>b</p>"


@pytest.mark.asyncio
async def test_render_failure_falls_back_to_escaped_text():
    store = FakeStore({"Cat.jpg": doc("<b>bold</b> & broken", "fine")})
    renderer = FakeRenderer(failing={"<b>bold</b> & broken"})

    result = await batch(store, renderer=renderer).render_batch(["Cat.jpg"], parse=True, viewer=ANONYMOUS)

    assert result["Cat.jpg"][0].parsed == "&lt;b&gt;bold&lt;/b&gt; &amp; broken"
    assert result["Cat.jpg"][1].parsed == "<p>fine</p>"


@pytest.mark.asyncio
async def test_enrichment_failure_falls_back_to_rendered_markup():
    store = FakeStore({"Cat.jpg": doc("link broken", "link ok")})
    enricher = FakeEnricher(failing={"<p>link broken</p>"})

    result = await batch(store, enricher=enricher).render_batch(["Cat.jpg"], parse=True, viewer=ANONYMOUS)

    assert result["Cat.jpg"][0].parsed == "<p>link broken</p>"
    assert result["Cat.jpg"][1].parsed == "<div>enriched</div>"


@pytest.mark.asyncio
async def test_deadline_serves_unenriched_markup():
    store = FakeStore({"Cat.jpg": doc("link slow", "link quick")})
    enricher = FakeEnricher(delays={"<p>link slow</p>": 5})

    result = await batch(store, enricher=enricher, deadline=0.1).render_batch(
        ["Cat.jpg"], parse=True, viewer=ANONYMOUS
    )

    assert result["Cat.jpg"][0].parsed == "<p>link slow</p>"
    assert result["Cat.jpg"][1].parsed == "<div>enriched</div>"


# ---------------------------------------------------------------------
# End to end through the enrichment pipeline
# ---------------------------------------------------------------------

def remote_wikis(request):
    if request.url.host == "www.wikidata.org":
        return httpx.Response(
            200,
            json={
                "entities": {
                    "Q146": {
                        "id": "Q146",
                        "labels": {"en": {"language": "en", "value": "house cat"}},
                        "descriptions": {},
                        "claims": {},
                    }
                }
            },
        )
    return httpx.Response(404)


def real_enricher(respond):
    client = httpx.AsyncClient(transport=httpx.MockTransport(respond))
    api = RemoteApiClient(client)
    discovery = ImagePropertyDiscovery(api, "https://query.wikidata.org/sparql")
    return AnnotationEnricher(
        coordinator=CacheCoordinator(InMemoryCacheStore()),
        watermarks=InMemoryWatermarkStore(),
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


@pytest.mark.asyncio
async def test_wikidata_link_enriched_with_english_fallback():
    link = "[https://www.wikidata.org/wiki/Q146 house cat]"
    store = FakeStore({"Cat.jpg": doc("Just a cat", link)})
    renderer = FakeRenderer(
        rendered={link: '<p><a rel="nofollow" class="external text" href="https://www.wikidata.org/wiki/Q146">house cat</a></p>'}
    )
    viewer = UserContext(username="anonymous", language="de", client_id="anonymous")

    batch_renderer = AnnotationBatchRenderer(store, renderer, real_enricher(remote_wikis), deadline_seconds=10)
    result = await batch_renderer.render_batch(["Cat.jpg"], parse=True, viewer=viewer)

    plain, enriched = result["Cat.jpg"]
    assert plain.parsed == "<p>Just a cat</p>"
    assert enriched.index == 1
    assert enriched.parsed == (
        '<div class="wikidata-entity-annotation">'
        '<div class="text-content"><h2 class="wikidata-label">house cat</h2></div>'
        "</div>"
    )
    assert "wikidata-description" not in enriched.parsed

import asyncio
import json
import os
import sys

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

import httpx

from mw_fileannotations.config import settings
from mw_fileannotations.auth.models import UserContext
from mw_fileannotations.wiki.api_client import MediaWikiClient
from mw_fileannotations.annotations.store import AnnotationStore
from mw_fileannotations.annotations.orchestrator import AnnotationBatchRenderer
from mw_fileannotations.cache import CacheCoordinator, InMemoryCacheStore, InMemoryWatermarkStore
from mw_fileannotations.enrichment.fetchers import (
    CommonsCategoryFetcher,
    ImagePropertyDiscovery,
    RemoteApiClient,
    WdImageFetcher,
    WikidataEntityFetcher,
    WikipediaArticleFetcher,
)
from mw_fileannotations.enrichment.pipeline import AnnotationEnricher


async def main(titles, language):
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds, follow_redirects=True) as http:
        mw_client = MediaWikiClient(client=http)
        api = RemoteApiClient(http)
        discovery = ImagePropertyDiscovery(api)
        enricher = AnnotationEnricher(
            coordinator=CacheCoordinator(InMemoryCacheStore()),
            watermarks=InMemoryWatermarkStore(),
            commons=CommonsCategoryFetcher(api),
            wikipedia=WikipediaArticleFetcher(api),
            wikidata=WikidataEntityFetcher(api, discovery, WdImageFetcher(api)),
            discovery=discovery,
        )
        renderer = AnnotationBatchRenderer(AnnotationStore(mw_client), mw_client, enricher)

        viewer = UserContext(username="anonymous", language=language, client_id="anonymous")
        print(f"Rendering annotations for {len(titles)} file(s)...")
        pages = await renderer.render_batch(titles, parse=True, viewer=viewer)

    print(json.dumps(
        {title: [a.model_dump(exclude_none=True) for a in items] for title, items in pages.items()},
        indent=2,
        ensure_ascii=False,
    ))


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("usage: render_annotations.py FILE_TITLE [FILE_TITLE ...]  (LANG_CODE env var picks the language)")
        sys.exit(1)
    asyncio.run(main(sys.argv[1:], os.getenv("LANG_CODE", settings.default_language)))

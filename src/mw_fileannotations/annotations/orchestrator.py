"""
Annotation Batch Orchestrator

Renders every annotation of every requested file.

Ordering
--------
- Files are processed and returned in lexicographic title order, whatever
  order they were requested or stored in.
- Annotations keep the order of the stored list; `index` is the position.
- Work runs concurrently, but results are assembled by position, so which
  fetch finishes first never changes the output.

Failure isolation
-----------------
One annotation's failure never affects another. When the markup renderer
fails the annotation shows its escaped source text; when enrichment fails
or the request deadline passes it shows the plain rendered markup, and
fetches nobody else is waiting on are cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from html import escape
from typing import Dict, Iterable, List, Optional

from ..auth.models import UserContext
from ..config import settings
from ..core.errors import MediaWikiRequestError, MediaWikiResponseError
from ..enrichment.pipeline import AnnotationEnricher
from ..wiki.api_client import MediaWikiClient
from .models import AnnotationData
from .store import AnnotationStore

logger = logging.getLogger("fa.batch")


class AnnotationBatchRenderer:
    """
    Parameters
    ----------
    store : AnnotationStore
        Source of annotation documents.
    renderer : MediaWikiClient
        Markup renderer (`parse(text, title) -> html`).
    enricher : AnnotationEnricher
        classify -> fetch -> render pipeline.
    deadline_seconds : Optional[float]
        Overall enrichment deadline per batch.
    """

    def __init__(
        self,
        store: AnnotationStore,
        renderer: MediaWikiClient,
        enricher: AnnotationEnricher,
        deadline_seconds: Optional[float] = None,
    ) -> None:
        self._store = store
        self._renderer = renderer
        self._enricher = enricher
        self._deadline_seconds = (
            settings.request_deadline_seconds if deadline_seconds is None else deadline_seconds
        )

    async def render_batch(
        self,
        titles: Iterable[str],
        parse: bool,
        viewer: UserContext,
    ) -> Dict[str, List[AnnotationData]]:
        ordered = sorted(set(titles))
        deadline = asyncio.get_running_loop().time() + self._deadline_seconds

        results = await asyncio.gather(
            *(self._render_file(title, parse, viewer, deadline) for title in ordered)
        )
        return dict(zip(ordered, results))

    async def _render_file(
        self,
        file_title: str,
        parse: bool,
        viewer: UserContext,
        deadline: float,
    ) -> List[AnnotationData]:
        try:
            document = await self._store.get_annotations(file_title)
        except (MediaWikiRequestError, MediaWikiResponseError) as exc:
            logger.warning("Could not load annotations for %s: %s", file_title, exc)
            return []

        if document is None:
            return []

        items = [
            AnnotationData.from_annotation(annotation, index)
            for index, annotation in enumerate(document.annotations)
        ]
        if not parse:
            return items

        context_title = self._store.page_title(file_title)
        parsed = await asyncio.gather(
            *(self._parse(item.text, context_title, viewer, deadline) for item in items)
        )
        for item, html in zip(items, parsed):
            item.parsed = html
        return items

    async def _parse(
        self,
        text: str,
        context_title: str,
        viewer: UserContext,
        deadline: float,
    ) -> str:
        try:
            rendered = await self._renderer.parse(text, context_title)
        except (MediaWikiRequestError, MediaWikiResponseError) as exc:
            logger.warning("Rendering an annotation on %s failed: %s", context_title, exc)
            return escape(text)

        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            logger.info("Deadline passed; serving unenriched annotation on %s", context_title)
            return rendered

        try:
            return await asyncio.wait_for(self._enricher.enrich(rendered, viewer), timeout=remaining)
        except asyncio.TimeoutError:
            logger.info("Enrichment timed out on %s", context_title)
            return rendered
        except Exception:
            logger.exception("Enrichment failed on %s", context_title)
            return rendered

"""
Annotation Store

Reads and writes annotation documents held as JSON pages in the host wiki's
annotations namespace, one page per file (`File annotations:<file name>`).

Design Goals
------------
- No dependence on private MediaWikiClient internals
- Missing pages and unreadable documents are "no annotations", not errors
- Writes always replace the whole document
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from pydantic import ValidationError

from ..config import settings
from ..wiki.api_client import MediaWikiClient
from .models import AnnotationDocument

logger = logging.getLogger("fa.wiki")


def annotations_title(file_title: str, namespace: Optional[str] = None) -> str:
    """
    Map a file title ("File:Foo.jpg" or "Foo.jpg") to its annotation page.
    """
    namespace = namespace or settings.annotations_namespace
    name = file_title.split(":", 1)[1] if file_title.startswith("File:") else file_title
    return f"{namespace}:{name}"


class AnnotationStore:
    """
    Annotation store backed by the host wiki.
    """

    def __init__(self, mw_client: MediaWikiClient, namespace: Optional[str] = None) -> None:
        self._mw = mw_client
        self._namespace = namespace

    def page_title(self, file_title: str) -> str:
        return annotations_title(file_title, self._namespace)

    async def get_annotations(self, file_title: str) -> Optional[AnnotationDocument]:
        """
        Return the annotation document for a file, or None when there is none.

        A page whose text is not a valid annotation document is logged and
        treated as absent.
        """
        page = self.page_title(file_title)
        text = await self._mw.get_page_wikitext(page)
        if text is None:
            return None

        try:
            return AnnotationDocument.model_validate(json.loads(text))
        except (ValueError, ValidationError) as exc:
            logger.warning("Unreadable annotation document %s: %s", page, exc)
            return None

    async def replace_annotations(
        self,
        file_title: str,
        document: AnnotationDocument,
        summary: str,
        acting_user: str,
    ) -> dict:
        """Write the whole document back with the given edit summary."""
        return await self._mw.edit_page(
            self.page_title(file_title),
            document.to_json(),
            summary,
            acting_user=acting_user,
        )

"""
Annotation editing operations.

Each operation is a read-modify-write of the whole annotation document.
Concurrent editors race; the later save wins, as on the wiki itself.
"""

from __future__ import annotations

import logging

from ..core.errors import InvalidAnnotationIndex
from .models import Annotation, AnnotationDocument
from .store import AnnotationStore

logger = logging.getLogger("fa.edit")


async def _load(store: AnnotationStore, file_title: str) -> AnnotationDocument:
    document = await store.get_annotations(file_title)
    return document or AnnotationDocument()


def _check_index(document: AnnotationDocument, file_title: str, index: int) -> None:
    if index < 0 or index >= len(document.annotations):
        raise InvalidAnnotationIndex(
            f"{file_title} has no annotation at index {index}"
        )


async def add_annotation(
    store: AnnotationStore,
    file_title: str,
    annotation: Annotation,
    acting_user: str,
) -> int:
    """Append an annotation. Returns its index."""
    document = await _load(store, file_title)
    document.annotations.append(annotation)
    await store.replace_annotations(
        file_title,
        document,
        f'Added annotation on file page. Text: "{annotation.content}"',
        acting_user=acting_user,
    )
    index = len(document.annotations) - 1
    logger.info("%s added annotation %d on %s", acting_user, index, file_title)
    return index


async def edit_annotation(
    store: AnnotationStore,
    file_title: str,
    index: int,
    annotation: Annotation,
    acting_user: str,
) -> int:
    """Replace the annotation at `index`."""
    document = await _load(store, file_title)
    _check_index(document, file_title, index)
    document.annotations[index] = annotation
    await store.replace_annotations(
        file_title,
        document,
        f'Edited annotation on file page. New text: "{annotation.content}"',
        acting_user=acting_user,
    )
    logger.info("%s edited annotation %d on %s", acting_user, index, file_title)
    return index


async def delete_annotation(
    store: AnnotationStore,
    file_title: str,
    index: int,
    acting_user: str,
) -> int:
    """Remove the annotation at `index`. Later annotations shift down by one."""
    document = await _load(store, file_title)
    _check_index(document, file_title, index)
    del document.annotations[index]
    await store.replace_annotations(
        file_title,
        document,
        "Deleted annotation on file page.",
        acting_user=acting_user,
    )
    logger.info("%s deleted annotation %d on %s", acting_user, index, file_title)
    return index

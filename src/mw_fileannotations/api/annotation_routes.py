"""
Annotation Routes

Batch read of (optionally rendered and enriched) annotations for files,
the add / edit / delete operations used by the editing UI, and the
freshness-watermark report the UI sends after a viewer edits a backing
data source.

Security Notes
--------------
- Reads are public; a bearer token, when sent, supplies viewer identity
  and language.
- Edits require the `annotations_edit` scope and are saved on the wiki on
  the viewer's behalf.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from .models import (
    AnnotationPayload,
    AnnotationsResponse,
    OperationResult,
    WatermarkRequest,
    WatermarkResponse,
)
from .dependencies import get_annotation_store, get_batch_renderer, get_watermarks
from ..auth.security import optional_viewer, require_scopes, verify_viewer_jwt
from ..auth.models import UserContext
from ..annotations import editing
from ..annotations.orchestrator import AnnotationBatchRenderer
from ..annotations.store import AnnotationStore
from ..cache.watermarks import WatermarkStore

router = APIRouter(prefix="/annotations", tags=["annotations"])

MAX_TITLES = 50


@router.get(
    "",
    response_model=AnnotationsResponse,
    response_model_exclude_none=True,
    summary="Fetch annotations for one or more files",
)
async def get_annotations(
    titles: Annotated[str, Query(min_length=1, description="Pipe-separated file titles.")],
    viewer: Annotated[UserContext, Depends(optional_viewer)],
    renderer: Annotated[AnnotationBatchRenderer, Depends(get_batch_renderer)],
    parse: bool = False,
) -> AnnotationsResponse:
    """
    Return `{title: [annotation...]}` for every requested file, in
    lexicographic title order. With `parse=true` each annotation carries
    its rendered HTML, enriched where it is a lone Commons category,
    Wikipedia article or Wikidata entity link.
    """
    requested = [t.strip() for t in titles.split("|") if t.strip()]
    if not requested:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="No titles given.",
        )
    if len(requested) > MAX_TITLES:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"At most {MAX_TITLES} titles per request.",
        )

    pages = await renderer.render_batch(requested, parse=parse, viewer=viewer)
    return AnnotationsResponse(pages=pages)


@router.post(
    "/watermarks",
    response_model=WatermarkResponse,
    summary="Record that the viewer just edited a backing data source",
)
async def record_watermark(
    req: WatermarkRequest,
    user: Annotated[UserContext, Depends(verify_viewer_jwt)],
    watermarks: Annotated[WatermarkStore, Depends(get_watermarks)],
) -> WatermarkResponse:
    recorded_at = await watermarks.record_write(user.username, req.source)
    return WatermarkResponse(source=req.source, recorded_at=recorded_at)


@router.post(
    "/{title:path}",
    response_model=OperationResult,
    status_code=status.HTTP_201_CREATED,
    summary="Add an annotation to a file",
)
async def add_annotation(
    title: str,
    req: AnnotationPayload,
    user: Annotated[UserContext, Depends(require_scopes("annotations_edit"))],
    store: Annotated[AnnotationStore, Depends(get_annotation_store)],
) -> OperationResult:
    index = await editing.add_annotation(store, title, req.to_annotation(), acting_user=user.username)
    return OperationResult(status="created", index=index)


@router.put(
    "/{title:path}/{index}",
    response_model=OperationResult,
    summary="Replace the annotation at an index",
)
async def edit_annotation(
    title: str,
    index: int,
    req: AnnotationPayload,
    user: Annotated[UserContext, Depends(require_scopes("annotations_edit"))],
    store: Annotated[AnnotationStore, Depends(get_annotation_store)],
) -> OperationResult:
    await editing.edit_annotation(store, title, index, req.to_annotation(), acting_user=user.username)
    return OperationResult(status="updated", index=index)


@router.delete(
    "/{title:path}/{index}",
    response_model=OperationResult,
    summary="Delete the annotation at an index",
)
async def delete_annotation(
    title: str,
    index: int,
    user: Annotated[UserContext, Depends(require_scopes("annotations_edit"))],
    store: Annotated[AnnotationStore, Depends(get_annotation_store)],
) -> OperationResult:
    await editing.delete_annotation(store, title, index, acting_user=user.username)
    return OperationResult(status="deleted", index=index)

"""
API Models

Request/response models for the annotation routes.

Design Goals
------------
- Strong typing
- Safe defaults (no shared mutable state)
- Explicit output contracts for the annotation display UI
"""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ConfigDict

from ..annotations.models import Annotation, AnnotationData


# ---------------------------------------------------------------------
# Batch read
# ---------------------------------------------------------------------

class AnnotationsResponse(BaseModel):
    """
    Annotations per file, keys in lexicographic title order.
    """
    pages: Dict[str, List[AnnotationData]] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Editing
# ---------------------------------------------------------------------

class AnnotationPayload(BaseModel):
    """
    A new or replacement annotation as sent by the editing UI.
    """
    content: str = Field(..., min_length=1)
    x: float = Field(..., ge=0)
    y: float = Field(..., ge=0)
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)

    model_config = ConfigDict(extra="forbid")

    def to_annotation(self) -> Annotation:
        return Annotation(**self.model_dump())


class OperationResult(BaseModel):
    """
    Standardized mutation operation result.
    """
    status: Literal["created", "updated", "deleted", "ok"]
    index: Optional[int] = Field(default=None, ge=0)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Freshness watermarks
# ---------------------------------------------------------------------

class WatermarkRequest(BaseModel):
    """
    Reports that the viewer just wrote to a backing data source.
    """
    source: str = Field(
        ...,
        pattern=r"^(wikidata|commons|[a-z][a-z0-9-]*\.wikipedia\.org)$",
        description='"wikidata", "commons" or a Wikipedia host.',
    )

    model_config = ConfigDict(extra="forbid")


class WatermarkResponse(BaseModel):
    source: str
    recorded_at: float

    model_config = ConfigDict(extra="forbid")

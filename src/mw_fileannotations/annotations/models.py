"""
Annotation Models

Stored shape (one JSON document per file, in the annotations namespace):

    {"annotations": [{"content": "...", "x": 10, "y": 20, "width": 50, "height": 40}, ...]}

An annotation's identity is its position in that list. Reordering or
deleting shifts the identity of every later annotation.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict


class Annotation(BaseModel):
    """
    A positioned, boxed piece of markup overlaid on an image.
    """
    content: str
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None

    model_config = ConfigDict(extra="ignore")


class AnnotationDocument(BaseModel):
    """
    The ordered annotation list owned by a single file.

    Mutated wholesale: callers read the document, change the list, and write
    the whole document back.
    """
    annotations: List[Annotation] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


class AnnotationData(BaseModel):
    """
    One annotation as returned by the batch read.

    `text` is the stored markup, `parsed` the rendered (and possibly
    enriched) HTML when parsing was requested.
    """
    text: str
    index: int = Field(..., ge=0)
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    parsed: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_annotation(cls, annotation: Annotation, index: int) -> "AnnotationData":
        return cls(
            text=annotation.content,
            index=index,
            x=annotation.x,
            y=annotation.y,
            width=annotation.width,
            height=annotation.height,
        )

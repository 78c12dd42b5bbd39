"""
Enrichment Models

Classified links (what an annotation points at) and the intermediate
records produced by the remote data fetchers. Every fetch returns either
its payload model or a `FetchFailed` value; fetchers never raise for an
ordinary remote failure.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ConfigDict


# ---------------------------------------------------------------------
# Classified links
# ---------------------------------------------------------------------

class CommonsCategory(BaseModel):
    kind: Literal["commons_category"] = "commons_category"
    name: str = Field(..., min_length=1, description='Full category title, e.g. "Category:Cats".')

    model_config = ConfigDict(frozen=True, extra="forbid")


class WikipediaArticle(BaseModel):
    kind: Literal["wikipedia_article"] = "wikipedia_article"
    host: str = Field(..., description='Scheme and host, e.g. "https://en.wikipedia.org".')
    article: str = Field(..., min_length=1)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def api_url(self) -> str:
        return f"{self.host}/w/api.php"


class WikidataEntity(BaseModel):
    kind: Literal["wikidata_entity"] = "wikidata_entity"
    entity_id: str = Field(..., pattern=r"^Q\d+$")

    model_config = ConfigDict(frozen=True, extra="forbid")


# None means "not a recognized link"; the rendered fragment is kept as is.
ClassifiedLink = Optional[Union[CommonsCategory, WikipediaArticle, WikidataEntity]]


# ---------------------------------------------------------------------
# Fetch results
# ---------------------------------------------------------------------

class FetchFailed(BaseModel):
    """
    A remote call that did not produce usable data.

    `status` is the HTTP status for non-2xx answers and None for transport
    errors and API-level misses.
    """
    reason: str
    status: Optional[int] = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def is_transient(self) -> bool:
        # A page that does not exist is a stable answer worth caching.
        return self.reason != "missing"


class CategoryMember(BaseModel):
    description_url: str
    thumb_url: str

    model_config = ConfigDict(frozen=True, extra="forbid")


class CategoryMembers(BaseModel):
    members: List[CategoryMember] = Field(default_factory=list, max_length=5)

    model_config = ConfigDict(extra="forbid")


class ArticleSummary(BaseModel):
    title: str
    extract_html: str = ""
    thumbnail_url: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None

    model_config = ConfigDict(extra="forbid")


class WdImage(BaseModel):
    description_url: str
    thumb_url: str

    model_config = ConfigDict(frozen=True, extra="forbid")


class EntityData(BaseModel):
    entity_id: str
    labels: Dict[str, str] = Field(default_factory=dict)
    descriptions: Dict[str, str] = Field(default_factory=dict)
    claims: Dict[str, Any] = Field(default_factory=dict)
    image: Optional[WdImage] = None
    # The entity has an image property but Commons could not be asked.
    image_failed: bool = False

    model_config = ConfigDict(extra="forbid")


CategoryResult = Union[CategoryMembers, FetchFailed]
ArticleResult = Union[ArticleSummary, FetchFailed]
EntityResult = Union[EntityData, FetchFailed]

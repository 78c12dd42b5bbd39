"""
Authentication Models

This module defines the viewer identity used by the annotation routes after
JWT verification, or synthesized for anonymous readers.
"""

from typing import List
from pydantic import BaseModel, Field, ConfigDict


class UserContext(BaseModel):
    """
    Viewer context derived from a verified JWT (or an anonymous reader).

    The language drives Wikidata label/description selection and is part of
    the entity cache key. The username scopes freshness watermarks.
    """

    username: str = Field(
        ...,
        min_length=1,
        description="MediaWiki username associated with the request.",
    )

    language: str = Field(
        default="en",
        min_length=1,
        max_length=35,
        pattern=r"^[a-z][a-z0-9-]*$",
        description="Interface language code of the viewer.",
    )

    roles: List[str] = Field(
        default_factory=list,
        description="List of MediaWiki user groups (roles).",
    )

    scopes: List[str] = Field(
        default_factory=list,
        description="List of scopes granted to the user for API access.",
    )

    client_id: str = Field(
        ...,
        min_length=1,
        description="Client identifier that issued the JWT (e.g., FileAnnotations).",
    )

    model_config = ConfigDict(
        frozen=True,
        arbitrary_types_allowed=False,
        extra="forbid",
    )

    @property
    def is_anonymous(self) -> bool:
        return self.client_id == "anonymous"

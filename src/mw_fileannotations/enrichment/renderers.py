"""
Fragment Renderers

Pure functions from fetch results to HTML fragments. Every interpolated
text or attribute value is escaped. The one exception is a Wikipedia
extract, which the remote API already returns as sanitized HTML.

The CSS classes are the contract with the annotation display UI.
"""

from __future__ import annotations

from html import escape
from typing import List, Optional
from urllib.parse import quote

from .models import (
    ArticleResult,
    CategoryResult,
    CommonsCategory,
    EntityResult,
    FetchFailed,
    WdImage,
)

SEE_MORE_TEXT = "See more images"


def _attr(value: object) -> str:
    return escape(str(value), quote=True)


def category_url(category: CommonsCategory, commons_base_url: str) -> str:
    title = category.name.replace(" ", "_")
    return f"{commons_base_url.rstrip('/')}/wiki/{quote(title, safe=':/')}"


def render_commons_category(
    category: CommonsCategory,
    result: CategoryResult,
    commons_base_url: str,
) -> str:
    members = [] if isinstance(result, FetchFailed) else result.members

    parts: List[str] = ['<div class="commons-category-annotation">', '<div class="category-members">']
    for member in members:
        parts.append(
            f'<a class="category-member" href="{_attr(member.description_url)}">'
            f'<img src="{_attr(member.thumb_url)}" alt="" />'
            "</a>"
        )
    parts.append("</div>")

    if members:
        parts.append(
            f'<a class="commons-see-more" href="{_attr(category_url(category, commons_base_url))}">'
            f"{escape(SEE_MORE_TEXT)}</a>"
        )

    parts.append("</div>")
    return "".join(parts)


def render_wikipedia_article(result: ArticleResult) -> str:
    if isinstance(result, FetchFailed):
        return '<div class="wikipedia-article-annotation"></div>'

    parts = ['<div class="wikipedia-article-annotation">', result.extract_html]

    if result.thumbnail_url:
        size = ""
        if result.width and result.height:
            size = f' width="{_attr(result.width)}" height="{_attr(result.height)}"'
        parts.append(
            '<figure class="pageimage">'
            f'<img src="{_attr(result.thumbnail_url)}"{size} alt="{_attr(result.title)}" />'
            f"<figcaption>{escape(result.title)}</figcaption>"
            "</figure>"
        )

    parts.append("</div>")
    return "".join(parts)


def _prefer(values: dict, language: str) -> Optional[str]:
    return values.get(language) or values.get("en")


def _render_wd_image(image: WdImage) -> str:
    return (
        '<div class="wikidata-image">'
        f'<a class="commons-image" href="{_attr(image.description_url)}">'
        f'<img src="{_attr(image.thumb_url)}" alt="" />'
        "</a>"
        "</div>"
    )


def render_wikidata_entity(result: EntityResult, language: str) -> str:
    """
    Label and description each prefer the viewer's language, then English,
    and are left out entirely when neither exists.
    """
    if isinstance(result, FetchFailed):
        return '<div class="wikidata-entity-annotation"></div>'

    parts = ['<div class="wikidata-entity-annotation">']

    if result.image is not None:
        parts.append(_render_wd_image(result.image))

    label = _prefer(result.labels, language)
    description = _prefer(result.descriptions, language)

    if label is not None or description is not None:
        parts.append('<div class="text-content">')
        if label is not None:
            parts.append(f'<h2 class="wikidata-label">{escape(label)}</h2>')
        if description is not None:
            parts.append(f'<p class="wikidata-description">{escape(description)}</p>')
        parts.append("</div>")

    parts.append("</div>")
    return "".join(parts)

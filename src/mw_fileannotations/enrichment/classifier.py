"""
Link Classifier

Decides whether a rendered annotation is a single bare link to one of the
three remote resource kinds that can be enriched.

The match condition is deliberately narrow and structural: the fragment
must render to exactly one paragraph holding exactly one anchor and no
other non-whitespace text. The anchor may come from a template, so the
check runs on the rendered markup rather than on the wikitext.
"""

from __future__ import annotations

import logging
import re
from typing import Optional
from urllib.parse import parse_qs, unquote, urlsplit
from xml.etree import ElementTree

from ..core.errors import ClassificationFailure
from .models import ClassifiedLink, CommonsCategory, WikidataEntity, WikipediaArticle

logger = logging.getLogger("fa.enrich")


COMMONS_HOST = "commons.wikimedia.org"
WIKIDATA_HOSTS = frozenset({"wikidata.org", "www.wikidata.org"})
WIKIPEDIA_HOST = re.compile(r"^(?!www\.)([a-z][a-z0-9-]*)\.(?:m\.)?wikipedia\.org$")
ENTITY_ID = re.compile(r"(?<![A-Za-z0-9])Q[0-9]+(?![0-9])")
CATEGORY_PREFIX = "Category:"
ALLOWED_SCHEMES = frozenset({"", "http", "https"})


# ---------------------------------------------------------------------
# Structural predicate
# ---------------------------------------------------------------------

def _blank(text: Optional[str]) -> bool:
    return not (text or "").strip()


def parse_fragment(fragment: str) -> ElementTree.Element:
    """
    Parse rendered HTML as XML under a synthetic wrapper element.

    Raises
    ------
    ClassificationFailure
        If the fragment is not well-formed.
    """
    try:
        return ElementTree.fromstring(f"<fragment>{fragment}</fragment>")
    except ElementTree.ParseError as exc:
        raise ClassificationFailure(f"Unparseable fragment: {exc}") from exc


def _unwrap_parser_output(root: ElementTree.Element) -> ElementTree.Element:
    # Newer parsers wrap output in <div class="mw-parser-output">.
    children = list(root)
    if (
        len(children) == 1
        and children[0].tag == "div"
        and "mw-parser-output" in (children[0].get("class") or "").split()
        and _blank(root.text)
        and _blank(children[0].tail)
    ):
        return children[0]
    return root


def single_anchor(root: ElementTree.Element) -> Optional[ElementTree.Element]:
    """
    Return the anchor if `root` holds exactly one paragraph with exactly one
    anchor and no other text, else None.
    """
    root = _unwrap_parser_output(root)

    children = list(root)
    if len(children) != 1 or not _blank(root.text):
        return None

    paragraph = children[0]
    if paragraph.tag != "p" or not _blank(paragraph.tail):
        return None

    inner = list(paragraph)
    if len(inner) != 1 or not _blank(paragraph.text):
        return None

    anchor = inner[0]
    if anchor.tag != "a" or not _blank(anchor.tail):
        return None

    return anchor


# ---------------------------------------------------------------------
# Link patterns
# ---------------------------------------------------------------------

def _commons_category(host: str, path: str, query: str) -> Optional[CommonsCategory]:
    if host != COMMONS_HOST:
        return None

    candidates = []
    if path.startswith("/wiki/"):
        candidates.append(unquote(path[len("/wiki/"):]))
    candidates.extend(parse_qs(query).get("title", []))

    for candidate in candidates:
        if candidate.startswith(CATEGORY_PREFIX) and len(candidate) > len(CATEGORY_PREFIX):
            return CommonsCategory(name=candidate)
    return None


def _wikipedia_article(host: str, path: str) -> Optional[WikipediaArticle]:
    match = WIKIPEDIA_HOST.match(host)
    if not match or not path.startswith("/wiki/"):
        return None

    article = unquote(path[len("/wiki/"):])
    if not article:
        return None
    return WikipediaArticle(host=f"https://{match.group(1)}.wikipedia.org", article=article)


def _wikidata_entity(host: str, path: str, query: str) -> Optional[WikidataEntity]:
    if host not in WIKIDATA_HOSTS:
        return None

    match = ENTITY_ID.search(unquote(path)) or ENTITY_ID.search(unquote(query))
    if not match:
        return None
    return WikidataEntity(entity_id=match.group(0))


def classify_href(href: str) -> ClassifiedLink:
    """
    Test a link target against the recognized patterns, in a fixed order:
    Commons category, Wikipedia article, Wikidata entity.
    """
    try:
        parts = urlsplit(href.strip())
    except ValueError:
        return None

    if parts.scheme not in ALLOWED_SCHEMES or not parts.netloc:
        return None

    host = (parts.hostname or "").lower()

    return (
        _commons_category(host, parts.path, parts.query)
        or _wikipedia_article(host, parts.path)
        or _wikidata_entity(host, parts.path, parts.query)
    )


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

def classify(fragment: str) -> ClassifiedLink:
    """
    Classify a rendered annotation fragment.

    Never raises: a malformed fragment is classified as None.
    """
    try:
        root = parse_fragment(fragment)
    except ClassificationFailure as exc:
        logger.debug("Treating fragment as unclassified: %s", exc)
        root = ElementTree.Element("fragment")

    anchor = single_anchor(root)
    if anchor is None:
        return None

    href = anchor.get("href")
    if not href:
        return None

    return classify_href(href)

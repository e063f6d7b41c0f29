"""Markup normalizer: turns R4D abstract markup into clean markdown.

Abstracts in the triple-store are HTML fragments that have been through
several rounds of careless escaping and hand editing. Normalization runs:

1. Repeated entity unescaping (``&amp;amp;lt;p&amp;amp;gt;`` -> ``<p>``).
2. An optional text-level rewrite hook (legacy link rewriting).
3. Promotion of bold/strong pseudo-headers ("Query:", "Summary:") to h3.
4. List repair, so every item starts on its own line.
5. Conversion to markdown with markdownify, then whitespace tidying.

Nothing in here raises on bad markup: the worst case is plain text.
"""

from __future__ import annotations

import html
import logging
import re
import unicodedata
from typing import Callable

from bs4 import BeautifulSoup, Comment, NavigableString, Tag
from markdownify import markdownify

from config.settings import KNOWN_HEADERS, UNESCAPE_PASSES

logger = logging.getLogger(__name__)

# Abstracts that editors "blanked" with a dash
_BLANK_VALUES = {"", "-"}

_TAG = re.compile(r"<[^>]*>")
_WHITESPACE = re.compile(r"\s+")
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")
_INDENTED_HEADING = re.compile(r"^[ \t]+(?=#{1,6} )", re.MULTILINE)
_LABEL_COLON = re.compile(r"\s*:\s*$")
_LEADING_COLON = re.compile(r"^\s*:?\s*")


def unescape_repeatedly(text: str, passes: int = UNESCAPE_PASSES) -> str:
    """Unescape HTML entities up to ``passes`` times.

    Stops early once a pass leaves the text unchanged, so running this on
    its own output is a no-op.
    """
    for _ in range(passes):
        unescaped = html.unescape(text)
        if unescaped == text:
            break
        text = unescaped
    return text


def is_blank(text: str | None) -> bool:
    """True for empty abstracts and the lone-dash placeholder."""
    return (text or "").strip() in _BLANK_VALUES


def strip_tags(text: str, passes: int = UNESCAPE_PASSES) -> str:
    """Unescape and drop all markup, leaving whitespace-collapsed text."""
    unescaped = unescape_repeatedly(text or "", passes)
    try:
        plain = BeautifulSoup(unescaped, "lxml").get_text()
    except Exception:
        logger.warning("Could not parse markup, stripping tags by pattern", exc_info=True)
        plain = _TAG.sub(" ", unescaped)
    return _collapse(plain)


def normalize(
    raw_text: str | None,
    rewrite: Callable[[str], str] | None = None,
    known_headers: list[str] | None = None,
    passes: int = UNESCAPE_PASSES,
) -> str:
    """Normalize a raw abstract into markdown.

    Args:
        raw_text: The abstract exactly as stored in the triple-store.
        rewrite: Optional hook applied to the unescaped HTML before it is
            parsed (e.g. ``LinkRewriter.rewrite``).
        known_headers: Pseudo-header labels to promote; defaults to
            ``KNOWN_HEADERS``.
        passes: Maximum unescaping passes.

    Returns:
        Markdown text, or ``""`` for blank abstracts.
    """
    if is_blank(raw_text):
        return ""

    fragment = unescape_repeatedly(raw_text, passes)
    if is_blank(fragment):
        return ""
    if rewrite is not None:
        fragment = rewrite(fragment)

    return to_markdown(fragment, known_headers)


def to_markdown(fragment: str, known_headers: list[str] | None = None) -> str:
    """Convert an (already unescaped) HTML fragment to markdown."""
    fragment = _remove_private_use(fragment)
    try:
        soup = BeautifulSoup(fragment, "lxml")
        expand_pseudo_headers(soup, known_headers or KNOWN_HEADERS)
        repair_lists(soup)
        root = soup.body if soup.body is not None else soup
        markdown = markdownify(
            root.decode_contents(),
            heading_style="ATX",
            bullets="*",
            escape_underscores=False,
            escape_misc=False,
        )
    except Exception:
        logger.warning("Could not convert markup to markdown, falling back to plain text", exc_info=True)
        return _collapse(_TAG.sub(" ", fragment))

    return _tidy(markdown)


def expand_pseudo_headers(soup: BeautifulSoup, known_headers: list[str]) -> None:
    """Promote bold/strong labels such as "Query:" to real h3 headings.

    The label loses its trailing colon, two line breaks are inserted in
    front of it, and whatever sits between the label and its text (a colon
    left outside the tag, line breaks, whitespace) is dropped so the section
    body starts cleanly on its own line.
    """
    header_nodes = [
        node
        for node in soup.find_all(["b", "strong"])
        if any(label in node.get_text() for label in known_headers)
    ]

    for node in header_nodes:
        if node.parent is None:
            # Nested inside a label that was already promoted
            continue
        label = _LABEL_COLON.sub("", node.get_text().strip())
        node.name = "h3"
        node.string = label

        node.insert_before(soup.new_tag("br"))
        node.insert_before(soup.new_tag("br"))

        _trim_after_label(node)


def _trim_after_label(node: Tag) -> None:
    following = node.next_sibling
    while following is not None:
        after = following.next_sibling
        if isinstance(following, Tag) and following.name == "br":
            following.extract()
        elif isinstance(following, NavigableString) and not isinstance(following, Comment):
            trimmed = _LEADING_COLON.sub("", str(following), count=1)
            if trimmed:
                following.replace_with(NavigableString(trimmed))
                return
            following.extract()
        else:
            return
        following = after


def repair_lists(soup: BeautifulSoup) -> None:
    """Make every list item start on its own line.

    Word-processor exports leave bullet glyphs and stray text directly
    inside ``<ul>``/``<ol>``, between the ``<li>`` elements. Glyph-only or
    whitespace-only strays are dropped; anything else becomes its own item.
    Items with no list around them (``text <li>item</li>``) are gathered,
    with any items that directly follow, into a new ``<ul>``.
    """
    for item in soup.find_all("li"):
        if item.parent is None or item.find_parent(["ul", "ol"]) is not None:
            continue
        _wrap_orphan_items(soup, item)

    for list_node in soup.find_all(["ul", "ol"]):
        for child in list(list_node.children):
            if not isinstance(child, NavigableString):
                continue
            if isinstance(child, Comment) or not child.strip():
                child.extract()
                continue
            item = soup.new_tag("li")
            item.string = child.strip()
            child.replace_with(item)


def _wrap_orphan_items(soup: BeautifulSoup, first: Tag) -> None:
    run = [first]
    sibling = first.next_sibling
    while sibling is not None:
        if isinstance(sibling, Tag) and sibling.name == "li":
            run.append(sibling)
        elif not (isinstance(sibling, NavigableString) and not sibling.strip()):
            break
        sibling = sibling.next_sibling

    wrapper = soup.new_tag("ul")
    first.insert_before(wrapper)
    for item in run:
        wrapper.append(item.extract())


def _remove_private_use(text: str) -> str:
    # Symbol-font bullets (&#61623; and friends) land in the private use area
    return "".join(ch for ch in text if unicodedata.category(ch) != "Co")


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def _tidy(markdown: str) -> str:
    lines = [line.rstrip() for line in markdown.splitlines()]
    tidied = "\n".join(lines)
    tidied = _INDENTED_HEADING.sub("", tidied)
    tidied = _EXCESS_BLANK_LINES.sub("\n\n", tidied)
    return tidied.strip()

"""URL-safe slugs for titles, rewritten links and heading anchors."""

from __future__ import annotations

import re
import unicodedata

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(text: str, max_length: int | None = None) -> str:
    """Lowercase, hyphenated ASCII transliteration of ``text``.

    Accented letters are folded to their ASCII base ("é" -> "e"); anything
    that cannot be transliterated (curly quotes, ellipses, dashes) only
    ever separates words. Runs of separators collapse to one hyphen.

    When ``max_length`` is given and the slug is longer, it is cut at the
    last hyphen that fits so no word is split.
    """
    folded = unicodedata.normalize("NFKD", text or "")
    # Combining accents go; any other non-ASCII character becomes a separator
    ascii_text = "".join(
        ch if ch.isascii() else ("" if unicodedata.combining(ch) else " ") for ch in folded
    ).lower()
    slug = _NON_ALNUM.sub("-", ascii_text).strip("-")

    if max_length and len(slug) > max_length:
        cut = slug[: max_length + 1]
        if cut.endswith("-"):
            slug = cut.rstrip("-")
        elif "-" in cut:
            slug = cut.rsplit("-", 1)[0]
        else:
            slug = slug[:max_length]

    return slug

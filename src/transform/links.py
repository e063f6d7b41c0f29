"""Link rewriter: replaces references to the legacy linked-development site.

Abstracts link to other research outputs and projects through the
linked-development mirror, which is being switched off:

- ``/r4d/output/<id>`` links are pointed at the GOV.UK page the linked
  output will have after migration. The page's slug is derived from the
  anchor text, which editors set to the linked output's title.
- ``/r4d/project/<id>`` links have no GOV.UK equivalent; the anchor is
  unwrapped so only its text remains.
- Everything else is left alone.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from config.settings import MigrationConfig
from src.transform.slugs import slugify

logger = logging.getLogger(__name__)


class LinkKind(str, Enum):
    LEGACY_OUTPUT = "legacy_output"
    LEGACY_PROJECT = "legacy_project"
    OTHER = "other"


_OUTPUT_PATH = re.compile(r"^/r4d/output/(\d+)/?", re.IGNORECASE)
_PROJECT_PATH = re.compile(r"^/r4d/project/(\d+)/?", re.IGNORECASE)


def _is_host(netloc: str, host: str) -> bool:
    netloc = netloc.lower().split(":", 1)[0]
    return netloc == host or netloc == f"www.{host}"


def legacy_output_id(url: str, legacy_host: str) -> str | None:
    """Numeric id of a linked-development output URL, or None."""
    parsed = urlparse(url.strip())
    if not _is_host(parsed.netloc, legacy_host):
        return None
    m = _OUTPUT_PATH.match(parsed.path)
    return m.group(1) if m else None


def canonicalize_output_url(url: str, config: MigrationConfig | None = None) -> str:
    """Remap a linked-development output URI to its R4D page.

    ``http://linked-development.org/r4d/output/5050/`` becomes
    ``http://r4d.dfid.gov.uk/Output/5050/Default.aspx``. Any other URL is
    returned unchanged.
    """
    config = config or MigrationConfig()
    output_id = legacy_output_id(url, config.legacy_host)
    if output_id is None:
        return url
    return f"http://{config.authoritative_host}/Output/{output_id}/Default.aspx"


class LinkRewriter:
    """Rewrites anchors in unescaped abstract HTML."""

    def __init__(self, config: MigrationConfig | None = None) -> None:
        self.config = config or MigrationConfig()

    def classify(self, href: str) -> LinkKind:
        parsed = urlparse(href.strip())
        if not _is_host(parsed.netloc, self.config.legacy_host):
            return LinkKind.OTHER
        if _OUTPUT_PATH.match(parsed.path):
            return LinkKind.LEGACY_OUTPUT
        if _PROJECT_PATH.match(parsed.path):
            return LinkKind.LEGACY_PROJECT
        return LinkKind.OTHER

    def rewrite(self, text: str) -> str:
        """Return ``text`` with every legacy anchor rewritten or unwrapped."""
        if self.config.legacy_host.lower() not in text.lower():
            return text

        try:
            soup = BeautifulSoup(text, "html.parser")
            changed = False
            for anchor in soup.find_all("a", href=True):
                kind = self.classify(anchor["href"])
                if kind is LinkKind.OTHER:
                    continue

                slug = slugify(anchor.get_text(), self.config.slug_max_length)
                if kind is LinkKind.LEGACY_OUTPUT and slug:
                    new_href = self.config.canonical_url_for(slug)
                    logger.debug("Rewriting %s -> %s", anchor["href"], new_href)
                    anchor["href"] = new_href
                else:
                    logger.debug("Unwrapping unresolvable link %s", anchor["href"])
                    anchor.unwrap()
                changed = True
        except Exception:
            logger.warning("Could not rewrite links, leaving markup untouched", exc_info=True)
            return text

        return str(soup) if changed else text

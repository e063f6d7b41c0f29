"""Document assembler: builds a specialist publisher document from one output.

A research output arrives as a query solution (anything with
``get(name)``) with these fields:

    output, type, date, title, citation, creators, peerReviewed,
    abstract, countryCodes, uris, themes

:class:`Document` derives everything the publisher needs from it: slug
and base path, metadata facets, the markdown body (abstract, citation,
links) and a navigation outline of the body's headings.
"""

from __future__ import annotations

import argparse
import json
import logging
import re
import uuid
from collections import Counter
from concurrent.futures import Executor
from datetime import datetime, timedelta
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx
from jinja2 import Environment, FileSystemLoader

from config.settings import (
    DFID_ORGANISATION_CONTENT_ID,
    DOCUMENT_TYPE,
    FIRST_PUBLISHED_NOTE,
    PROCESSED_DIR,
    TEMPLATES_DIR,
    MigrationConfig,
    load_migration_config,
)
from src.transform.attachment import AssetStore, Attachment, classify, render, save_all
from src.transform.links import LinkRewriter, canonicalize_output_url
from src.transform.markup import normalize, strip_tags, unescape_repeatedly
from src.transform.models import BodyPart, ChangeNote, DocumentDetails, Header
from src.transform.slugs import slugify
from src.transform.sparql import FieldSource, load_solutions

logger = logging.getLogger(__name__)

_jinja_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=False,  # renders markdown, not HTML
)

_OUTPUT_ID = re.compile(r"/Output/(\d+)", re.IGNORECASE)
_HEADING_LINE = re.compile(r"^(#{2,3})[ \t]+(.+?)\s*$")
_NON_CODE = re.compile(r"[^a-z0-9]+")
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")


def uri_code(uri: str) -> str:
    """Identifier for a SKOS concept URI.

    ``.../DocumentTypes#Book%20Chapter`` -> ``book_chapter``
    """
    uri = (uri or "").strip()
    if "#" in uri:
        name = uri.rsplit("#", 1)[-1]
    else:
        name = uri.rstrip("/").rsplit("/", 1)[-1]
    return _NON_CODE.sub("_", unquote(name).lower()).strip("_")


def build_outline(markdown: str) -> list[dict]:
    """Nest the ``##``/``###`` headings of a markdown body.

    Each ``##`` heading is a top-level entry; ``###`` headings that follow
    it (before the next ``##``) become its children.
    """
    outline: list[Header] = []
    for line in markdown.splitlines():
        m = _HEADING_LINE.match(line)
        if not m:
            continue
        level = len(m.group(1))
        text = m.group(2)
        header = Header(text=text, level=level, id=slugify(text))

        if level == 3 and outline and outline[-1].level == 2:
            parent = outline[-1]
            if parent.headers is None:
                parent.headers = []
            parent.headers.append(header)
        else:
            outline.append(header)

    return [h.model_dump(exclude_none=True) for h in outline]


class Document:
    """A DFID research output ready for the specialist publisher."""

    def __init__(self, solution: FieldSource, config: MigrationConfig | None = None) -> None:
        self.solution = solution
        self.config = config or MigrationConfig()
        self._content_id: str | None = None
        self._attachments: list[Attachment] | None = None
        self._abstract: str | None = None
        self._disambiguated = False
        self.slug = slugify(self.title, self.config.slug_max_length)

    def _field(self, name: str) -> str:
        value = self.solution.get(name)
        return "" if value is None else str(value)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def content_id(self) -> str:
        if self._content_id is None:
            self._content_id = str(uuid.uuid4())
        return self._content_id

    @content_id.setter
    def content_id(self, value: str) -> None:
        self._content_id = value

    @property
    def original_url(self) -> str:
        return canonicalize_output_url(self._field("output").strip(), self.config)

    @property
    def original_id(self) -> str:
        path = urlparse(self.original_url).path
        m = _OUTPUT_ID.search(path)
        if m:
            return m.group(1)
        segments = [s for s in path.split("/") if s]
        return segments[-1] if segments else ""

    @property
    def title(self) -> str:
        raw = unescape_repeatedly(self._field("title"), self.config.unescape_passes)
        return " ".join(raw.split())

    @property
    def summary(self) -> str:
        return ""

    @property
    def base_path(self) -> str:
        return f"{self.config.base_path_prefix}/{self.slug}"

    def disambiguate(self) -> str:
        """Append ``-<original_id>`` to the slug; later calls change nothing."""
        if not self._disambiguated:
            self.slug = f"{self.slug}-{self.original_id}"
            self._disambiguated = True
        return self.slug

    @property
    def organisations(self) -> list[str]:
        return [DFID_ORGANISATION_CONTENT_ID]

    # ------------------------------------------------------------------
    # Dates
    # ------------------------------------------------------------------

    @property
    def _date(self) -> datetime:
        return datetime.fromisoformat(self._field("date").strip().replace("Z", "+00:00"))

    @property
    def public_updated_at(self) -> str:
        date = self._date
        if date.tzinfo is None or date.utcoffset() == timedelta(0):
            return date.strftime("%Y-%m-%dT%H:%M:%S") + "Z"
        return date.isoformat(timespec="seconds")

    @property
    def first_published_at(self) -> str:
        return self._date.strftime("%Y-%m-%d")

    # ------------------------------------------------------------------
    # Facets
    # ------------------------------------------------------------------

    @property
    def peer_reviewed(self) -> bool:
        value = self.solution.get("peerReviewed")
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1")
        return bool(value)

    @property
    def countries(self) -> list[str]:
        return self._field("countryCodes").split()

    @property
    def themes(self) -> list[str]:
        return [uri_code(uri) for uri in self._field("themes").split()]

    @property
    def dfid_document_type(self) -> str:
        return uri_code(self._field("type"))

    @property
    def creators(self) -> list[str]:
        return [c.strip() for c in self._field("creators").split("|") if c.strip()]

    @property
    def citation(self) -> str:
        return strip_tags(self._field("citation"), self.config.unescape_passes)

    @property
    def format_specific_metadata(self) -> dict:
        return {
            "country": self.countries,
            "dfid_authors": self.creators,
            "dfid_document_type": self.dfid_document_type,
            "dfid_review_status": "peer_reviewed" if self.peer_reviewed else "not_peer_reviewed",
            "dfid_theme": self.themes,
            "first_published_at": self.first_published_at,
        }

    @property
    def metadata(self) -> dict:
        return {
            "document_type": DOCUMENT_TYPE,
            "bulk_published": True,
            **self.format_specific_metadata,
        }

    @property
    def change_history(self) -> list[dict]:
        return [
            ChangeNote(public_timestamp=self.public_updated_at, note=FIRST_PUBLISHED_NOTE).model_dump()
        ]

    # ------------------------------------------------------------------
    # Body
    # ------------------------------------------------------------------

    @property
    def abstract(self) -> str:
        if self._abstract is None:
            self._abstract = normalize(
                self._field("abstract"),
                rewrite=LinkRewriter(self.config).rewrite,
                known_headers=self.config.known_headers,
                passes=self.config.unescape_passes,
            )
        return self._abstract

    @property
    def attachments(self) -> list[Attachment]:
        if self._attachments is None:
            self._attachments = classify(self._field("uris"), self.config)
        return self._attachments

    @property
    def body(self) -> str:
        rendered = _jinja_env.get_template("body.md").render(
            abstract=self.abstract,
            citation=self.citation,
            links=render(self.attachments, self.title),
        )
        return _EXCESS_BLANK_LINES.sub("\n\n", rendered).strip()

    def headers(self) -> list[dict]:
        return build_outline(self.body)

    # ------------------------------------------------------------------
    # Attachments and presentation
    # ------------------------------------------------------------------

    def save_attachments(self, asset_store: AssetStore, client: httpx.Client, executor: Executor) -> None:
        """Download hosted attachments in parallel and upload them."""
        save_all(self.attachments, asset_store, client, executor)

    def details(self) -> dict:
        """Publisher ``details`` block; hosted attachments must be saved first."""
        return DocumentDetails(
            metadata=self.metadata,
            change_history=self.change_history,
            attachments=[a.to_json() for a in self.attachments if a.hosted],
            body=[BodyPart(content=self.body)],
        ).model_dump()

    def preview(self) -> dict:
        """Everything derivable without touching the network."""
        return {
            "content_id": self.content_id,
            "original_url": self.original_url,
            "base_path": self.base_path,
            "title": self.title,
            "summary": self.summary,
            "public_updated_at": self.public_updated_at,
            "organisations": self.organisations,
            "metadata": self.metadata,
            "body": self.body,
            "headers": self.headers(),
            "attachments": [
                {"url": a.original_url, "hosting": a.hosting.value} for a in self.attachments
            ],
        }


def assemble(raw_fields: FieldSource, config: MigrationConfig | None = None) -> Document:
    return Document(raw_fields, config)


def disambiguate_slugs(documents: list[Document]) -> list[Document]:
    """Disambiguate every document whose slug is shared with another."""
    counts = Counter(doc.slug for doc in documents)
    for doc in documents:
        if counts[doc.slug] > 1:
            logger.warning("Slug collision on %s, appending %s", doc.slug, doc.original_id)
            doc.disambiguate()
    return documents


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main() -> None:
    parser = argparse.ArgumentParser(description="Preview documents assembled from SPARQL results")
    parser.add_argument("--input", type=Path, required=True, help="SPARQL JSON results file")
    parser.add_argument("--output", type=Path, default=PROCESSED_DIR, help="Directory for previews")
    parser.add_argument("--config", type=Path, help="YAML file of migration config overrides")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    config = load_migration_config(args.config) if args.config else MigrationConfig()
    documents = disambiguate_slugs([assemble(s, config) for s in load_solutions(args.input)])

    args.output.mkdir(parents=True, exist_ok=True)
    for doc in documents:
        out_path = args.output / f"{doc.slug}.json"
        out_path.write_text(json.dumps(doc.preview(), indent=2, ensure_ascii=False))
        logger.info("  %s → %s", doc.original_url, out_path)

    logger.info("Assembled %d documents", len(documents))


if __name__ == "__main__":
    main()

"""Attachments: files and links listed against a research output.

Each URL in an output's ``uris`` field becomes an :class:`Attachment`.
Attachments on the authoritative host (R4D) are *hosted*: their bytes are
downloaded and re-uploaded to the asset store, and the body refers to
them with an inline placeholder. Everything else is *external* and only
ever rendered as a link.

Lifecycle of a hosted attachment::

    start_fetch(executor, client)  ->  Future[bytes]  (download runs in background)
    wait()                         ->  bytes          (blocks on that future)
    save_to(asset_store)           ->  Saved(file_url)
    to_json() / file_url           ->  only valid once saved
"""

from __future__ import annotations

import logging
import mimetypes
import posixpath
import uuid
from collections.abc import Iterable, Mapping
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol
from urllib.parse import urlparse

import httpx

from config.settings import MigrationConfig
from src.transform.models import AttachmentPayload

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class AttachmentError(RuntimeError):
    """Base class for attachment lifecycle errors."""


class ExternalAttachmentError(AttachmentError):
    """Bytes or a publisher payload were requested for an external link."""


class AttachmentNotSavedError(AttachmentError):
    """The asset store reference was read before ``save_to`` was called."""


class FetchNotStartedError(AttachmentError):
    """Bytes were awaited before ``start_fetch`` was called."""


class InvalidAttachmentURLError(ValueError):
    """The attachment URL is not an absolute http(s) URL."""


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class AssetStore(Protocol):
    """Anything that can store bytes and hand back an object with a file URL."""

    def store(self, content: bytes) -> Any: ...


class Hosting(str, Enum):
    HOSTED = "hosted"
    EXTERNAL = "external"


def _response_file_url(response: Any) -> str:
    if isinstance(response, Mapping):
        return response["file_url"]
    return response.file_url


def _rfc3339_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# ---------------------------------------------------------------------------
# Attachment
# ---------------------------------------------------------------------------


class Attachment:
    """A single URL referenced by a research output."""

    def __init__(self, original_url: str, config: MigrationConfig | None = None) -> None:
        self.config = config or MigrationConfig()
        self.original_url = (original_url or "").strip()

        parsed = urlparse(self.original_url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise InvalidAttachmentURLError(f"expected an http(s) URL, got {original_url!r}")

        self.host = parsed.hostname
        self.path = parsed.path
        self.hosting = (
            Hosting.HOSTED if self.host == self.config.authoritative_host else Hosting.EXTERNAL
        )

        self._content_id: str | None = None
        self._future: Future | None = None
        self._file_url: str | None = None

    def __repr__(self) -> str:
        return f"Attachment({self.original_url!r}, {self.hosting.value})"

    @property
    def content_id(self) -> str:
        if self._content_id is None:
            self._content_id = str(uuid.uuid4())
        return self._content_id

    @property
    def hosted(self) -> bool:
        return self.hosting is Hosting.HOSTED

    @property
    def external_link(self) -> bool:
        return self.hosting is Hosting.EXTERNAL

    @property
    def filename(self) -> str:
        return posixpath.basename(self.path.rstrip("/")) or self.host

    @property
    def snippet(self) -> str:
        """Markdown used for this attachment in the document body."""
        if self.hosted:
            return f"[InlineAttachment:{self.filename}]"
        return f"[{self.filename}]({self.original_url})"

    @property
    def content_type(self) -> str | None:
        return mimetypes.guess_type(self.filename)[0]

    # -- Download --

    def start_fetch(self, executor: Executor, client: httpx.Client) -> Future:
        """Launch the download in the background; repeated calls share one task."""
        if self.external_link:
            raise ExternalAttachmentError(f"external links cannot be downloaded: {self.original_url}")
        if self._future is None:
            self._future = executor.submit(self._download, client)
        return self._future

    def wait(self) -> bytes:
        """Block until the download finishes and return its bytes."""
        if self.external_link:
            raise ExternalAttachmentError(f"external links cannot be downloaded: {self.original_url}")
        if self._future is None:
            raise FetchNotStartedError(f"start_fetch() has not been called for {self.original_url}")
        return self._future.result()

    def _download(self, client: httpx.Client) -> bytes:
        logger.info("Downloading %s", self.original_url)
        resp = client.get(self.original_url)
        resp.raise_for_status()
        logger.info("  Downloaded %s (%d bytes)", self.filename, len(resp.content))
        return resp.content

    # -- Asset store --

    @property
    def saved(self) -> bool:
        return self._file_url is not None

    @property
    def file_url(self) -> str:
        if self._file_url is None:
            raise AttachmentNotSavedError(f"save_to(asset_store) has not been called for {self.filename}")
        return self._file_url

    def save_to(self, asset_store: AssetStore) -> str:
        """Upload the downloaded bytes and remember the returned file URL.

        Saving again overwrites the stored reference.
        """
        response = asset_store.store(self.wait())
        self._file_url = _response_file_url(response)
        logger.info("  Saved %s -> %s", self.filename, self._file_url)
        return self._file_url

    def restore(self, details: Mapping[str, Any]) -> None:
        """Mark as saved from a previously recorded asset store response."""
        self._file_url = details["file_url"]

    @property
    def link_to_asset(self) -> str:
        return f"[{self.filename}]({self.file_url})"

    def to_json(self) -> dict:
        if self.external_link:
            raise ExternalAttachmentError("to_json() is not valid for an external link")

        now = _rfc3339_now()
        return AttachmentPayload(
            url=self.file_url,
            title=self.filename,
            content_type=self.content_type,
            updated_at=now,
            created_at=now,
            content_id=self.content_id,
        ).model_dump()


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _split_urls(urls: str | Iterable[str] | None) -> list[str]:
    if urls is None:
        return []
    if isinstance(urls, str):
        return urls.split()
    return [token for url in urls for token in str(url).split()]


def classify(urls: str | Iterable[str] | None, config: MigrationConfig | None = None) -> list[Attachment]:
    """Turn the whitespace-delimited ``uris`` field into attachments.

    Source order is kept. Repeated URLs collapse to their first occurrence
    and mirror copies of hosted content ("bumph") are dropped.
    """
    config = config or MigrationConfig()

    attachments: list[Attachment] = []
    seen: set[str] = set()
    for url in _split_urls(urls):
        if url in seen:
            continue
        seen.add(url)
        try:
            attachments.append(Attachment(url, config))
        except InvalidAttachmentURLError as exc:
            logger.warning("Skipping attachment: %s", exc)

    return eliminate_bumph(attachments, config)


def eliminate_bumph(attachments: list[Attachment], config: MigrationConfig | None = None) -> list[Attachment]:
    """Drop mirror copies of attachments that are also hosted on R4D."""
    config = config or MigrationConfig()

    hosted_filenames = {a.filename.lower() for a in attachments if a.hosted}
    if not hosted_filenames:
        return attachments

    kept = []
    for attachment in attachments:
        strategy = config.mirror_hosts.get(attachment.host)
        is_bumph = strategy == "record" or (
            strategy == "filename" and attachment.filename.lower() in hosted_filenames
        )
        if is_bumph:
            logger.info("  Dropping bumph %s", attachment.original_url)
            continue
        kept.append(attachment)
    return kept


def render(attachments: list[Attachment], title: str) -> str:
    """Markdown for the Links section.

    A lone attachment is rendered bare (an external one takes the document
    title as its link text); two or more become a bulleted list.
    """
    if not attachments:
        return ""
    if len(attachments) == 1:
        only = attachments[0]
        if only.hosted:
            return only.snippet
        return f"[{title}]({only.original_url})"
    return "\n".join(f"* {a.snippet}" for a in attachments)


def save_all(
    attachments: Iterable[Attachment],
    asset_store: AssetStore,
    client: httpx.Client,
    executor: Executor,
) -> list[Attachment]:
    """Download every hosted attachment in parallel, then save each in order.

    Nothing is saved until every download has finished. If any failed, each
    failure is logged and the first one is raised.
    """
    hosted = [a for a in attachments if a.hosted]
    futures = [attachment.start_fetch(executor, client) for attachment in hosted]
    wait(futures)

    failures = [(a, f.exception()) for a, f in zip(hosted, futures) if f.exception() is not None]
    for attachment, exc in failures:
        logger.warning("Download failed for %s: %s", attachment.original_url, exc)
    if failures:
        raise failures[0][1]

    for attachment in hosted:
        attachment.save_to(asset_store)
    return hosted


def download_client(config: MigrationConfig | None = None) -> httpx.Client:
    """HTTP client for attachment downloads."""
    config = config or MigrationConfig()
    return httpx.Client(timeout=config.download_timeout, follow_redirects=True)


def download_executor(config: MigrationConfig | None = None) -> ThreadPoolExecutor:
    """Worker pool that runs attachment downloads in the background."""
    config = config or MigrationConfig()
    return ThreadPoolExecutor(max_workers=config.download_workers)

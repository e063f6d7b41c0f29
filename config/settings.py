"""Central configuration for the DFID research output migration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()  # Load .env for host overrides

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_ROOT / "data"
RAW_DIR = DATA_DIR / "raw"
PROCESSED_DIR = DATA_DIR / "processed"
TEMPLATES_DIR = PROJECT_ROOT / "templates"

# ---------------------------------------------------------------------------
# Hosts
# ---------------------------------------------------------------------------
# Research for Development (R4D) is the authoritative home of every output
# and of the attachments we are allowed to re-host.
AUTHORITATIVE_HOST = os.getenv("R4D_HOST", "r4d.dfid.gov.uk")

# The linked-development SPARQL mirror. Output URIs and hrefs embedded in
# abstracts point here and must never survive the migration.
LEGACY_HOST = os.getenv("LEGACY_HOST", "linked-development.org")

GOVUK_WEBSITE_ROOT = os.getenv("GOVUK_WEBSITE_ROOT", "https://gov.uk")

# Third-party hosts that carry copies of content already on R4D ("bumph").
#   filename: dropped when a hosted attachment has the same filename
#   record:   dropped whenever the record has any hosted attachment
#             (DOI resolvers, whose paths are identifiers, not filenames)
MIRROR_HOSTS: dict[str, str] = {
    "dx.doi.org": "record",
    "www.gsdrc.org": "filename",
    "gsdrc.org": "filename",
}

# ---------------------------------------------------------------------------
# Publishing schema
# ---------------------------------------------------------------------------
BASE_PATH_PREFIX = "/dfid-research-outputs"
DOCUMENT_TYPE = "dfid_research_output"
DFID_ORGANISATION_CONTENT_ID = "db994552-7644-404d-a770-a2fe659c661f"
FIRST_PUBLISHED_NOTE = "First published."
SLUG_MAX_LENGTH = int(os.getenv("SLUG_MAX_LENGTH", "100"))

# ---------------------------------------------------------------------------
# Markup
# ---------------------------------------------------------------------------
# Bold/strong labels that abstracts use in place of real headings
KNOWN_HEADERS: list[str] = ["Query", "Summary", "Key Findings", "Overview"]

# Abstracts arrive escaped up to three times over
UNESCAPE_PASSES = 3

# ---------------------------------------------------------------------------
# Attachment downloads
# ---------------------------------------------------------------------------
DOWNLOAD_WORKERS = int(os.getenv("DOWNLOAD_WORKERS", "4"))
DOWNLOAD_TIMEOUT = float(os.getenv("DOWNLOAD_TIMEOUT", "60.0"))


@dataclass
class MigrationConfig:
    """Tunables shared by the transformation components."""

    authoritative_host: str = AUTHORITATIVE_HOST
    legacy_host: str = LEGACY_HOST
    website_root: str = GOVUK_WEBSITE_ROOT
    base_path_prefix: str = BASE_PATH_PREFIX
    mirror_hosts: dict[str, str] = field(default_factory=lambda: dict(MIRROR_HOSTS))
    known_headers: list[str] = field(default_factory=lambda: list(KNOWN_HEADERS))
    unescape_passes: int = UNESCAPE_PASSES
    slug_max_length: int = SLUG_MAX_LENGTH
    download_workers: int = DOWNLOAD_WORKERS
    download_timeout: float = DOWNLOAD_TIMEOUT

    def canonical_url_for(self, slug: str) -> str:
        """Public URL of a migrated document with the given slug."""
        return f"{self.website_root.rstrip('/')}{self.base_path_prefix}/{slug}"


def load_migration_config(path: Path) -> MigrationConfig:
    """Build a MigrationConfig from a YAML file of field overrides.

    Keys not present in the file keep their defaults. Unknown keys are
    rejected so that typos do not silently fall back to a default host.
    """
    with open(path) as f:
        overrides = yaml.safe_load(f) or {}

    known = {f.name for f in fields(MigrationConfig)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ValueError(f"Unknown migration config keys in {path}: {', '.join(unknown)}")

    return MigrationConfig(**overrides)

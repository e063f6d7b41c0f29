"""Tests for legacy link rewriting and output URL canonicalization."""

from __future__ import annotations

from config.settings import MigrationConfig
from src.transform.links import (
    LinkKind,
    LinkRewriter,
    canonicalize_output_url,
    legacy_output_id,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

OUTPUT_LINK_HTML = (
    'This builds on <a href="http://linked-development.org/r4d/output/65132">Moving\n'
    "Beyond Research to Influence Policy Workshop, University of Southampton, "
    "23-24 January 2001.\n</a> which provides the background."
)

PROJECT_LINK_HTML = (
    '(<a href="http://linked-development.org/r4d/project/3090/">R8023: Guidelines for '
    'Good Governance</a>, and <a href="http://linked-development.org/r4d/project/3305/">'
    "R8338: Equity, Irrigation and Poverty</a>)"
)

OTHER_LINK_HTML = 'See <a href="http://www.example.org/report.pdf">the report</a>.'

EXPECTED_OUTPUT_SLUG = (
    "moving-beyond-research-to-influence-policy-workshop-university-of-southampton-23-24-january-2001"
)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestClassify:
    def setup_method(self):
        self.rewriter = LinkRewriter()

    def test_output(self):
        assert self.rewriter.classify("http://linked-development.org/r4d/output/65132") is LinkKind.LEGACY_OUTPUT

    def test_output_on_www_host(self):
        assert self.rewriter.classify("http://www.linked-development.org/r4d/output/1/") is LinkKind.LEGACY_OUTPUT

    def test_project(self):
        assert self.rewriter.classify("http://linked-development.org/r4d/project/3090/") is LinkKind.LEGACY_PROJECT

    def test_other_path_on_legacy_host(self):
        assert self.rewriter.classify("http://linked-development.org/about") is LinkKind.OTHER

    def test_other_host(self):
        assert self.rewriter.classify("http://www.example.org/r4d/output/1") is LinkKind.OTHER


class TestRewrite:
    def setup_method(self):
        self.rewriter = LinkRewriter()

    def test_output_link_points_at_govuk(self):
        result = self.rewriter.rewrite(OUTPUT_LINK_HTML)
        assert f'href="https://gov.uk/dfid-research-outputs/{EXPECTED_OUTPUT_SLUG}"' in result
        assert "linked-development" not in result
        assert "which provides the background." in result

    def test_project_links_are_unwrapped(self):
        result = self.rewriter.rewrite(PROJECT_LINK_HTML)
        assert "<a" not in result
        assert "linked-development" not in result
        assert "R8023: Guidelines for Good Governance" in result
        assert "R8338: Equity, Irrigation and Poverty" in result

    def test_output_link_without_text_is_unwrapped(self):
        result = self.rewriter.rewrite('<a href="http://linked-development.org/r4d/output/9">  </a>done')
        assert "<a" not in result
        assert result.endswith("done")

    def test_legacy_host_matched_case_insensitively(self):
        result = self.rewriter.rewrite('See <a href="http://LINKED-DEVELOPMENT.org/r4d/output/1">A Title</a>')
        assert 'href="https://gov.uk/dfid-research-outputs/a-title"' in result
        assert "LINKED-DEVELOPMENT" not in result

    def test_other_links_untouched(self):
        assert self.rewriter.rewrite(OTHER_LINK_HTML) == OTHER_LINK_HTML

    def test_other_links_survive_next_to_legacy_ones(self):
        result = self.rewriter.rewrite(OTHER_LINK_HTML + " " + PROJECT_LINK_HTML)
        assert 'href="http://www.example.org/report.pdf"' in result

    def test_configured_website_root(self):
        config = MigrationConfig(website_root="https://www.gov.uk/")
        result = LinkRewriter(config).rewrite(OUTPUT_LINK_HTML)
        assert f'href="https://www.gov.uk/dfid-research-outputs/{EXPECTED_OUTPUT_SLUG}"' in result


class TestCanonicalizeOutputUrl:
    def test_legacy_output_uri(self):
        assert (
            canonicalize_output_url("http://linked-development.org/r4d/output/5050/")
            == "http://r4d.dfid.gov.uk/Output/5050/Default.aspx"
        )

    def test_authoritative_uri_unchanged(self):
        url = "http://r4d.dfid.gov.uk/Output/5050/Default.aspx"
        assert canonicalize_output_url(url) == url

    def test_configured_authoritative_host(self):
        config = MigrationConfig(authoritative_host="r4d.example.org")
        assert (
            canonicalize_output_url("http://linked-development.org/r4d/output/7", config)
            == "http://r4d.example.org/Output/7/Default.aspx"
        )

    def test_legacy_output_id(self):
        assert legacy_output_id("http://linked-development.org/r4d/output/65132", "linked-development.org") == "65132"
        assert legacy_output_id("http://linked-development.org/r4d/project/1", "linked-development.org") is None

# =============================================================================
# Unit Tests: Resource Format Classification and URL Sanitising
# =============================================================================

from __future__ import annotations

from fakes import csv_resource, package

from gov_researcher.agents.resource_formats import (
    classify_extra,
    classify_resource,
    derive_pending_resources,
    extract_url,
)
from gov_researcher.models.domain import ResourceFormat


class TestClassifyResource:
    """Declared format / MIME type → allow-list member or INVALID."""

    def test_csv_format(self):
        assert classify_resource({"format": "CSV"}) == ResourceFormat.CSV

    def test_lowercase_format(self):
        assert classify_resource({"format": "csv"}) == ResourceFormat.CSV

    def test_csv_mimetype_with_charset(self):
        resource = {"format": "", "mimetype": "text/csv; charset=utf-8"}
        assert classify_resource(resource) == ResourceFormat.CSV

    def test_application_csv_mimetype(self):
        assert classify_resource({"mimetype": "application/csv"}) == ResourceFormat.CSV

    def test_pdf_is_invalid(self):
        resource = {"format": "PDF", "mimetype": "application/pdf"}
        assert classify_resource(resource) == ResourceFormat.INVALID

    def test_empty_is_invalid(self):
        assert classify_resource({"format": None, "mimetype": None}) == ResourceFormat.INVALID

    def test_classification_is_total(self):
        samples = [
            {}, {"format": "JSON"}, {"format": "XLSX"}, {"format": "CSV"},
            {"mimetype": "text/plain"}, {"mimetype": "text/csv"},
            {"format": "ZIP", "mimetype": "text/csv"}, {"format": 42},
        ]
        results = {classify_resource(s) for s in samples}
        assert results <= {ResourceFormat.CSV, ResourceFormat.INVALID}

    def test_deterministic(self):
        resource = {"format": "CSV", "mimetype": "text/csv"}
        assert classify_resource(resource) == classify_resource(resource)


class TestClassifyExtra:
    """Extras must be links whose text names a supported format."""

    def test_csv_link(self):
        assert classify_extra("https://data.example.gov/export.csv") == ResourceFormat.CSV

    def test_doi_link(self):
        assert classify_extra("https://doi.org/10.3886/ICPSR123") == ResourceFormat.DOI

    def test_plain_text_dropped(self):
        assert classify_extra("Contains csv data") == ResourceFormat.INVALID

    def test_non_string_dropped(self):
        assert classify_extra(["https://x.gov/a.csv"]) == ResourceFormat.INVALID

    def test_unrelated_link_dropped(self):
        assert classify_extra("https://agency.gov/about") == ResourceFormat.INVALID


class TestDerivePendingResources:
    """Building the evaluation work-list from package metadata."""

    def _package(self):
        return package(
            "ds-1",
            "Arrests",
            resources=[
                csv_resource("https://x.gov/arrests.csv", "Arrests"),
                {"url": "https://x.gov/report.pdf", "name": "Report", "format": "PDF"},
                csv_resource("https://x.gov/codes.csv", "Codes"),
            ],
            extras=[
                {"key": "doi", "value": "https://doi.org/10.1/abc"},
                {"key": "landing", "value": "https://x.gov/about"},
                {"key": "size", "value": 12},
            ],
        )

    def test_keeps_only_supported(self):
        pending = derive_pending_resources(self._package())
        assert [p.url for p in pending] == [
            "https://x.gov/arrests.csv",
            "https://x.gov/codes.csv",
            "https://doi.org/10.1/abc",
        ]

    def test_no_invalid_entries(self):
        pending = derive_pending_resources(self._package())
        assert all(p.format != ResourceFormat.INVALID for p in pending)

    def test_extras_follow_resources(self):
        pending = derive_pending_resources(self._package())
        assert pending[-1].format == ResourceFormat.DOI
        assert pending[-1].name == "doi"
        assert pending[-1].description is None

    def test_pdf_only_dataset_is_empty(self):
        pdf_only = package(
            "ds-2",
            "Reports",
            resources=[{"url": "https://x.gov/a.pdf", "name": "A", "format": "PDF"}],
            extras=[{"key": "data", "value": "https://x.gov/data.csv"}],
        )
        assert derive_pending_resources(pdf_only) == []

    def test_idempotent(self):
        meta = self._package()
        assert derive_pending_resources(meta) == derive_pending_resources(meta)

    def test_markdown_wrapped_resource_url(self):
        meta = package("ds-3", "T", resources=[
            csv_resource("[Download](https://x.gov/file.csv)"),
        ])
        assert derive_pending_resources(meta)[0].url == "https://x.gov/file.csv"

    def test_extra_link_with_parentheses(self):
        meta = package("ds-5", "T", resources=[csv_resource("https://x.gov/main.csv")], extras=[
            {"key": "codes", "value": "Codes (https://x.gov/codes_(v2).csv)"},
        ])
        assert derive_pending_resources(meta)[-1].url == "https://x.gov/codes_(v2).csv"

    def test_missing_url_dropped(self):
        meta = package("ds-4", "T", resources=[csv_resource("")])
        assert derive_pending_resources(meta) == []


class TestExtractUrl:
    def test_markdown_link(self):
        assert extract_url("[Title](https://example.com/file.csv)") == "https://example.com/file.csv"

    def test_markdown_link_no_trailing_paren(self):
        url = extract_url("See [Arrests (2020)](https://example.com/file.csv) here")
        assert url == "https://example.com/file.csv"

    def test_plain_url_unchanged(self):
        url = "https://example.com/data.csv?format=csv&id=1"
        assert extract_url(url) == url

    def test_angle_brackets_and_whitespace(self):
        assert extract_url("  <https://example.com/a.csv> ") == "https://example.com/a.csv"

    def test_parentheses_inside_url_kept(self):
        url = extract_url("[Arrests](https://x.gov/arrests_(2020).csv)")
        assert url == "https://x.gov/arrests_(2020).csv"

    def test_angle_bracketed_markdown_target(self):
        assert extract_url("[T](<https://x.gov/a_(1).csv>)") == "https://x.gov/a_(1).csv"

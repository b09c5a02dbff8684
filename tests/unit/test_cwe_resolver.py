"""
Tests for CWE lookup
"""
import json

import pytest

from vip.core.cwe_resolver import CweResolver, classify, default_catalog
from vip.core.models import Source, VulnerabilityRecord
from vip.utils.error_handler import ErrorKind, get_error_handler
from vip.utils.validation import parse_cwe_id, validate_cwe_id


class TestCweResolver:

    @pytest.mark.parametrize("reference", ["CWE-79", "79", "CWE-79 Improper Neutralization", "cwe-79"])
    def test_known_forms(self, reference):
        cwe = CweResolver().lookup(reference)
        assert cwe is not None
        assert cwe.cwe_id == 79
        assert "Cross-site Scripting" in cwe.name

    @pytest.mark.parametrize("reference", ["CWE-9999", "CWE-A", "NVD-CWE-Other", "", None])
    def test_unknown_or_malformed(self, reference):
        assert CweResolver().lookup(reference) is None

    def test_catalog_file(self, tmp_path):
        catalog = tmp_path / "cwe.json"
        catalog.write_text(json.dumps({"9999": "Test Weakness"}))
        resolver = CweResolver.from_file(catalog)
        assert resolver.lookup("CWE-9999").name == "Test Weakness"
        assert resolver.lookup("CWE-79") is None

    @pytest.mark.parametrize("reference, name", [
        ("CWE-1333", "Inefficient Regular Expression Complexity"),
        ("CWE-918", "Server-Side Request Forgery (SSRF)"),
        ("CWE-1321", "Improperly Controlled Modification of Object Prototype Attributes ('Prototype Pollution')"),
    ])
    def test_packaged_catalog(self, reference, name):
        cwe = CweResolver().lookup(reference)
        assert cwe.name == name

    def test_packaged_catalog_is_broad(self):
        assert len(default_catalog()) > 400


class TestCweParsing:

    def test_parse(self):
        assert parse_cwe_id("CWE-1321") == 1321
        assert parse_cwe_id("CWE-") is None
        assert validate_cwe_id("22")
        assert not validate_cwe_id("CWE-22a")


class TestClassify:

    def test_known_cwe_added_once(self):
        record = VulnerabilityRecord(source=Source.NVD, vuln_id="CVE-2021-0001")
        assert classify(record, "CWE-79", CweResolver())
        assert classify(record, "79", CweResolver())
        assert record.cwes == [79]

    def test_unknown_cwe_reported_and_omitted(self):
        record = VulnerabilityRecord(source=Source.NVD, vuln_id="CVE-2021-0001")
        assert not classify(record, "CWE-9999", CweResolver())
        assert record.cwes == []
        summary = get_error_handler().get_error_summary()
        assert summary['errors_by_kind'] == {ErrorKind.UNRESOLVED_CLASSIFICATION.value: 1}

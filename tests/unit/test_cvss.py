"""
Tests for CVSS scoring and severity derivation
"""
import pytest

from vip.core.cvss import CvssV2, CvssV3, apply_score, derive_severity, parse_cvss, severity_of
from vip.core.models import Severity, Source, VulnerabilityRecord
from vip.utils.error_handler import FieldParseError
from tests.fixtures.mock_data import CVSS_V2_NETWORK, CVSS_V3_CRITICAL, CVSS_V3_XSS


class TestCvssV2:

    def test_scores(self):
        cvss = parse_cvss(CVSS_V2_NETWORK)
        assert isinstance(cvss, CvssV2)
        assert cvss.base_score() == 7.5
        assert cvss.impact_score() == 6.4
        assert cvss.exploitability_score() == 10.0

    def test_vector_is_parenthesized(self):
        assert parse_cvss(CVSS_V2_NETWORK).vector == "(AV:N/AC:L/Au:N/C:P/I:P/A:P)"
        assert parse_cvss("(AV:N/AC:L/Au:N/C:P/I:P/A:P)").vector == "(AV:N/AC:L/Au:N/C:P/I:P/A:P)"

    def test_no_impact_scores_zero(self):
        assert parse_cvss("AV:N/AC:L/Au:N/C:N/I:N/A:N").base_score() == 0.0


class TestCvssV3:

    def test_scope_unchanged(self):
        cvss = parse_cvss(CVSS_V3_CRITICAL)
        assert isinstance(cvss, CvssV3)
        assert cvss.base_score() == 9.8
        assert cvss.impact_score() == 5.9
        assert cvss.exploitability_score() == 3.9

    def test_scope_changed(self):
        cvss = parse_cvss(CVSS_V3_XSS)
        assert cvss.scope_changed
        assert cvss.base_score() == 6.1
        assert cvss.impact_score() == 2.7
        assert cvss.exploitability_score() == 2.8

    def test_canonical_vector_drops_temporal_metrics(self):
        cvss = parse_cvss(CVSS_V3_CRITICAL + "/E:P/RL:O")
        assert cvss.vector == CVSS_V3_CRITICAL

    def test_version_30_kept(self):
        assert parse_cvss("CVSS:3.0/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H").vector.startswith("CVSS:3.0/")


class TestMalformedVectors:

    @pytest.mark.parametrize("vector", [
        "",
        None,
        "AV:N/AC:L/Au:N/C:P/I:P",
        "AV:N/AC:X/Au:N/C:P/I:P/A:P",
        "AV:N/AV:N/AC:L/Au:N/C:P/I:P/A:P",
        "CVSS:3.2/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H",
        "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H",
        "garbage",
    ])
    def test_raises(self, vector):
        with pytest.raises(FieldParseError):
            parse_cvss(vector)


class TestSeverity:

    @pytest.mark.parametrize("score, expected", [
        (10.0, Severity.CRITICAL),
        (9.0, Severity.CRITICAL),
        (8.9, Severity.HIGH),
        (7.0, Severity.HIGH),
        (6.9, Severity.MEDIUM),
        (4.0, Severity.MEDIUM),
        (3.9, Severity.LOW),
        (0.1, Severity.LOW),
        (0.0, Severity.INFO),
    ])
    def test_v3_thresholds(self, score, expected):
        assert derive_severity(cvss_v3_base_score=score) == expected

    @pytest.mark.parametrize("score, expected", [
        (10.0, Severity.HIGH),
        (7.0, Severity.HIGH),
        (6.9, Severity.MEDIUM),
        (4.0, Severity.MEDIUM),
        (3.9, Severity.LOW),
        (0.0, Severity.INFO),
    ])
    def test_v2_thresholds(self, score, expected):
        assert derive_severity(cvss_v2_base_score=score) == expected

    def test_v3_takes_precedence(self):
        assert derive_severity(cvss_v2_base_score=10.0, cvss_v3_base_score=3.0) == Severity.LOW

    @pytest.mark.parametrize("likelihood, technical, business, expected", [
        (7, 7, 1, Severity.CRITICAL),
        (1, 1, 1, Severity.INFO),
        (4, 1, 8, Severity.HIGH),
        (1, 4, 4, Severity.LOW),
        (4, 4, 4, Severity.MEDIUM),
    ])
    def test_owasp_risk_rating(self, likelihood, technical, business, expected):
        assert derive_severity(owasp_likelihood_score=likelihood, owasp_technical_impact_score=technical,
                               owasp_business_impact_score=business) == expected

    def test_incomplete_owasp_is_unassigned(self):
        assert derive_severity(owasp_likelihood_score=9) == Severity.UNASSIGNED

    def test_nothing_is_unassigned(self):
        assert derive_severity() == Severity.UNASSIGNED


class TestApplyScore:

    def test_record_scores_computed_from_vector(self):
        record = VulnerabilityRecord(source=Source.OSSINDEX, vuln_id="sonatype-1")
        apply_score(record, parse_cvss(CVSS_V3_CRITICAL))
        assert record.cvss_v3_vector == CVSS_V3_CRITICAL
        assert record.cvss_v3_base_score == 9.8
        assert record.cvss_v2_base_score is None
        assert severity_of(record) == Severity.CRITICAL

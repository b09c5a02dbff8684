"""
Tests for the analysis cache gate
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from vip.core.cache_gate import CacheGate
from vip.core.models import (
    AnalysisLevel, AnalyzerIdentity, CacheEntry, CacheType, Component, Source, VulnerabilityRecord
)
from vip.monitoring.metrics import get_pipeline_metrics
from tests.fixtures.mock_http import FixedClock

HOST = "https://ossindex.sonatype.org"
TARGET = "pkg:npm/lodash@4.17.20"
NOW = datetime(2024, 5, 1, 12, 0, 0)


def _entry(age: timedelta, vulnerabilities=None):
    return CacheEntry(CacheType.VULNERABILITY, Source.OSSINDEX, HOST, TARGET, NOW - age,
                      {'vulnerabilities': vulnerabilities or []})


@pytest.fixture
def mock_store():
    return Mock()


@pytest.fixture
def gate(mock_store):
    return CacheGate(mock_store, Mock(), validity_period_ms=12 * 3600 * 1000, clock=FixedClock(NOW))


class TestIsCurrent:

    def test_recent_entry(self, gate, mock_store):
        mock_store.get_cache_entry.return_value = _entry(timedelta(hours=1))
        assert gate.is_current(Source.OSSINDEX, HOST, TARGET)
        mock_store.get_cache_entry.assert_called_once_with(CacheType.VULNERABILITY, Source.OSSINDEX, HOST, TARGET)
        assert get_pipeline_metrics()['cache_hits_total'].get(cache_type="OSSINDEX") == 1

    def test_expired_entry(self, gate, mock_store):
        mock_store.get_cache_entry.return_value = _entry(timedelta(hours=13))
        assert not gate.is_current(Source.OSSINDEX, HOST, TARGET)
        assert get_pipeline_metrics()['cache_misses_total'].get(cache_type="OSSINDEX") == 1

    def test_window_boundary_is_not_current(self, gate, mock_store):
        mock_store.get_cache_entry.return_value = _entry(timedelta(hours=12))
        assert not gate.is_current(Source.OSSINDEX, HOST, TARGET)

    def test_missing_entry(self, gate, mock_store):
        mock_store.get_cache_entry.return_value = None
        assert not gate.is_current(Source.OSSINDEX, HOST, TARGET)

    def test_lookup_failure_is_not_current(self, gate, mock_store):
        mock_store.get_cache_entry.side_effect = RuntimeError("database locked")
        assert not gate.is_current(Source.OSSINDEX, HOST, TARGET)

    def test_aware_timestamps_compared_in_utc(self, mock_store):
        gate = CacheGate(mock_store, validity_period_ms=3600 * 1000,
                         clock=FixedClock(NOW.replace(tzinfo=timezone.utc)))
        mock_store.get_cache_entry.return_value = _entry(timedelta(minutes=30))
        assert gate.is_current(Source.OSSINDEX, HOST, TARGET)


class TestApplyFromCache:

    def test_associations_recreated(self, gate, mock_store):
        component = Component(uuid="c-1")
        vulnerability = VulnerabilityRecord(source=Source.NVD, vuln_id="CVE-2021-23337")
        mock_store.get_cache_entry.return_value = _entry(timedelta(hours=1), [["NVD", "CVE-2021-23337"],
                                                                              ["OSSINDEX", "gone"]])
        mock_store.get_vulnerability.side_effect = [vulnerability, None]
        mock_store.add_association.return_value = True

        applied = gate.apply_from_cache(Source.OSSINDEX, HOST, TARGET, component,
                                        AnalyzerIdentity.OSSINDEX_ANALYZER, AnalysisLevel.MANUAL_ANALYSIS)

        assert applied == 1
        gate.notifier.evaluate.assert_called_once_with(vulnerability, component, AnalysisLevel.MANUAL_ANALYSIS)
        association = mock_store.add_association.call_args.args[0]
        assert association.component_uuid == "c-1"
        assert association.vuln_id == "CVE-2021-23337"
        assert association.analyzer == AnalyzerIdentity.OSSINDEX_ANALYZER

    def test_no_entry(self, gate, mock_store):
        mock_store.get_cache_entry.return_value = None
        assert gate.apply_from_cache(Source.OSSINDEX, HOST, TARGET, Component(uuid="c-1"),
                                     AnalyzerIdentity.OSSINDEX_ANALYZER, AnalysisLevel.MANUAL_ANALYSIS) == 0
        mock_store.add_association.assert_not_called()


class TestRecordResult:

    def test_keys_deduplicated(self, gate, mock_store):
        gate.record_result(Component(uuid="c-1"), Source.OSSINDEX, HOST, TARGET, [
            (Source.NVD, "CVE-2021-23337"), (Source.NVD, "CVE-2021-23337"), (Source.OSSINDEX, "sonatype-1"),
        ])
        mock_store.update_cache_entry.assert_called_once_with(
            CacheType.VULNERABILITY, Source.OSSINDEX, HOST, TARGET,
            {'vulnerabilities': [["NVD", "CVE-2021-23337"], ["OSSINDEX", "sonatype-1"]]})

    def test_empty_result_still_recorded(self, gate, mock_store):
        gate.record_result(Component(uuid="c-1"), Source.OSSINDEX, HOST, TARGET, [])
        assert mock_store.update_cache_entry.call_args.args[4] == {'vulnerabilities': []}

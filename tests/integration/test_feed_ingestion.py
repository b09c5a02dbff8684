"""
End-to-end tests of NVD feed ingestion into the store
"""
import json

import pytest

from vip.core.analyzer import AnalysisCoordinator, FeedIngestRequest, MergeAnalysisRequest
from vip.core.collaborators import LoggingEventSignaler
from vip.core.cwe_resolver import CweResolver
from vip.core.feed_parser import NvdFeedParser
from vip.core.models import Severity, Source
from vip.utils.error_handler import VIPException
from tests.fixtures.mock_data import FLASH_ITEM, SAMPLE_FEED_ITEMS, nvd_feed_bytes

pytestmark = pytest.mark.integration


@pytest.fixture
def signaler():
    return LoggingEventSignaler()


@pytest.fixture
def coordinator(store, signaler):
    parser = NvdFeedParser(store.synchronize_vulnerability, CweResolver(), signaler)
    return AnalysisCoordinator([], parser, store)


@pytest.fixture
def feed_file(tmp_path):
    def write(name, content):
        path = tmp_path / name
        path.write_bytes(content)
        return str(path)
    return write


class TestFeedIngestion:

    def test_reconciled_record_stored(self, coordinator, store, feed_file):
        path = feed_file("nvdcve-1.1-2021.json", nvd_feed_bytes([FLASH_ITEM]))

        results = coordinator.handle(FeedIngestRequest([path]))

        assert results['status'] == 'success'
        assert results['entries'] == 1
        record = store.get_vulnerability(Source.NVD, "CVE-2021-0001")
        assert record.severity == Severity.CRITICAL
        assert record.cvss_v3_base_score == 9.8
        ranges = store.get_ranges(Source.NVD, "CVE-2021-0001")
        assert len(ranges) == 1
        assert ranges[0].cpe23 == "cpe:2.3:a:adobe:flash_player:*:*:*:*:*:*:*:*"

    def test_reingesting_updates_in_place(self, coordinator, store, feed_file):
        first = feed_file("2021.json", nvd_feed_bytes(SAMPLE_FEED_ITEMS))
        updated_item = json.loads(json.dumps(FLASH_ITEM))
        updated_item["impact"] = {}
        second = feed_file("modified.json", nvd_feed_bytes([updated_item]))

        coordinator.handle(FeedIngestRequest([first, second]))

        assert store.count_vulnerabilities() == 2
        assert store.get_vulnerability(Source.NVD, "CVE-2021-0001").severity == Severity.UNASSIGNED
        assert len(store.get_ranges(Source.NVD, "CVE-2021-0001")) == 1

    def test_one_commit_signal_per_document(self, coordinator, signaler, feed_file):
        good = feed_file("a.json", nvd_feed_bytes([FLASH_ITEM]))
        broken = feed_file("b.json", b'{"CVE_Items": [')
        skipped = feed_file("c.json.zip", b"PK")

        results = coordinator.handle(FeedIngestRequest([good, broken, skipped]))

        assert results['status'] == 'failed'
        assert [f['status'] for f in results['files']] == ['success', 'failed', 'skipped']
        assert signaler.signals == [("COMMIT", "VulnerabilityRecord")] * 2

    def test_without_parser(self, store):
        with pytest.raises(VIPException):
            AnalysisCoordinator([], None, store).handle(FeedIngestRequest([]))


class TestDispatch:

    def test_unknown_request(self, coordinator):
        with pytest.raises(TypeError):
            coordinator.handle(object())

    def test_merge_request(self, coordinator, store, make_component):
        make_component("src-1", "pkg:npm/lodash@4.17.20", project_uuid="p-1")
        make_component("dst-1", "pkg:npm/lodash@4.17.20", project_uuid="p-2")

        assert coordinator.handle(MergeAnalysisRequest("p-1", "p-2")) == {'status': 'success', 'merged': 0}

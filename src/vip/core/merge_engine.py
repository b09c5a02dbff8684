"""
Merges OSS Index component reports into the vulnerability store
"""
import logging
from typing import List, Optional, Tuple

from vip.core.cache_gate import CacheGate
from vip.core.collaborators import VulnerabilityStore, NotificationEvaluator, ClassificationLookup
from vip.core.cvss import parse_cvss, apply_score, severity_of
from vip.core.cwe_resolver import classify
from vip.core.feed_parser import render_references
from vip.core.identifiers import minimize_purl, coordinates_match
from vip.core.models import (
    Alias, AnalysisLevel, AnalyzerIdentity, Association, Component, ComponentReport,
    ReportVulnerability, Source, VulnerabilityRecord
)
from vip.monitoring.metrics import record_association
from vip.utils.error_handler import FieldParseError
from vip.utils.validation import is_cve_id

logger = logging.getLogger(__name__)


def generate_vulnerability(reported: ReportVulnerability,
                           classification_lookup: ClassificationLookup) -> VulnerabilityRecord:
    """
    Build a canonical record from a reported vulnerability

    A CVE id makes it an NVD record keyed by that id; otherwise it is an
    OSS Index record keyed by the service id and carrying the title.
    """
    if is_cve_id(reported.cve):
        record = VulnerabilityRecord(source=Source.NVD, vuln_id=reported.cve)
    else:
        record = VulnerabilityRecord(source=Source.OSSINDEX, vuln_id=reported.id, title=reported.title)
    record.description = reported.description

    if reported.cwe:
        classify(record, reported.cwe, classification_lookup)

    urls = ([reported.reference] if reported.reference else []) + list(reported.external_references)
    record.references = render_references(urls)

    if reported.cvss_vector:
        try:
            apply_score(record, parse_cvss(reported.cvss_vector))
        except FieldParseError as e:
            logger.warning(f"{record.vuln_id}: {e}; CVSS vector skipped")

    record.severity = severity_of(record)
    return record


class MergeEngine:
    """Matches report entries to components and records what was found"""

    def __init__(self, store: VulnerabilityStore, cache_gate: CacheGate,
                 classification_lookup: ClassificationLookup,
                 notifier: Optional[NotificationEvaluator] = None,
                 target_host: str = "https://ossindex.sonatype.org",
                 analyzer: AnalyzerIdentity = AnalyzerIdentity.OSSINDEX_ANALYZER,
                 alias_sync_enabled: bool = True,
                 analysis_level: AnalysisLevel = AnalysisLevel.PERIODIC_ANALYSIS):
        self.store = store
        self.cache_gate = cache_gate
        self.classification_lookup = classification_lookup
        self.notifier = notifier
        self.target_host = target_host
        self.analyzer = analyzer
        self.alias_sync_enabled = alias_sync_enabled
        self.analysis_level = analysis_level

    def process_results(self, report: List[ComponentReport], components: List[Component]) -> int:
        """
        Merge one page of results in a single unit of work

        Returns:
            Number of associations processed
        """
        with self.store.unit_of_work():
            return self._process_page(report, components)

    def _process_page(self, report: List[ComponentReport], components: List[Component]) -> int:
        processed = 0
        for component_report in report:
            for candidate in components:
                if not coordinates_match(minimize_purl(candidate.purl), component_report.coordinates):
                    continue

                component = self.store.get_component(candidate.uuid)
                if component is None:
                    logger.debug(f"Component {candidate.uuid} no longer exists, skipping")
                    continue

                found: List[Tuple[Source, str]] = []
                for reported in component_report.vulnerabilities:
                    vulnerability = self._resolve(reported)
                    self._associate(vulnerability, component, reported)
                    found.append((vulnerability.source, vulnerability.vuln_id))
                    processed += 1

                self.cache_gate.record_result(component, Source.OSSINDEX, self.target_host,
                                              candidate.purl.to_string(), found)
        return processed

    def _resolve(self, reported: ReportVulnerability) -> VulnerabilityRecord:
        """Existing canonical record for a reported vulnerability, created when missing"""
        if is_cve_id(reported.cve):
            source, vuln_id = Source.NVD, reported.cve
        else:
            source, vuln_id = Source.OSSINDEX, reported.id

        vulnerability = self.store.get_vulnerability(source, vuln_id)
        if vulnerability is None:
            # CVEs may be reserved or not yet published through the NVD feeds
            vulnerability = self.store.create_vulnerability(
                generate_vulnerability(reported, self.classification_lookup))

        self._synchronize_alias(reported)
        return vulnerability

    def _synchronize_alias(self, reported: ReportVulnerability):
        # the cve field sometimes holds sonatype identifiers
        if not self.alias_sync_enabled or not is_cve_id(reported.cve) or not reported.id:
            return
        if reported.id == reported.cve:
            return
        logger.debug(f"Updating vulnerability alias for {reported.id}")
        self.store.synchronize_alias(Alias(sonatype_id=reported.id, cve_id=reported.cve))

    def _associate(self, vulnerability: VulnerabilityRecord, component: Component,
                   reported: ReportVulnerability):
        if self.notifier is not None:
            self.notifier.evaluate(vulnerability, component, self.analysis_level)
        created = self.store.add_association(Association(
            component_uuid=component.uuid,
            source=vulnerability.source,
            vuln_id=vulnerability.vuln_id,
            analyzer=self.analyzer,
            alternate_identifier=reported.id,
            reference=reported.reference,
        ))
        if created:
            record_association(self.analyzer.value)

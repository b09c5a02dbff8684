"""
Streaming parser for NVD JSON 1.1 vulnerability feeds
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Iterator, List, Optional, Callable, BinaryIO, Tuple, Union

import ijson

from vip.core.applicability import reconcile_configurations
from vip.core.collaborators import ClassificationLookup, EventSignaler
from vip.core.cvss import parse_cvss, severity_of, CvssV2, CvssV3
from vip.core.cwe_resolver import classify
from vip.core.models import VulnerabilityRecord, ApplicabilityRange, Source
from vip.monitoring.metrics import record_feed_entry
from vip.utils.error_handler import (
    DocumentParseError, FieldParseError, ErrorContext, handle_error, log_operation
)

logger = logging.getLogger(__name__)

Sink = Callable[[VulnerabilityRecord, List[ApplicabilityRange]], Any]

ITEMS_KEY = "CVE_Items"
COMMIT_ACTION = "COMMIT"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp with offset such as ``2021-01-01T05:15Z``

    Raises:
        FieldParseError: when the value is not a valid timestamp
    """
    if value is None or not str(value).strip():
        return None
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return datetime.fromisoformat(text)
    except ValueError as e:
        raise FieldParseError(f"Invalid timestamp '{value}'", field='date') from e


def render_references(urls: List[str]) -> Optional[str]:
    """Markdown bullet list of ``[url](url)`` links, or None when there are none"""
    text = ''.join(f"* [{url}]({url})\n" for url in urls)
    if not text:
        return None
    return text[:text.rindex('\n')]


class NvdFeedParser:
    """
    Streams an NVD JSON 1.1 document, one CVE item at a time.

    Each item becomes a VulnerabilityRecord plus its reconciled applicability
    ranges and is handed to ``sink``. Once the document has been consumed a
    single commit signal is sent, whether or not parsing succeeded.
    """

    def __init__(self, sink: Sink, classification_lookup: ClassificationLookup,
                 signaler: Optional[EventSignaler] = None):
        self.sink = sink
        self.classification_lookup = classification_lookup
        self.signaler = signaler

    @log_operation("parse feed", "NvdFeedParser")
    def parse(self, path: Union[str, Path]) -> Dict[str, Any]:
        """
        Parse a feed file

        Returns:
            Summary dictionary with the number of entries delivered
        """
        path = Path(path)
        if not path.name.endswith('.json'):
            logger.debug(f"Skipping {path.name}: not a JSON feed")
            return {'file': str(path), 'status': 'skipped', 'entries': 0}

        logger.info(f"Parsing {path.name}")
        with open(path, 'rb') as f:
            return self.parse_stream(f, name=str(path))

    def parse_stream(self, fp: BinaryIO, name: str = "<stream>") -> Dict[str, Any]:
        """Parse an already opened feed document"""
        summary: Dict[str, Any] = {'file': name, 'status': 'success', 'entries': 0}
        try:
            for item in self.iter_items(fp, name):
                if self._process_item(item):
                    summary['entries'] += 1
        except (ijson.JSONError, DocumentParseError) as e:
            if isinstance(e, DocumentParseError):
                error = e
            else:
                error = DocumentParseError(f"Malformed feed document {name}: {e}", file_path=name)
            error.context = ErrorContext(operation="parse feed", component="NvdFeedParser")
            handle_error(error)
            summary['status'] = 'failed'
            summary['error'] = str(error)
        finally:
            if self.signaler is not None:
                self.signaler.signal(COMMIT_ACTION, "VulnerabilityRecord")

        logger.info(f"Parsed {summary['entries']} entries from {name}")
        return summary

    @staticmethod
    def iter_items(fp: BinaryIO, name: str = "<stream>") -> Iterator[Any]:
        """
        Yield the elements of the top-level ``CVE_Items`` array one at a time

        Raises:
            DocumentParseError: when the document is not an object whose
                ``CVE_Items`` member is an array
            ijson.JSONError: when the document is not valid JSON
        """
        events = ijson.parse(fp, use_float=True)
        first = next(events, None)
        if first is None or first[1] != 'start_map':
            raise DocumentParseError(f"Feed document {name} is not a JSON object", file_path=name)

        found = False
        for prefix, event, value in events:
            if prefix != ITEMS_KEY:
                continue
            if event != 'start_array':
                raise DocumentParseError(f"CVE_Items in {name} is not an array", file_path=name)
            found = True
            yield from _array_elements(events)

        if not found:
            raise DocumentParseError(f"Feed document {name} has no CVE_Items array", file_path=name)

    def _process_item(self, item: Any) -> bool:
        try:
            if not isinstance(item, dict):
                raise TypeError(f"expected an object, found {type(item).__name__}")
            cve = item.get('cve') or {}
            vuln_id = (cve.get('CVE_data_meta') or {}).get('ID')
            if not vuln_id or not isinstance(vuln_id, str):
                logger.warning("Feed entry without CVE_data_meta.ID discarded")
                return False

            record = self.parse_item(item)
            ranges = reconcile_configurations((item.get('configurations') or {}).get('nodes') or [])
        except (TypeError, AttributeError, KeyError, ValueError) as e:
            handle_error(FieldParseError(
                f"Malformed feed entry discarded: {e}", field='entry',
                context=ErrorContext(operation="parse feed entry", component="NvdFeedParser")))
            return False

        self.sink(record, ranges)
        record_feed_entry(Source.NVD.value)
        return True

    def parse_item(self, item: Dict[str, Any]) -> VulnerabilityRecord:
        """
        Build the canonical record of one CVE item

        A malformed field is reported and left unset; the other fields are still read.
        """
        cve = item.get('cve') or {}
        record = VulnerabilityRecord(source=Source.NVD, vuln_id=cve['CVE_data_meta']['ID'])

        self._parse_field(record, 'dates', self._parse_dates, item)
        self._parse_field(record, 'description', self._parse_description, cve)
        self._parse_field(record, 'impact', self._parse_impact, item.get('impact') or {})
        self._parse_field(record, 'problemtype', self._parse_cwes, cve)
        self._parse_field(record, 'references', self._parse_references, cve)
        record.severity = severity_of(record)
        return record

    def _parse_field(self, record: VulnerabilityRecord, field_name: str,
                     parse: Callable[[Any, VulnerabilityRecord], None], value: Any):
        try:
            parse(value, record)
        except (TypeError, AttributeError, KeyError, ValueError) as e:
            handle_error(FieldParseError(
                f"Malformed {field_name} skipped: {e}", field=field_name,
                context=ErrorContext(operation="parse feed entry", component="NvdFeedParser",
                                     vuln_id=record.vuln_id)))

    def _parse_dates(self, item: Dict[str, Any], record: VulnerabilityRecord):
        for field_name, attr in (('publishedDate', 'published'), ('lastModifiedDate', 'updated')):
            try:
                setattr(record, attr, parse_timestamp(item.get(field_name)))
            except FieldParseError as e:
                logger.warning(f"{record.vuln_id}: {e}; {attr} left unset")

    def _parse_description(self, cve: Dict[str, Any], record: VulnerabilityRecord):
        descriptions = [
            d['value'] for d in (cve.get('description') or {}).get('description_data') or []
            if isinstance(d, dict) and d.get('lang') == 'en' and isinstance(d.get('value'), str)
        ]
        record.description = '\n\n'.join(descriptions)

    def _parse_references(self, cve: Dict[str, Any], record: VulnerabilityRecord):
        urls = [
            ref['url'] for ref in (cve.get('references') or {}).get('reference_data') or []
            if isinstance(ref, dict) and isinstance(ref.get('url'), str) and ref['url']
        ]
        record.references = render_references(urls)

    def _parse_cwes(self, cve: Dict[str, Any], record: VulnerabilityRecord):
        for problem in (cve.get('problemtype') or {}).get('problemtype_data') or []:
            for desc in problem.get('description') or []:
                if desc.get('lang') != 'en':
                    continue
                value = desc.get('value')
                if not isinstance(value, str) or not value.startswith('CWE-'):
                    continue
                classify(record, value, self.classification_lookup)

    def _parse_impact(self, impact: Dict[str, Any], record: VulnerabilityRecord):
        """Canonicalize vectors but keep the scores published in the feed"""
        v2 = impact.get('baseMetricV2')
        if v2:
            cvss_v2 = v2.get('cvssV2')
            if cvss_v2:
                record.cvss_v2_vector = self._canonical_vector(record, cvss_v2.get('vectorString'), CvssV2)
                record.cvss_v2_base_score = _score(cvss_v2.get('baseScore'))
            record.cvss_v2_exploitability_score = _score(v2.get('exploitabilityScore'))
            record.cvss_v2_impact_score = _score(v2.get('impactScore'))

        v3 = impact.get('baseMetricV3')
        if v3:
            cvss_v3 = v3.get('cvssV3')
            if cvss_v3:
                record.cvss_v3_vector = self._canonical_vector(record, cvss_v3.get('vectorString'), CvssV3)
                record.cvss_v3_base_score = _score(cvss_v3.get('baseScore'))
            record.cvss_v3_exploitability_score = _score(v3.get('exploitabilityScore'))
            record.cvss_v3_impact_score = _score(v3.get('impactScore'))

    def _canonical_vector(self, record: VulnerabilityRecord, vector: Optional[str], expected: type) -> Optional[str]:
        try:
            cvss = parse_cvss(vector)
            if not isinstance(cvss, expected):
                raise FieldParseError(f"Unexpected CVSS version for vector {vector}", field='cvss')
            return cvss.vector
        except FieldParseError as e:
            logger.warning(f"{record.vuln_id}: {e}; vector skipped")
            return None


def _score(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric score {value!r}")
        return None


def _array_elements(events: Iterator[Tuple[str, str, Any]]) -> Iterator[Any]:
    """Build each element of an array whose ``start_array`` event was just consumed"""
    for _, event, value in events:
        if event == 'end_array':
            return
        if event in ('start_map', 'start_array'):
            builder = ijson.ObjectBuilder()
            depth = 1
            while depth:
                builder.event(event, value)
                _, event, value = next(events)
                if event in ('start_map', 'start_array'):
                    depth += 1
                elif event in ('end_map', 'end_array'):
                    depth -= 1
            yield builder.value
        else:
            yield value

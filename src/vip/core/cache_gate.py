"""
Analysis cache: skips repeat network calls for recently analyzed subjects
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, Tuple

from vip.core.collaborators import VulnerabilityStore, NotificationEvaluator
from vip.core.models import (
    Association, AnalyzerIdentity, AnalysisLevel, CacheType, Component, Source
)
from vip.monitoring.metrics import record_cache_hit, record_cache_miss, record_association

logger = logging.getLogger(__name__)

DEFAULT_VALIDITY_PERIOD_MS = 43200000


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in the cache"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class CacheGate:
    """
    Cache of analysis results keyed by (source, target host, subject)

    ``record_result`` stores the vulnerabilities found for a subject;
    ``apply_from_cache`` re-creates their associations without calling
    the service.
    """

    def __init__(self, store: VulnerabilityStore, notifier: Optional[NotificationEvaluator] = None,
                 validity_period_ms: int = DEFAULT_VALIDITY_PERIOD_MS,
                 clock: Callable[[], datetime] = utcnow,
                 cache_type: CacheType = CacheType.VULNERABILITY):
        self.store = store
        self.notifier = notifier
        self.validity_period = timedelta(milliseconds=validity_period_ms)
        self.clock = clock
        self.cache_type = cache_type

    def is_current(self, source: Source, target_host: str, target: str) -> bool:
        """True when a result for the key was recorded within the validity window"""
        try:
            entry = self.store.get_cache_entry(self.cache_type, source, target_host, target)
        except Exception as e:
            logger.warning(f"Cache lookup for {target} failed, treating as not current: {e}")
            record_cache_miss(source.value)
            return False

        if entry is None:
            record_cache_miss(source.value)
            return False

        current = _as_naive_utc(self.clock()) < _as_naive_utc(entry.last_occurrence) + self.validity_period
        if current:
            record_cache_hit(source.value)
        else:
            record_cache_miss(source.value)
        return current

    def apply_from_cache(self, source: Source, target_host: str, target: str, component: Component,
                         analyzer: AnalyzerIdentity, analysis_level: AnalysisLevel) -> int:
        """
        Associate the cached vulnerabilities with ``component``

        Returns:
            Number of associations written
        """
        entry = self.store.get_cache_entry(self.cache_type, source, target_host, target)
        if entry is None:
            logger.debug(f"No cached analysis for {target}")
            return 0

        applied = 0
        for vuln_source, vuln_id in entry.result.get('vulnerabilities', []):
            vulnerability = self.store.get_vulnerability(Source(vuln_source), vuln_id)
            if vulnerability is None:
                logger.debug(f"Cached vulnerability {vuln_source}/{vuln_id} no longer exists")
                continue
            if self.notifier is not None:
                self.notifier.evaluate(vulnerability, component, analysis_level)
            if self.store.add_association(Association(
                    component_uuid=component.uuid,
                    source=vulnerability.source,
                    vuln_id=vulnerability.vuln_id,
                    analyzer=analyzer)):
                record_association(AnalyzerIdentity(analyzer).value)
            applied += 1

        logger.debug(f"Applied {applied} cached vulnerabilities to {component.uuid}")
        return applied

    def record_result(self, component: Component, source: Source, target_host: str, target: str,
                      vulnerabilities: Iterable[Tuple[Source, str]]):
        """Create or refresh the cache entry after a live analysis"""
        keys: List[List[str]] = []
        for vuln_source, vuln_id in vulnerabilities:
            key = [Source(vuln_source).value, vuln_id]
            if key not in keys:
                keys.append(key)
        self.store.update_cache_entry(self.cache_type, source, target_host, target,
                                      {'vulnerabilities': keys})
        logger.debug(f"Cached {len(keys)} vulnerabilities for {component.uuid} ({target})")

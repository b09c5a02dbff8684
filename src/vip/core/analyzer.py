"""
Analysis coordinator and typed task requests
"""
import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from functools import singledispatchmethod
from typing import Dict, Any, List, Optional, Protocol

from vip.core.collaborators import VulnerabilityStore
from vip.core.feed_parser import NvdFeedParser
from vip.core.models import AnalysisLevel, AnalyzerIdentity, Component
from vip.utils.error_handler import AnalysisAbortedError, VIPException

logger = logging.getLogger(__name__)


class Analyzer(Protocol):
    identity: AnalyzerIdentity

    @property
    def enabled(self) -> bool:
        ...

    def is_capable(self, component: Component) -> bool:
        ...

    def should_analyze(self, component: Component) -> bool:
        ...

    def analyze(self, components: List[Component]) -> Dict[str, Any]:
        ...


@dataclass
class AnalysisRequest:
    """Analyze components with every enabled analyzer"""
    components: List[Component]
    analysis_level: AnalysisLevel = AnalysisLevel.PERIODIC_ANALYSIS


@dataclass
class FeedIngestRequest:
    """Ingest NVD JSON feed files"""
    paths: List[str] = field(default_factory=list)


@dataclass
class MergeAnalysisRequest:
    """Copy the analysis trail of one project onto another"""
    source_project: str
    target_project: str


class AnalysisCoordinator:
    """Dispatches task requests to analyzers, the feed parser or the store"""

    def __init__(self, analyzers: Optional[List[Analyzer]] = None,
                 feed_parser: Optional[NvdFeedParser] = None,
                 store: Optional[VulnerabilityStore] = None):
        self.analyzers = list(analyzers or [])
        self.feed_parser = feed_parser
        self.store = store

    @singledispatchmethod
    def handle(self, request) -> Dict[str, Any]:
        raise TypeError(f"Unsupported request type: {type(request).__name__}")

    @handle.register
    def _(self, request: AnalysisRequest) -> Dict[str, Any]:
        return self.run_analysis(request)

    @handle.register
    def _(self, request: FeedIngestRequest) -> Dict[str, Any]:
        return self.ingest_feeds(request)

    @handle.register
    def _(self, request: MergeAnalysisRequest) -> Dict[str, Any]:
        return self.merge_analysis(request)

    def run_analysis(self, request: AnalysisRequest) -> Dict[str, Any]:
        """
        Run every enabled analyzer over the components it can handle

        An aborted analyzer is reported in the results and does not stop
        the remaining analyzers.
        """
        results: Dict[str, Any] = {'status': 'success', 'analyzers': {}}
        for analyzer in self.analyzers:
            name = AnalyzerIdentity(analyzer.identity).value
            if not analyzer.enabled:
                logger.info(f"{name} is disabled, skipping")
                results['analyzers'][name] = {'status': 'disabled'}
                continue

            if hasattr(analyzer, 'analysis_level'):
                analyzer.analysis_level = request.analysis_level

            capable = [c for c in request.components if analyzer.is_capable(c)]
            logger.info(f"Starting {name} analysis of {len(capable)} component(s)")
            try:
                summary = analyzer.analyze(capable)
                results['analyzers'][name] = {'status': 'success', **summary}
            except AnalysisAbortedError as e:
                results['status'] = 'failed'
                results['analyzers'][name] = {
                    'status': 'failed',
                    'error': str(e),
                    'kind': e.kind.value if e.kind else None,
                    'pages_completed': e.pages_completed,
                }
            logger.info(f"{name} analysis complete")
        return results

    def ingest_feeds(self, request: FeedIngestRequest) -> Dict[str, Any]:
        if self.feed_parser is None:
            raise VIPException("No feed parser configured")

        results: Dict[str, Any] = {'status': 'success', 'files': []}
        for path in request.paths:
            with self.store.unit_of_work() if self.store is not None else nullcontext():
                summary = self.feed_parser.parse(path)
            if summary.get('status') == 'failed':
                results['status'] = 'failed'
            results['files'].append(summary)
        results['entries'] = sum(f['entries'] for f in results['files'])
        return results

    def merge_analysis(self, request: MergeAnalysisRequest) -> Dict[str, Any]:
        if self.store is None:
            raise VIPException("No vulnerability store configured")

        logger.info(f"Merging analysis trail from project {request.source_project} "
                    f"into {request.target_project}")
        merged = self.store.merge_analysis_trail(request.source_project, request.target_project)
        return {'status': 'success', 'merged': merged}

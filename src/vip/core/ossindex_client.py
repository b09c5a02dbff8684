"""
Sonatype OSS Index analyzer
"""
import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter

from vip.core.cache_gate import CacheGate
from vip.core.collaborators import SecretDecryptor
from vip.core.identifiers import minimize_purl
from vip.core.merge_engine import MergeEngine
from vip.core.models import AnalysisLevel, AnalyzerIdentity, Component, ComponentReport, Source
from vip.monitoring.metrics import track_api_metrics
from vip.utils.config import Config
from vip.utils.error_handler import (
    AnalysisAbortedError, CredentialDecryptionError, ErrorContext, ErrorKind,
    RetryExhaustedError, ServiceResult, UnexpectedResponseError, PermanentServiceError,
    handle_error, log_operation
)
from vip.utils.error_recovery import BackoffExecutor, RetryConfig

logger = logging.getLogger(__name__)

COMPONENT_REPORT_PATH = "/api/v3/component-report"


@dataclass
class OssIndexSettings:
    """Connection settings for the component-report service"""
    base_url: str = "https://ossindex.sonatype.org"
    username: Optional[str] = None
    token: Optional[str] = None
    user_agent: str = "VulnerabilityIntelligencePipeline/1.0"
    timeout: float = 30
    request_max_purl: int = 128
    alias_sync_enabled: bool = True
    enabled: bool = True

    @classmethod
    def from_config(cls, config: Config) -> "OssIndexSettings":
        return cls(
            base_url=str(config.get('api.ossindex.base_url', cls.base_url)).rstrip('/'),
            username=config.get('api.ossindex.username'),
            token=config.get_api_key('ossindex'),
            user_agent=config.get('api.ossindex.user_agent', cls.user_agent),
            timeout=config.get('api.ossindex.timeout', cls.timeout),
            request_max_purl=int(config.get('api.ossindex.request_max_purl', cls.request_max_purl)),
            alias_sync_enabled=bool(config.get('api.ossindex.alias_sync_enabled', True)),
            enabled=bool(config.get('api.ossindex.enabled', True)),
        )


def create_session(pool_connections: int = 10, pool_maxsize: int = 20) -> requests.Session:
    """HTTP session with connection pooling; retries are handled by BackoffExecutor"""
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=pool_connections, pool_maxsize=pool_maxsize)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def resolve_credentials(username: Optional[str], token: Optional[str],
                        decryptor: Optional[SecretDecryptor]) -> Optional[Tuple[str, str]]:
    """
    Basic-auth credentials, or None for anonymous access

    A token that cannot be decrypted is logged and the analyzer continues
    without authentication; OSS Index then applies stricter rate limits.
    """
    if not username or not token:
        logger.warning("An API username or token has not been specified for use with OSS Index. "
                       "Using anonymous access")
        return None
    if decryptor is None:
        return (username, token)
    try:
        return (username, decryptor.decrypt(token))
    except CredentialDecryptionError as e:
        handle_error(e, ErrorContext(operation="decrypt credentials", component="OssIndexAnalyzer"))
        logger.error("Continuing OSS Index analysis without authentication")
        return None


class OssIndexAnalyzer:
    """Analyzes components with package URLs against OSS Index"""

    identity = AnalyzerIdentity.OSSINDEX_ANALYZER
    source = Source.OSSINDEX

    def __init__(self, settings: OssIndexSettings, cache_gate: CacheGate, merge_engine: MergeEngine,
                 retry_config: RetryConfig, session: Optional[requests.Session] = None,
                 decryptor: Optional[SecretDecryptor] = None,
                 analysis_level: AnalysisLevel = AnalysisLevel.PERIODIC_ANALYSIS):
        self.settings = settings
        self.cache_gate = cache_gate
        self.merge_engine = merge_engine
        # cache entries are read and written under the same host
        self.merge_engine.target_host = settings.base_url
        self.executor = BackoffExecutor(retry_config, name="ossindex")
        self.session = session or create_session()
        self.credentials = resolve_credentials(settings.username, settings.token, decryptor)
        self.analysis_level = analysis_level

    @property
    def analysis_level(self) -> AnalysisLevel:
        return self._analysis_level

    @analysis_level.setter
    def analysis_level(self, level: AnalysisLevel):
        self._analysis_level = level
        self.merge_engine.analysis_level = level

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    @property
    def target_host(self) -> str:
        return self.settings.base_url

    def is_capable(self, component: Component) -> bool:
        """A package URL with both name and version is required"""
        purl = component.purl
        return purl is not None and bool(purl.name) and bool(purl.version)

    def should_analyze(self, component: Component) -> bool:
        """False when a cached result for the component is still current"""
        return not self.cache_gate.is_current(self.source, self.target_host, component.purl.to_string())

    @log_operation("OSS Index analysis", "OssIndexAnalyzer")
    def analyze(self, components: List[Component]) -> Dict[str, Any]:
        """
        Analyze a batch of components

        Components current in the cache are applied from it; the rest, and any
        whose cached result cannot be applied, are submitted in pages of
        ``request_max_purl`` coordinates.

        Returns:
            Summary with counts of cached, submitted and merged entries

        Raises:
            AnalysisAbortedError: when a page cannot be submitted or merged; earlier pages stay committed
        """
        eligible = [c for c in components if not c.internal and self.is_capable(c)]
        current: List[Component] = []
        stale: List[Component] = []
        for component in eligible:
            (stale if self.should_analyze(component) else current).append(component)

        cached = 0
        for component in current:
            if self._apply_from_cache(component):
                cached += 1
            else:
                stale.append(component)

        summary = {
            'eligible': len(eligible),
            'cached': cached,
            'submitted': 0,
            'pages': 0,
            'associations': 0,
        }

        page_size = max(1, self.settings.request_max_purl)
        for start in range(0, len(stale), page_size):
            page = stale[start:start + page_size]
            coordinates = [minimize_purl(c.purl) for c in page]
            logger.info(f"Analyzing {len(coordinates)} component(s)")

            result = self.submit({"coordinates": coordinates})
            if not result.ok:
                self._abort(f"OSS Index analysis aborted after {summary['pages']} page(s): {result.message}",
                            summary['pages'], result.error_kind, result.status_code)

            try:
                merged = self.merge_engine.process_results(result.value, page)
            except Exception as e:
                self._abort(f"OSS Index analysis aborted after {summary['pages']} page(s): "
                            f"merging results failed: {e}", summary['pages'], cause=e)

            summary['associations'] += merged
            summary['submitted'] += len(coordinates)
            summary['pages'] += 1

        return summary

    def _apply_from_cache(self, component: Component) -> bool:
        """False when the cached result could not be applied and the component needs a live analysis"""
        target = component.purl.to_string()
        try:
            self.cache_gate.apply_from_cache(self.source, self.target_host, target,
                                             component, self.identity, self.analysis_level)
        except Exception as e:
            logger.warning(f"Cached analysis of {target} could not be applied, analyzing again: {e}")
            return False
        return True

    def _abort(self, message: str, pages_completed: int, kind: Optional[ErrorKind] = None,
               status_code: Optional[int] = None, cause: Optional[BaseException] = None):
        error = AnalysisAbortedError(
            message, kind=kind, status_code=status_code, pages_completed=pages_completed,
            context=ErrorContext(operation="analyze", component="OssIndexAnalyzer"))
        handle_error(error)
        raise error from cause

    def submit(self, payload: Dict[str, Any]) -> ServiceResult:
        """POST a component-report request and parse the response"""
        url = f"{self.settings.base_url}{COMPONENT_REPORT_PATH}"
        try:
            response = self.executor.execute(self._post, url, payload)
        except RetryExhaustedError as e:
            return ServiceResult.failure(ErrorKind.TRANSIENT_SERVICE, str(e), e.status_code)
        except requests.RequestException as e:
            return ServiceResult.failure(ErrorKind.PERMANENT_SERVICE, f"Request to {url} failed: {e}")

        try:
            if response.status_code != 200:
                error = UnexpectedResponseError(
                    f"Unexpected response from {self.settings.base_url}: "
                    f"{response.status_code} {getattr(response, 'reason', '')}".rstrip(),
                    status_code=response.status_code)
                return ServiceResult.failure(error.kind, str(error), response.status_code)
            try:
                body = response.json()
                if not isinstance(body, list):
                    raise ValueError("expected a JSON array")
                reports = [ComponentReport.from_json(entry) for entry in body]
            except (ValueError, TypeError, AttributeError) as e:
                error = PermanentServiceError(f"Malformed component report: {e}", status_code=200)
                return ServiceResult.failure(error.kind, str(error), 200)
            return ServiceResult.success(reports, response.status_code)
        finally:
            response.close()

    @track_api_metrics("ossindex")
    def _post(self, url: str, payload: Dict[str, Any]) -> requests.Response:
        return self.session.post(
            url,
            json=payload,
            headers={
                'Accept': 'application/json',
                'Content-Type': 'application/json',
                'User-Agent': self.settings.user_agent,
            },
            auth=self.credentials,
            timeout=self.settings.timeout,
        )

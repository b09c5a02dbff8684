"""
Interfaces of the services the pipeline depends on, plus default implementations
"""
import base64
import binascii
import logging
from typing import Optional, ContextManager, Dict, Any, List, Protocol, Sequence

from vip.core.models import (
    VulnerabilityRecord, ApplicabilityRange, Alias, Component, Association,
    CacheEntry, CacheType, Cwe, Source, AnalysisLevel
)
from vip.utils.error_handler import CredentialDecryptionError

logger = logging.getLogger(__name__)


class VulnerabilityStore(Protocol):
    """Persistence and query operations"""

    def unit_of_work(self) -> ContextManager[Any]:
        ...

    def get_vulnerability(self, source: Source, vuln_id: str) -> Optional[VulnerabilityRecord]:
        ...

    def create_vulnerability(self, record: VulnerabilityRecord) -> VulnerabilityRecord:
        ...

    def synchronize_vulnerability(self, record: VulnerabilityRecord,
                                  ranges: Sequence[ApplicabilityRange]) -> VulnerabilityRecord:
        ...

    def synchronize_alias(self, alias: Alias) -> None:
        ...

    def get_component(self, uuid: str) -> Optional[Component]:
        ...

    def add_association(self, association: Association) -> bool:
        ...

    def get_cache_entry(self, cache_type: CacheType, source: Source, target_host: str,
                        target: str) -> Optional[CacheEntry]:
        ...

    def update_cache_entry(self, cache_type: CacheType, source: Source, target_host: str,
                           target: str, result: Dict[str, Any]) -> CacheEntry:
        ...

    def merge_analysis_trail(self, source_project: str, target_project: str) -> int:
        ...


class NotificationEvaluator(Protocol):
    def evaluate(self, vulnerability: VulnerabilityRecord, component: Component,
                 analysis_level: AnalysisLevel) -> None:
        ...


class EventSignaler(Protocol):
    def signal(self, action: str, subject: str) -> None:
        ...


class SecretDecryptor(Protocol):
    def decrypt(self, value: str) -> str:
        ...


class ClassificationLookup(Protocol):
    def lookup(self, cwe: Optional[str]) -> Optional[Cwe]:
        ...


class LoggingNotificationEvaluator:
    """Records new-vulnerability notifications in the log"""

    def __init__(self):
        self.evaluated: List[tuple] = []

    def evaluate(self, vulnerability: VulnerabilityRecord, component: Component,
                 analysis_level: AnalysisLevel) -> None:
        self.evaluated.append((vulnerability.key, component.uuid))
        logger.info(f"Notification check: {vulnerability.vuln_id} affects component "
                    f"{component.uuid} ({AnalysisLevel(analysis_level).value})")


class LoggingEventSignaler:
    """Logs signals instead of dispatching them to an index service"""

    def __init__(self):
        self.signals: List[tuple] = []

    def signal(self, action: str, subject: str) -> None:
        self.signals.append((action, subject))
        logger.info(f"Signal {action} for {subject}")


class Base64SecretDecryptor:
    """Decodes base64-wrapped secrets; plain environment tokens pass through unchanged"""

    def __init__(self, encoded: bool = False):
        self.encoded = encoded

    def decrypt(self, value: str) -> str:
        if not self.encoded:
            return value
        try:
            return base64.b64decode(value, validate=True).decode('utf-8')
        except (binascii.Error, UnicodeDecodeError) as e:
            raise CredentialDecryptionError(f"Unable to decode stored credential: {e}") from e

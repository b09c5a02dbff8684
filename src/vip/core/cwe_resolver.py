"""
CWE classification lookup
"""
import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional, Union

from vip.core.collaborators import ClassificationLookup
from vip.core.models import Cwe, VulnerabilityRecord
from vip.utils.error_handler import ErrorContext, UnresolvedClassificationError, handle_error
from vip.utils.validation import parse_cwe_id

logger = logging.getLogger(__name__)

# Weaknesses NVD maps vulnerabilities to, used when no catalog file is configured
DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "data" / "cwe_catalog.json"


def read_catalog(path: Union[str, Path]) -> Dict[int, str]:
    """Read a JSON object such as ``{"79": "Improper Neutralization ..."}``"""
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    return {int(k): str(v) for k, v in data.items()}


@lru_cache(maxsize=1)
def default_catalog() -> Dict[int, str]:
    return read_catalog(DEFAULT_CATALOG_PATH)


class CweResolver:
    """Resolves CWE references such as "CWE-79", "79" or "CWE-79 Name" to known entries"""

    def __init__(self, catalog: Optional[Dict[int, str]] = None):
        self.catalog = dict(default_catalog() if catalog is None else catalog)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "CweResolver":
        """Load a catalog mapping CWE numbers to names"""
        catalog = read_catalog(path)
        logger.info(f"Loaded {len(catalog)} CWE entries from {path}")
        return cls(catalog)

    def lookup(self, cwe: Optional[str]) -> Optional[Cwe]:
        """
        Resolve a CWE reference

        Returns:
            Cwe or None when the reference is malformed or unknown
        """
        cwe_id = parse_cwe_id(cwe)
        if cwe_id is None:
            return None
        name = self.catalog.get(cwe_id)
        if name is None:
            return None
        return Cwe(cwe_id=cwe_id, name=name)


def classify(record: VulnerabilityRecord, cwe: str, lookup: ClassificationLookup) -> bool:
    """
    Add a CWE to ``record`` if the lookup knows it

    Unknown identifiers are reported as UnresolvedClassificationError and omitted.
    """
    resolved = lookup.lookup(cwe)
    if resolved is None:
        handle_error(UnresolvedClassificationError(
            f"CWE {cwe} not found in the classification catalog and will be omitted", cwe=cwe,
            context=ErrorContext(operation="classify", component="CweResolver", vuln_id=record.vuln_id)))
        return False
    record.add_cwe(resolved.cwe_id)
    return True

"""
Reduces NVD configuration nodes to a flat list of applicability ranges
"""
import logging
from typing import Dict, Any, List, Iterable

from vip.core.models import ApplicabilityRange, Operator
from vip.utils.error_handler import MalformedIdentifierError

logger = logging.getLogger(__name__)

_BOUND_FIELDS = {
    'versionStartIncluding': 'version_start_including',
    'versionStartExcluding': 'version_start_excluding',
    'versionEndIncluding': 'version_end_including',
    'versionEndExcluding': 'version_end_excluding',
}


def reconcile(ranges: List[ApplicabilityRange], operator: Operator) -> List[ApplicabilityRange]:
    """
    Drop operating-system entries from an AND node that also names applications

    Configurations such as "Flash Player AND (Windows OR macOS OR Linux)"
    would otherwise flag every operating system as vulnerable. Any other
    operator, or an AND node without both classes, passes through unchanged.
    """
    if Operator.parse(operator) != Operator.AND:
        return ranges

    applications = [r for r in ranges if r.is_application]
    operating_systems = [r for r in ranges if r.is_operating_system]
    if applications and operating_systems:
        return applications
    return ranges


def distinct_ignoring_identity(ranges: Iterable[ApplicabilityRange]) -> List[ApplicabilityRange]:
    """Remove semantic duplicates, keeping the first occurrence"""
    seen = set()
    unique = []
    for r in ranges:
        key = r.semantic_key()
        if key not in seen:
            seen.add(key)
            unique.append(r)
    return unique


def parse_cpe_matches(node: Dict[str, Any]) -> List[ApplicabilityRange]:
    """Ranges for the vulnerable cpe_match entries of a single node"""
    ranges = []
    for match in node.get('cpe_match') or []:
        if match.get('vulnerable') is not True:
            continue
        cpe23 = match.get('cpe23Uri')
        try:
            bounds = {attr: _as_text(match[key]) for key, attr in _BOUND_FIELDS.items() if match.get(key) is not None}
            ranges.append(ApplicabilityRange.from_cpe(cpe23, vulnerable=True, **bounds))
        except MalformedIdentifierError as e:
            logger.warning(f"The CPE {cpe23} is invalid and will be discarded: {e}")
    return ranges


def ranges_for_node(node: Dict[str, Any]) -> List[ApplicabilityRange]:
    """
    Reconciled ranges of one root node

    A non-empty ``children`` list replaces the node's own matches. Only one
    level of children is read, and the operator check applies to the root
    node alone.
    """
    children = node.get('children') or []
    if children:
        candidates = []
        for child in children:
            candidates.extend(parse_cpe_matches(child))
    else:
        candidates = parse_cpe_matches(node)
    return reconcile(candidates, Operator.parse(node.get('operator')))


def reconcile_configurations(nodes: Iterable[Dict[str, Any]]) -> List[ApplicabilityRange]:
    """Reconcile every root node, concatenate, then deduplicate"""
    ranges: List[ApplicabilityRange] = []
    for node in nodes or []:
        ranges.extend(ranges_for_node(node))
    return distinct_ignoring_identity(ranges)


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else str(value)

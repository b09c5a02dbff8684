"""
CVSS v2 / v3 vector parsing, base scoring and aggregate severity
"""
import math
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional, Union

from vip.core.models import Severity, VulnerabilityRecord
from vip.utils.error_handler import FieldParseError

logger = logging.getLogger(__name__)

# CVSS v2 base metric weights
V2_WEIGHTS = {
    'AV': {'L': 0.395, 'A': 0.646, 'N': 1.0},
    'AC': {'H': 0.35, 'M': 0.61, 'L': 0.71},
    'Au': {'M': 0.45, 'S': 0.56, 'N': 0.704},
    'C': {'N': 0.0, 'P': 0.275, 'C': 0.660},
    'I': {'N': 0.0, 'P': 0.275, 'C': 0.660},
    'A': {'N': 0.0, 'P': 0.275, 'C': 0.660},
}
V2_ORDER = ('AV', 'AC', 'Au', 'C', 'I', 'A')

# CVSS v3 base metric weights
V3_WEIGHTS = {
    'AV': {'N': 0.85, 'A': 0.62, 'L': 0.55, 'P': 0.2},
    'AC': {'L': 0.77, 'H': 0.44},
    'PR': {'N': 0.85, 'L': 0.62, 'H': 0.27},
    'UI': {'N': 0.85, 'R': 0.62},
    'S': {'U': None, 'C': None},
    'C': {'H': 0.56, 'L': 0.22, 'N': 0.0},
    'I': {'H': 0.56, 'L': 0.22, 'N': 0.0},
    'A': {'H': 0.56, 'L': 0.22, 'N': 0.0},
}
V3_PR_CHANGED = {'N': 0.85, 'L': 0.68, 'H': 0.5}
V3_ORDER = ('AV', 'AC', 'PR', 'UI', 'S', 'C', 'I', 'A')
V3_VERSIONS = ('3.0', '3.1')


def _round1(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal('0.1'), rounding=ROUND_HALF_UP))


def _roundup(value: float) -> float:
    """Smallest number with one decimal place that is >= value"""
    int_input = int(round(value * 100000))
    if int_input % 10000 == 0:
        return int_input / 100000.0
    return (math.floor(int_input / 10000) + 1) / 10.0


def _parse_metrics(vector: str, body: str, weights: Dict[str, Dict]) -> Dict[str, str]:
    metrics: Dict[str, str] = {}
    for token in body.split('/'):
        if not token:
            continue
        key, sep, value = token.partition(':')
        if not sep:
            raise FieldParseError(f"Malformed CVSS metric '{token}' in {vector}", field='cvss')
        if key not in weights:
            # temporal and environmental metrics are not part of the base vector
            continue
        if value not in weights[key]:
            raise FieldParseError(f"Invalid value '{value}' for CVSS metric {key} in {vector}", field='cvss')
        if key in metrics:
            raise FieldParseError(f"Duplicate CVSS metric {key} in {vector}", field='cvss')
        metrics[key] = value

    missing = [k for k in weights if k not in metrics]
    if missing:
        raise FieldParseError(f"Missing CVSS base metrics {', '.join(missing)} in {vector}", field='cvss')
    return metrics


class CvssV2:
    """CVSS v2 base vector"""

    version = '2.0'

    def __init__(self, metrics: Dict[str, str]):
        self.metrics = metrics

    @classmethod
    def parse(cls, vector: str) -> "CvssV2":
        body = vector.strip()
        if body.startswith('(') and body.endswith(')'):
            body = body[1:-1]
        if body.startswith('CVSS:2.0/'):
            body = body[len('CVSS:2.0/'):]
        return cls(_parse_metrics(vector, body, V2_WEIGHTS))

    @property
    def vector(self) -> str:
        return '(' + '/'.join(f"{k}:{self.metrics[k]}" for k in V2_ORDER) + ')'

    def _weight(self, key: str) -> float:
        return V2_WEIGHTS[key][self.metrics[key]]

    def _impact(self) -> float:
        return 10.41 * (1 - (1 - self._weight('C')) * (1 - self._weight('I')) * (1 - self._weight('A')))

    def _exploitability(self) -> float:
        return 20 * self._weight('AV') * self._weight('AC') * self._weight('Au')

    def base_score(self) -> float:
        impact = self._impact()
        f_impact = 0 if impact == 0 else 1.176
        return _round1(((0.6 * impact) + (0.4 * self._exploitability()) - 1.5) * f_impact)

    def impact_score(self) -> float:
        return _round1(self._impact())

    def exploitability_score(self) -> float:
        return _round1(self._exploitability())

    def __str__(self) -> str:
        return self.vector


class CvssV3:
    """CVSS v3.0 / v3.1 base vector"""

    def __init__(self, metrics: Dict[str, str], version: str = '3.1'):
        self.metrics = metrics
        self.version = version

    @classmethod
    def parse(cls, vector: str) -> "CvssV3":
        prefix, sep, body = vector.strip().partition('/')
        version = prefix[len('CVSS:'):] if prefix.startswith('CVSS:') else None
        if not sep or version not in V3_VERSIONS:
            raise FieldParseError(f"Unsupported CVSS v3 prefix in {vector}", field='cvss')
        return cls(_parse_metrics(vector, body, V3_WEIGHTS), version)

    @property
    def vector(self) -> str:
        return f"CVSS:{self.version}/" + '/'.join(f"{k}:{self.metrics[k]}" for k in V3_ORDER)

    @property
    def scope_changed(self) -> bool:
        return self.metrics['S'] == 'C'

    def _weight(self, key: str) -> float:
        if key == 'PR' and self.scope_changed:
            return V3_PR_CHANGED[self.metrics['PR']]
        return V3_WEIGHTS[key][self.metrics[key]]

    def _impact(self) -> float:
        iss = 1 - (1 - self._weight('C')) * (1 - self._weight('I')) * (1 - self._weight('A'))
        if self.scope_changed:
            return 7.52 * (iss - 0.029) - 3.25 * (iss - 0.02) ** 15
        return 6.42 * iss

    def _exploitability(self) -> float:
        return 8.22 * self._weight('AV') * self._weight('AC') * self._weight('PR') * self._weight('UI')

    def base_score(self) -> float:
        impact = self._impact()
        if impact <= 0:
            return 0.0
        total = impact + self._exploitability()
        if self.scope_changed:
            total = 1.08 * total
        return _roundup(min(total, 10))

    def impact_score(self) -> float:
        return _round1(max(self._impact(), 0.0))

    def exploitability_score(self) -> float:
        return _round1(self._exploitability())

    def __str__(self) -> str:
        return self.vector


Cvss = Union[CvssV2, CvssV3]


def parse_cvss(vector: str) -> Cvss:
    """
    Parse a CVSS v2 or v3 vector string

    Raises:
        FieldParseError: when the vector is malformed
    """
    if not vector or not isinstance(vector, str):
        raise FieldParseError(f"Empty CVSS vector: {vector!r}", field='cvss')
    if vector.strip().startswith('CVSS:3'):
        return CvssV3.parse(vector)
    return CvssV2.parse(vector)


def apply_score(record: VulnerabilityRecord, cvss: Cvss):
    """Set vector and scores computed from the vector"""
    if isinstance(cvss, CvssV3):
        record.cvss_v3_vector = cvss.vector
        record.cvss_v3_base_score = cvss.base_score()
        record.cvss_v3_impact_score = cvss.impact_score()
        record.cvss_v3_exploitability_score = cvss.exploitability_score()
    else:
        record.cvss_v2_vector = cvss.vector
        record.cvss_v2_base_score = cvss.base_score()
        record.cvss_v2_impact_score = cvss.impact_score()
        record.cvss_v2_exploitability_score = cvss.exploitability_score()


def _owasp_level(score: float) -> str:
    if score < 3:
        return 'LOW'
    if score < 6:
        return 'MEDIUM'
    return 'HIGH'


_OWASP_MATRIX = {
    ('LOW', 'LOW'): Severity.INFO,
    ('LOW', 'MEDIUM'): Severity.LOW,
    ('LOW', 'HIGH'): Severity.MEDIUM,
    ('MEDIUM', 'LOW'): Severity.LOW,
    ('MEDIUM', 'MEDIUM'): Severity.MEDIUM,
    ('MEDIUM', 'HIGH'): Severity.HIGH,
    ('HIGH', 'LOW'): Severity.MEDIUM,
    ('HIGH', 'MEDIUM'): Severity.HIGH,
    ('HIGH', 'HIGH'): Severity.CRITICAL,
}


def derive_severity(cvss_v2_base_score: Optional[float] = None,
                    cvss_v3_base_score: Optional[float] = None,
                    owasp_likelihood_score: Optional[float] = None,
                    owasp_technical_impact_score: Optional[float] = None,
                    owasp_business_impact_score: Optional[float] = None) -> Severity:
    """
    Aggregate severity from whichever scores are available

    CVSS v3 takes precedence over v2, and v2 over the OWASP risk rating.
    """
    if cvss_v3_base_score is not None:
        score = float(cvss_v3_base_score)
        if score >= 9.0:
            return Severity.CRITICAL
        if score >= 7.0:
            return Severity.HIGH
        if score >= 4.0:
            return Severity.MEDIUM
        if score > 0:
            return Severity.LOW
        return Severity.INFO

    if cvss_v2_base_score is not None:
        score = float(cvss_v2_base_score)
        if score >= 7.0:
            return Severity.HIGH
        if score >= 4.0:
            return Severity.MEDIUM
        if score > 0:
            return Severity.LOW
        return Severity.INFO

    if (owasp_likelihood_score is not None and owasp_technical_impact_score is not None
            and owasp_business_impact_score is not None):
        impact = max(float(owasp_technical_impact_score), float(owasp_business_impact_score))
        return _OWASP_MATRIX[(_owasp_level(float(owasp_likelihood_score)), _owasp_level(impact))]

    return Severity.UNASSIGNED


def severity_of(record: VulnerabilityRecord) -> Severity:
    """derive_severity over the scores stored on a record"""
    return derive_severity(
        record.cvss_v2_base_score,
        record.cvss_v3_base_score,
        record.owasp_rr_likelihood_score,
        record.owasp_rr_technical_impact_score,
        record.owasp_rr_business_impact_score,
    )

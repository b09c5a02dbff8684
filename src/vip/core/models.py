"""
Domain models for Vulnerability Intelligence Pipeline
"""
import re
from datetime import datetime
from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple

from packageurl import PackageURL

from vip.utils.error_handler import MalformedIdentifierError
from vip.utils.validation import is_cve_id


class Source(str, Enum):
    """Origin of a vulnerability record"""
    NVD = "NVD"
    OSSINDEX = "OSSINDEX"
    INTERNAL = "INTERNAL"


class Severity(str, Enum):
    """Aggregate severity"""
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"
    UNASSIGNED = "UNASSIGNED"


class AnalyzerIdentity(str, Enum):
    OSSINDEX_ANALYZER = "OSSINDEX_ANALYZER"
    INTERNAL_ANALYZER = "INTERNAL_ANALYZER"


class AnalysisLevel(str, Enum):
    """Why an analysis was triggered; passed to notification evaluation"""
    BOM_UPLOAD_ANALYSIS = "bom_upload"
    PERIODIC_ANALYSIS = "periodic"
    MANUAL_ANALYSIS = "manual"


class CacheType(str, Enum):
    VULNERABILITY = "VULNERABILITY"


class Operator(str, Enum):
    """Boolean operator of an NVD configuration node"""
    AND = "AND"
    OR = "OR"
    NONE = "NONE"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Operator":
        try:
            return cls(str(value).upper()) if value else cls.NONE
        except ValueError:
            return cls.NONE


@dataclass
class Cwe:
    cwe_id: int
    name: str


@dataclass
class VulnerabilityRecord:
    """Canonical vulnerability; (source, vuln_id) is unique in the store"""
    source: Source
    vuln_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    cwes: List[int] = field(default_factory=list)
    published: Optional[datetime] = None
    updated: Optional[datetime] = None
    references: Optional[str] = None
    cvss_v2_vector: Optional[str] = None
    cvss_v2_base_score: Optional[float] = None
    cvss_v2_exploitability_score: Optional[float] = None
    cvss_v2_impact_score: Optional[float] = None
    cvss_v3_vector: Optional[str] = None
    cvss_v3_base_score: Optional[float] = None
    cvss_v3_exploitability_score: Optional[float] = None
    cvss_v3_impact_score: Optional[float] = None
    owasp_rr_likelihood_score: Optional[float] = None
    owasp_rr_technical_impact_score: Optional[float] = None
    owasp_rr_business_impact_score: Optional[float] = None
    severity: Severity = Severity.UNASSIGNED
    id: Optional[int] = field(default=None, compare=False)

    @property
    def key(self) -> Tuple[str, str]:
        return (Source(self.source).value, self.vuln_id)

    def add_cwe(self, cwe_id: int):
        if cwe_id not in self.cwes:
            self.cwes.append(cwe_id)


_CPE_SPLIT = re.compile(r'(?<!\\):')
_CPE_PARTS = ('a', 'o', 'h', '*', '-')


@dataclass(frozen=True)
class PlatformCoordinate:
    """Parsed CPE 2.3 formatted string"""
    part: str
    vendor: str
    product: str
    version: str = '*'
    update: str = '*'
    edition: str = '*'
    language: str = '*'
    sw_edition: str = '*'
    target_sw: str = '*'
    target_hw: str = '*'
    other: str = '*'

    @classmethod
    def from_string(cls, cpe23: str) -> "PlatformCoordinate":
        """
        Parse a ``cpe:2.3:`` formatted string

        Raises:
            MalformedIdentifierError: when the string is not a 13-field CPE 2.3 name
        """
        if not isinstance(cpe23, str) or not cpe23.startswith('cpe:2.3:'):
            raise MalformedIdentifierError(f"Not a CPE 2.3 string: {cpe23}", identifier=cpe23)

        parts = _CPE_SPLIT.split(cpe23)
        if len(parts) != 13:
            raise MalformedIdentifierError(
                f"CPE 2.3 string must have 13 components, found {len(parts)}: {cpe23}",
                identifier=cpe23)
        if parts[2] not in _CPE_PARTS:
            raise MalformedIdentifierError(f"Unknown CPE part '{parts[2]}': {cpe23}", identifier=cpe23)

        return cls(*parts[2:])

    def to_string(self) -> str:
        return ':'.join(['cpe', '2.3', self.part, self.vendor, self.product, self.version,
                         self.update, self.edition, self.language, self.sw_edition,
                         self.target_sw, self.target_hw, self.other])

    def __str__(self) -> str:
        return self.to_string()


@dataclass
class ApplicabilityRange:
    """Platform coordinate plus version bounds affected by a vulnerability"""
    cpe23: str
    part: str
    vendor: str
    product: str
    version: str = '*'
    update: str = '*'
    edition: str = '*'
    language: str = '*'
    sw_edition: str = '*'
    target_sw: str = '*'
    target_hw: str = '*'
    other: str = '*'
    version_start_including: Optional[str] = None
    version_start_excluding: Optional[str] = None
    version_end_including: Optional[str] = None
    version_end_excluding: Optional[str] = None
    vulnerable: bool = True
    id: Optional[int] = field(default=None, compare=False)

    @classmethod
    def from_cpe(cls, cpe23: str, vulnerable: bool = True,
                 version_start_including: Optional[str] = None,
                 version_start_excluding: Optional[str] = None,
                 version_end_including: Optional[str] = None,
                 version_end_excluding: Optional[str] = None) -> "ApplicabilityRange":
        coordinate = PlatformCoordinate.from_string(cpe23)
        return cls(
            cpe23=coordinate.to_string(),
            part=coordinate.part,
            vendor=coordinate.vendor,
            product=coordinate.product,
            version=coordinate.version,
            update=coordinate.update,
            edition=coordinate.edition,
            language=coordinate.language,
            sw_edition=coordinate.sw_edition,
            target_sw=coordinate.target_sw,
            target_hw=coordinate.target_hw,
            other=coordinate.other,
            version_start_including=version_start_including,
            version_start_excluding=version_start_excluding,
            version_end_including=version_end_including,
            version_end_excluding=version_end_excluding,
            vulnerable=vulnerable,
        )

    def semantic_key(self) -> Tuple:
        """Every field except the storage-assigned id"""
        return (self.cpe23, self.part, self.vendor, self.product, self.version, self.update,
                self.edition, self.language, self.sw_edition, self.target_sw, self.target_hw,
                self.other, self.version_start_including, self.version_start_excluding,
                self.version_end_including, self.version_end_excluding, self.vulnerable)

    @property
    def is_application(self) -> bool:
        return self.cpe23 is not None and self.part == 'a'

    @property
    def is_operating_system(self) -> bool:
        return self.cpe23 is not None and self.part == 'o'


@dataclass
class Alias:
    """Two identifiers for the same real-world vulnerability"""
    sonatype_id: Optional[str] = None
    cve_id: Optional[str] = None

    def identifiers(self) -> Dict[str, str]:
        return {k: v for k, v in (('sonatype_id', self.sonatype_id), ('cve_id', self.cve_id)) if v}


@dataclass
class Component:
    """A scanned software component"""
    uuid: str
    name: Optional[str] = None
    version: Optional[str] = None
    group: Optional[str] = None
    purl: Optional[PackageURL] = None
    cpe: Optional[str] = None
    internal: bool = False
    project_uuid: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Component":
        """
        Build from a plain mapping

        Raises:
            MalformedIdentifierError: when ``purl`` is present but not a valid package URL
        """
        purl = data.get('purl')
        if isinstance(purl, str):
            try:
                purl = PackageURL.from_string(purl)
            except ValueError as e:
                raise MalformedIdentifierError(f"Invalid package URL {purl}: {e}", identifier=purl) from e
        return cls(
            uuid=str(data['uuid']),
            name=data.get('name') or (purl.name if purl else None),
            version=data.get('version') or (purl.version if purl else None),
            group=data.get('group') or (purl.namespace if purl else None),
            purl=purl,
            cpe=data.get('cpe'),
            internal=bool(data.get('internal', False)),
            project_uuid=data.get('project_uuid'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'uuid': self.uuid,
            'name': self.name,
            'version': self.version,
            'group': self.group,
            'purl': self.purl.to_string() if self.purl else None,
            'cpe': self.cpe,
            'internal': self.internal,
            'project_uuid': self.project_uuid,
        }


@dataclass
class Association:
    """Component affected by a vulnerability, as found by one analyzer"""
    component_uuid: str
    source: Source
    vuln_id: str
    analyzer: AnalyzerIdentity
    alternate_identifier: Optional[str] = None
    reference: Optional[str] = None


@dataclass
class CacheEntry:
    """Last live analysis of one subject against one service"""
    cache_type: CacheType
    source: Source
    target_host: str
    target: str
    last_occurrence: datetime
    result: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ReportVulnerability:
    """A vulnerability entry of an OSS Index component report"""
    id: Optional[str]
    cve: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    cwe: Optional[str] = None
    cvss_score: Optional[float] = None
    cvss_vector: Optional[str] = None
    reference: Optional[str] = None
    external_references: List[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ReportVulnerability":
        """
        Raises:
            ValueError: when the entry has neither a service id nor a CVE id to key it by
        """
        vuln_id = data.get('id')
        if vuln_id is not None and not isinstance(vuln_id, str):
            raise ValueError(f"vulnerability id {vuln_id!r} is not a string")
        if not vuln_id and not is_cve_id(data.get('cve')):
            raise ValueError("vulnerability entry has neither an id nor a CVE identifier")
        score = data.get('cvssScore')
        return cls(
            id=vuln_id,
            cve=data.get('cve'),
            title=data.get('title'),
            description=data.get('description'),
            cwe=data.get('cwe'),
            cvss_score=float(score) if score is not None else None,
            cvss_vector=data.get('cvssVector'),
            reference=data.get('reference'),
            external_references=list(data.get('externalReferences') or []),
        )


@dataclass
class ComponentReport:
    """One element of the component-report response array"""
    coordinates: str
    description: Optional[str] = None
    reference: Optional[str] = None
    vulnerabilities: List[ReportVulnerability] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ComponentReport":
        return cls(
            coordinates=data.get('coordinates'),
            description=data.get('description'),
            reference=data.get('reference'),
            vulnerabilities=[ReportVulnerability.from_json(v) for v in data.get('vulnerabilities') or []],
        )

"""
SQLAlchemy implementation of the vulnerability store
"""
import logging
from contextlib import contextmanager
from typing import Dict, Any, Iterator, List, Optional, Sequence

from packageurl import PackageURL
from sqlalchemy import select, or_
from sqlalchemy.orm import Session, sessionmaker

from vip.core.models import (
    Alias, ApplicabilityRange, Association, AnalyzerIdentity, CacheEntry, CacheType,
    Component, Severity, Source, VulnerabilityRecord
)
from vip.database.models import (
    AnalysisCache, AnalysisDecision, ComponentRow, ComponentVulnerability, Vulnerability,
    VulnerabilityAlias, VulnerableSoftware, _utcnow
)
from vip.database.session import session_scope

logger = logging.getLogger(__name__)

_RECORD_FIELDS = (
    'title', 'description', 'published', 'updated', 'references',
    'cvss_v2_vector', 'cvss_v2_base_score', 'cvss_v2_exploitability_score', 'cvss_v2_impact_score',
    'cvss_v3_vector', 'cvss_v3_base_score', 'cvss_v3_exploitability_score', 'cvss_v3_impact_score',
    'owasp_rr_likelihood_score', 'owasp_rr_technical_impact_score', 'owasp_rr_business_impact_score',
)

_RANGE_FIELDS = (
    'cpe23', 'part', 'vendor', 'product', 'version', 'update', 'edition', 'language',
    'sw_edition', 'target_sw', 'target_hw', 'other', 'version_start_including',
    'version_start_excluding', 'version_end_including', 'version_end_excluding', 'vulnerable',
)


class SqlVulnerabilityStore:
    """
    Vulnerability store backed by SQLAlchemy

    Each call runs in its own transaction unless it happens inside
    ``unit_of_work()``, in which case the whole block shares one.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self._session: Optional[Session] = None

    @contextmanager
    def unit_of_work(self) -> Iterator[Session]:
        """Share one session, committed or rolled back as a whole"""
        if self._session is not None:
            yield self._session
            return
        with session_scope(self.session_factory) as session:
            self._session = session
            try:
                yield session
            finally:
                self._session = None

    # Vulnerabilities

    def get_vulnerability(self, source: Source, vuln_id: str) -> Optional[VulnerabilityRecord]:
        with self.unit_of_work() as session:
            row = self._find_vulnerability(session, source, vuln_id)
            return _to_record(row) if row else None

    def create_vulnerability(self, record: VulnerabilityRecord) -> VulnerabilityRecord:
        """Insert a record; an existing (source, vuln_id) is returned unchanged"""
        with self.unit_of_work() as session:
            row = self._find_vulnerability(session, record.source, record.vuln_id)
            if row is None:
                row = Vulnerability(source=Source(record.source).value, vuln_id=record.vuln_id)
                _copy_record(record, row)
                session.add(row)
                session.flush()
                logger.debug(f"Created vulnerability {row.source}/{row.vuln_id}")
            return _to_record(row)

    def synchronize_vulnerability(self, record: VulnerabilityRecord,
                                  ranges: Sequence[ApplicabilityRange]) -> VulnerabilityRecord:
        """Insert or update a record and replace its applicability ranges"""
        with self.unit_of_work() as session:
            row = self._find_vulnerability(session, record.source, record.vuln_id)
            if row is None:
                row = Vulnerability(source=Source(record.source).value, vuln_id=record.vuln_id)
                session.add(row)
            _copy_record(record, row)
            row.ranges = [VulnerableSoftware(**{f: getattr(r, f) for f in _RANGE_FIELDS}) for r in ranges]
            session.flush()
            return _to_record(row)

    def get_ranges(self, source: Source, vuln_id: str) -> List[ApplicabilityRange]:
        with self.unit_of_work() as session:
            row = self._find_vulnerability(session, source, vuln_id)
            if row is None:
                return []
            return [ApplicabilityRange(id=r.id, **{f: getattr(r, f) for f in _RANGE_FIELDS}) for r in row.ranges]

    def count_vulnerabilities(self) -> int:
        with self.unit_of_work() as session:
            return session.query(Vulnerability).count()

    def count_rows(self) -> Dict[str, int]:
        """Row counts of the persisted tables"""
        tables = (
            ('vulnerabilities', Vulnerability),
            ('vulnerable_software', VulnerableSoftware),
            ('aliases', VulnerabilityAlias),
            ('components', ComponentRow),
            ('associations', ComponentVulnerability),
            ('analysis_decisions', AnalysisDecision),
            ('cache_entries', AnalysisCache),
        )
        with self.unit_of_work() as session:
            return {name: session.query(model).count() for name, model in tables}

    # Aliases

    def synchronize_alias(self, alias: Alias) -> None:
        """Add an alias; fills gaps in an existing row rather than duplicating it"""
        ids = alias.identifiers()
        if not ids:
            return
        with self.unit_of_work() as session:
            clauses = [getattr(VulnerabilityAlias, k) == v for k, v in ids.items()]
            row = session.execute(select(VulnerabilityAlias).where(or_(*clauses))).scalars().first()
            if row is None:
                session.add(VulnerabilityAlias(**ids))
                return
            for key, value in ids.items():
                if getattr(row, key) is None:
                    setattr(row, key, value)

    def get_aliases(self, identifier: str) -> List[Alias]:
        with self.unit_of_work() as session:
            rows = session.execute(select(VulnerabilityAlias).where(or_(
                VulnerabilityAlias.sonatype_id == identifier,
                VulnerabilityAlias.cve_id == identifier,
            ))).scalars().all()
            return [Alias(sonatype_id=r.sonatype_id, cve_id=r.cve_id) for r in rows]

    # Components

    def save_component(self, component: Component) -> Component:
        with self.unit_of_work() as session:
            row = session.get(ComponentRow, component.uuid) or ComponentRow(uuid=component.uuid)
            row.name = component.name
            row.version = component.version
            row.group = component.group
            row.purl = component.purl.to_string() if component.purl else None
            row.cpe = component.cpe
            row.internal = component.internal
            row.project_uuid = component.project_uuid
            session.add(row)
            return component

    def get_component(self, uuid: str) -> Optional[Component]:
        with self.unit_of_work() as session:
            row = session.get(ComponentRow, uuid)
            return _to_component(row) if row else None

    def get_components(self, project_uuid: str) -> List[Component]:
        with self.unit_of_work() as session:
            rows = session.execute(select(ComponentRow).where(ComponentRow.project_uuid == project_uuid)).scalars().all()
            return [_to_component(r) for r in rows]

    # Associations

    def add_association(self, association: Association) -> bool:
        """
        Write an association

        Returns:
            bool: False when the (component, vulnerability, analyzer) triple already exists
        """
        with self.unit_of_work() as session:
            vulnerability = self._find_vulnerability(session, association.source, association.vuln_id)
            if vulnerability is None:
                logger.warning(f"Cannot associate unknown vulnerability {association.source}/{association.vuln_id}")
                return False
            analyzer = AnalyzerIdentity(association.analyzer).value
            if self._find_association(session, association.component_uuid, vulnerability.id, analyzer):
                return False
            session.add(ComponentVulnerability(
                component_uuid=association.component_uuid,
                vulnerability_id=vulnerability.id,
                analyzer=analyzer,
                alternate_identifier=association.alternate_identifier,
                reference=association.reference,
            ))
            session.flush()
            return True

    def get_associations(self, component_uuid: str) -> List[Association]:
        with self.unit_of_work() as session:
            rows = session.execute(select(ComponentVulnerability).where(
                ComponentVulnerability.component_uuid == component_uuid
            ).order_by(ComponentVulnerability.id)).scalars().all()
            return [Association(
                component_uuid=r.component_uuid,
                source=Source(r.vulnerability.source),
                vuln_id=r.vulnerability.vuln_id,
                analyzer=AnalyzerIdentity(r.analyzer),
                alternate_identifier=r.alternate_identifier,
                reference=r.reference,
            ) for r in rows]

    # Analysis decisions

    def record_analysis(self, component_uuid: str, source: Source, vuln_id: str, state: str,
                        justification: Optional[str] = None, details: Optional[str] = None,
                        suppressed: bool = False) -> None:
        with self.unit_of_work() as session:
            vulnerability = self._find_vulnerability(session, source, vuln_id)
            if vulnerability is None:
                raise ValueError(f"Unknown vulnerability {source}/{vuln_id}")
            row = session.execute(select(AnalysisDecision).where(
                AnalysisDecision.component_uuid == component_uuid,
                AnalysisDecision.vulnerability_id == vulnerability.id,
            )).scalars().first() or AnalysisDecision(component_uuid=component_uuid, vulnerability_id=vulnerability.id)
            row.state = state
            row.justification = justification
            row.details = details
            row.suppressed = suppressed
            session.add(row)

    def get_analysis(self, component_uuid: str, source: Source, vuln_id: str) -> Optional[Dict[str, Any]]:
        with self.unit_of_work() as session:
            vulnerability = self._find_vulnerability(session, source, vuln_id)
            if vulnerability is None:
                return None
            row = session.execute(select(AnalysisDecision).where(
                AnalysisDecision.component_uuid == component_uuid,
                AnalysisDecision.vulnerability_id == vulnerability.id,
            )).scalars().first()
            if row is None:
                return None
            return {'state': row.state, 'justification': row.justification,
                    'details': row.details, 'suppressed': row.suppressed}

    def merge_analysis_trail(self, source_project: str, target_project: str) -> int:
        """
        Copy associations and audit decisions onto matching components of another project

        Components match by package URL, or by group, name and version when
        neither has one. Existing entries in the target are left untouched.

        Returns:
            Number of associations and decisions copied
        """
        copied = 0
        with self.unit_of_work() as session:
            targets = session.execute(select(ComponentRow).where(
                ComponentRow.project_uuid == target_project)).scalars().all()
            sources = session.execute(select(ComponentRow).where(
                ComponentRow.project_uuid == source_project)).scalars().all()

            for source_component in sources:
                target = next((t for t in targets if _same_component(source_component, t)), None)
                if target is None:
                    continue

                for assoc in session.execute(select(ComponentVulnerability).where(
                        ComponentVulnerability.component_uuid == source_component.uuid)).scalars().all():
                    if self._find_association(session, target.uuid, assoc.vulnerability_id, assoc.analyzer):
                        continue
                    session.add(ComponentVulnerability(
                        component_uuid=target.uuid,
                        vulnerability_id=assoc.vulnerability_id,
                        analyzer=assoc.analyzer,
                        alternate_identifier=assoc.alternate_identifier,
                        reference=assoc.reference,
                    ))
                    copied += 1

                for decision in session.execute(select(AnalysisDecision).where(
                        AnalysisDecision.component_uuid == source_component.uuid)).scalars().all():
                    exists = session.execute(select(AnalysisDecision).where(
                        AnalysisDecision.component_uuid == target.uuid,
                        AnalysisDecision.vulnerability_id == decision.vulnerability_id,
                    )).scalars().first()
                    if exists is not None:
                        continue
                    session.add(AnalysisDecision(
                        component_uuid=target.uuid,
                        vulnerability_id=decision.vulnerability_id,
                        state=decision.state,
                        justification=decision.justification,
                        details=decision.details,
                        suppressed=decision.suppressed,
                    ))
                    copied += 1
                session.flush()

        logger.info(f"Copied {copied} analysis entries from project {source_project} to {target_project}")
        return copied

    # Analysis cache

    def get_cache_entry(self, cache_type: CacheType, source: Source, target_host: str,
                        target: str) -> Optional[CacheEntry]:
        with self.unit_of_work() as session:
            row = self._find_cache(session, cache_type, source, target_host, target)
            if row is None:
                return None
            return CacheEntry(
                cache_type=CacheType(row.cache_type),
                source=Source(row.target_type),
                target_host=row.target_host,
                target=row.target,
                last_occurrence=row.last_occurrence,
                result=dict(row.result or {}),
            )

    def update_cache_entry(self, cache_type: CacheType, source: Source, target_host: str,
                           target: str, result: Dict[str, Any]) -> CacheEntry:
        now = _utcnow()
        with self.unit_of_work() as session:
            row = self._find_cache(session, cache_type, source, target_host, target)
            if row is None:
                row = AnalysisCache(cache_type=CacheType(cache_type).value, target_type=Source(source).value,
                                    target_host=target_host, target=target)
                session.add(row)
            row.last_occurrence = now
            row.result = result
            return CacheEntry(CacheType(cache_type), Source(source), target_host, target, now, result)

    # Queries

    def _find_vulnerability(self, session: Session, source: Source, vuln_id: str) -> Optional[Vulnerability]:
        return session.execute(select(Vulnerability).where(
            Vulnerability.source == Source(source).value,
            Vulnerability.vuln_id == vuln_id,
        )).scalars().first()

    def _find_association(self, session: Session, component_uuid: str, vulnerability_id: int,
                          analyzer: str) -> Optional[ComponentVulnerability]:
        return session.execute(select(ComponentVulnerability).where(
            ComponentVulnerability.component_uuid == component_uuid,
            ComponentVulnerability.vulnerability_id == vulnerability_id,
            ComponentVulnerability.analyzer == analyzer,
        )).scalars().first()

    def _find_cache(self, session: Session, cache_type: CacheType, source: Source, target_host: str,
                    target: str) -> Optional[AnalysisCache]:
        return session.execute(select(AnalysisCache).where(
            AnalysisCache.cache_type == CacheType(cache_type).value,
            AnalysisCache.target_type == Source(source).value,
            AnalysisCache.target_host == target_host,
            AnalysisCache.target == target,
        )).scalars().first()


def _copy_record(record: VulnerabilityRecord, row: Vulnerability):
    for name in _RECORD_FIELDS:
        setattr(row, name, getattr(record, name))
    row.cwes = list(record.cwes)
    row.severity = Severity(record.severity).value


def _to_record(row: Vulnerability) -> VulnerabilityRecord:
    record = VulnerabilityRecord(source=Source(row.source), vuln_id=row.vuln_id, id=row.id)
    for name in _RECORD_FIELDS:
        setattr(record, name, getattr(row, name))
    record.cwes = list(row.cwes or [])
    record.severity = Severity(row.severity) if row.severity else Severity.UNASSIGNED
    return record


def _to_component(row: ComponentRow) -> Component:
    return Component(
        uuid=row.uuid,
        name=row.name,
        version=row.version,
        group=row.group,
        purl=PackageURL.from_string(row.purl) if row.purl else None,
        cpe=row.cpe,
        internal=bool(row.internal),
        project_uuid=row.project_uuid,
    )


def _same_component(a: ComponentRow, b: ComponentRow) -> bool:
    if a.purl and b.purl:
        return a.purl == b.purl
    return (a.group, a.name, a.version) == (b.group, b.name, b.version) and a.name is not None

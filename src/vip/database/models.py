"""
SQLAlchemy models for the vulnerability store
"""
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, DateTime, Integer, Float, Boolean, Text, JSON, ForeignKey,
    UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship

# Shared Base for all models
Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Vulnerability(Base):
    """Canonical vulnerability records"""
    __tablename__ = "vulnerabilities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(String(20), nullable=False)
    vuln_id = Column(String(255), nullable=False)
    title = Column(String(255))
    description = Column(Text)
    cwes = Column(JSON, default=list)
    published = Column(DateTime)
    updated = Column(DateTime)
    references = Column(Text)
    cvss_v2_vector = Column(String(255))
    cvss_v2_base_score = Column(Float)
    cvss_v2_exploitability_score = Column(Float)
    cvss_v2_impact_score = Column(Float)
    cvss_v3_vector = Column(String(255))
    cvss_v3_base_score = Column(Float)
    cvss_v3_exploitability_score = Column(Float)
    cvss_v3_impact_score = Column(Float)
    owasp_rr_likelihood_score = Column(Float)
    owasp_rr_technical_impact_score = Column(Float)
    owasp_rr_business_impact_score = Column(Float)
    severity = Column(String(20), index=True)
    created_at = Column(DateTime, default=_utcnow)

    ranges = relationship("VulnerableSoftware", back_populates="vulnerability",
                          cascade="all, delete-orphan", order_by="VulnerableSoftware.id")

    __table_args__ = (
        UniqueConstraint('source', 'vuln_id', name='uq_vulnerability_source_id'),
    )


class VulnerableSoftware(Base):
    """Applicability ranges of a vulnerability"""
    __tablename__ = "vulnerable_software"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vulnerability_id = Column(Integer, ForeignKey("vulnerabilities.id", ondelete="CASCADE"), nullable=False, index=True)
    cpe23 = Column(String(512), nullable=False)
    part = Column(String(1))
    vendor = Column(String(255), index=True)
    product = Column(String(255), index=True)
    version = Column(String(255))
    update = Column(String(255))
    edition = Column(String(255))
    language = Column(String(255))
    sw_edition = Column(String(255))
    target_sw = Column(String(255))
    target_hw = Column(String(255))
    other = Column(String(255))
    version_start_including = Column(String(255))
    version_start_excluding = Column(String(255))
    version_end_including = Column(String(255))
    version_end_excluding = Column(String(255))
    vulnerable = Column(Boolean, default=True)

    vulnerability = relationship("Vulnerability", back_populates="ranges")


class VulnerabilityAlias(Base):
    """Identifiers from different sources for the same vulnerability"""
    __tablename__ = "vulnerability_aliases"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sonatype_id = Column(String(255), index=True)
    cve_id = Column(String(255), index=True)

    __table_args__ = (
        UniqueConstraint('sonatype_id', 'cve_id', name='uq_alias_pair'),
    )


class ComponentRow(Base):
    """Scanned components"""
    __tablename__ = "components"

    uuid = Column(String(36), primary_key=True)
    name = Column(String(255))
    version = Column(String(255))
    group = Column(String(255))
    purl = Column(String(1024), index=True)
    cpe = Column(String(512))
    internal = Column(Boolean, default=False)
    project_uuid = Column(String(36), index=True)


class ComponentVulnerability(Base):
    """Component to vulnerability associations"""
    __tablename__ = "component_vulnerabilities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    component_uuid = Column(String(36), ForeignKey("components.uuid", ondelete="CASCADE"), nullable=False)
    vulnerability_id = Column(Integer, ForeignKey("vulnerabilities.id", ondelete="CASCADE"), nullable=False)
    analyzer = Column(String(50), nullable=False)
    alternate_identifier = Column(String(255))
    reference = Column(Text)
    attributed_on = Column(DateTime, default=_utcnow)

    vulnerability = relationship("Vulnerability")

    __table_args__ = (
        UniqueConstraint('component_uuid', 'vulnerability_id', 'analyzer', name='uq_association'),
        Index('idx_association_component', 'component_uuid'),
    )


class AnalysisDecision(Base):
    """Audit decision recorded for a vulnerability on a component"""
    __tablename__ = "analysis_decisions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    component_uuid = Column(String(36), ForeignKey("components.uuid", ondelete="CASCADE"), nullable=False)
    vulnerability_id = Column(Integer, ForeignKey("vulnerabilities.id", ondelete="CASCADE"), nullable=False)
    state = Column(String(50), default="NOT_SET")
    justification = Column(String(100))
    details = Column(Text)
    suppressed = Column(Boolean, default=False)

    __table_args__ = (
        UniqueConstraint('component_uuid', 'vulnerability_id', name='uq_analysis_decision'),
    )


class AnalysisCache(Base):
    """Last live analysis per (source, target host, subject)"""
    __tablename__ = "analysis_cache"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cache_type = Column(String(30), nullable=False)
    target_type = Column(String(20), nullable=False)
    target_host = Column(String(255), nullable=False)
    target = Column(String(1024), nullable=False)
    last_occurrence = Column(DateTime, nullable=False, default=_utcnow)
    result = Column(JSON, default=dict)

    __table_args__ = (
        UniqueConstraint('cache_type', 'target_type', 'target_host', 'target', name='uq_analysis_cache_key'),
    )

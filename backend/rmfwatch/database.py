"""
Database configuration and ORM models
PostgreSQL in production, SQLite accepted for local runs and tests
"""

import logging
from datetime import datetime
from typing import Any, Dict, Generator, Type

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

DATABASE_URL = settings.database_url


def engine_options(url: str) -> Dict[str, Any]:
    """Connection options for the given database URL."""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "echo": settings.debug}
    return {
        "poolclass": QueuePool,
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 3600,  # Recycle connections every hour
        "echo": settings.debug,
        "connect_args": {"connect_timeout": 10, "options": "-c application_name=rmfwatch"},
    }


engine = create_engine(DATABASE_URL, **engine_options(DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# Reference tables maintained by the package management layer
class Package(Base):  # type: ignore[valid-type, misc]
    """Authorization package (the ATO boundary)"""

    __tablename__ = "packages"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class SystemGroup(Base):  # type: ignore[valid-type, misc]
    __tablename__ = "system_groups"

    id = Column(Integer, primary_key=True, index=True)
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)


class System(Base):  # type: ignore[valid-type, misc]
    """A system within a package, optionally assigned to a group"""

    __tablename__ = "systems"

    id = Column(Integer, primary_key=True, index=True)
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=False, index=True)
    group_id = Column(Integer, ForeignKey("system_groups.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    hostname = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


# STIG checklist results
class StigScan(Base):  # type: ignore[valid-type, misc]
    """One imported STIG checklist for a system; (system, title, checklist id) is unique"""

    __tablename__ = "stig_scans"
    __table_args__ = (
        UniqueConstraint("system_id", "title", "checklist_id", name="uq_scan_system_title_checklist"),
    )

    id = Column(Integer, primary_key=True, index=True)
    system_id = Column(Integer, ForeignKey("systems.id"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    checklist_id = Column(String(255), nullable=False, default="")  # "" when the STIG has no id
    filename = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class StigFinding(Base):  # type: ignore[valid-type, misc]
    """Normalized STIG rule result; (system, scan, rule) is the natural key"""

    __tablename__ = "stig_findings"
    __table_args__ = (UniqueConstraint("system_id", "scan_id", "rule_id", name="uq_finding_system_scan_rule"),)

    id = Column(Integer, primary_key=True, index=True)
    system_id = Column(Integer, ForeignKey("systems.id"), nullable=False, index=True)
    scan_id = Column(Integer, ForeignKey("stig_scans.id"), nullable=False, index=True)
    rule_id = Column(String(255), nullable=False)
    group_id = Column(String(255), nullable=True)
    rule_title = Column(Text, nullable=True)
    rule_version = Column(String(255), nullable=True)
    severity = Column(String(20), nullable=True)  # CAT_I, CAT_II, CAT_III
    status = Column(String(30), nullable=False)  # Open, NotAFinding, Not_Applicable, Not_Reviewed
    cci = Column(Text, nullable=True)  # comma-joined CCI identifiers
    control_id = Column(String(50), nullable=True, index=True)
    finding_details = Column(Text, nullable=True)
    comments = Column(Text, nullable=True)
    check_content = Column(Text, nullable=True)
    fix_text = Column(Text, nullable=True)
    first_seen = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_seen = Column(DateTime, default=datetime.utcnow, nullable=False)


# Nessus vulnerability scans
class NessusReport(Base):  # type: ignore[valid-type, misc]
    __tablename__ = "nessus_reports"

    id = Column(Integer, primary_key=True, index=True)
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=True, index=True)
    system_id = Column(Integer, ForeignKey("systems.id"), nullable=True, index=True)
    filename = Column(String(500), nullable=False)
    scan_name = Column(String(500), nullable=False)
    scan_date = Column(DateTime, nullable=True)
    total_hosts = Column(Integer, default=0, nullable=False)
    total_vulnerabilities = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class NessusHost(Base):  # type: ignore[valid-type, misc]
    """Scanned host with per-severity vulnerability counters"""

    __tablename__ = "nessus_hosts"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(Integer, ForeignKey("nessus_reports.id"), nullable=False, index=True)
    hostname = Column(String(255), nullable=False)
    ip_address = Column(String(255), nullable=False)  # host-ip, else the ReportHost name
    mac_address = Column(String(255), nullable=True)
    operating_system = Column(String(500), nullable=True)
    critical_count = Column(Integer, default=0, nullable=False)
    high_count = Column(Integer, default=0, nullable=False)
    medium_count = Column(Integer, default=0, nullable=False)
    low_count = Column(Integer, default=0, nullable=False)
    info_count = Column(Integer, default=0, nullable=False)
    total_count = Column(Integer, default=0, nullable=False)


class NessusVulnerability(Base):  # type: ignore[valid-type, misc]
    __tablename__ = "nessus_vulnerabilities"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(Integer, ForeignKey("nessus_reports.id"), nullable=False, index=True)
    host_id = Column(Integer, ForeignKey("nessus_hosts.id"), nullable=False, index=True)
    plugin_id = Column(String(20), nullable=False)
    plugin_name = Column(String(500), nullable=False)
    plugin_family = Column(String(255), nullable=True)
    severity = Column(Integer, nullable=False)  # 0 info .. 4 critical
    port = Column(Integer, nullable=True)
    protocol = Column(String(20), nullable=True)
    service = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    solution = Column(Text, nullable=True)
    synopsis = Column(Text, nullable=True)
    plugin_output = Column(Text, nullable=True)
    risk_factor = Column(String(50), nullable=True)
    cve = Column(Text, nullable=True)  # ", "-joined CVE identifiers
    cvss_base_score = Column(Float, nullable=True)
    cvss3_base_score = Column(Float, nullable=True)
    exploit_available = Column(Boolean, default=False, nullable=False)
    patch_publication_date = Column(String(50), nullable=True)
    vuln_publication_date = Column(String(50), nullable=True)


# NIST 800-53 catalog
class NistControl(Base):  # type: ignore[valid-type, misc]
    """NIST 800-53 control (externally maintained catalog)"""

    __tablename__ = "nist_controls"

    id = Column(Integer, primary_key=True, index=True)
    control_id = Column(String(50), unique=True, index=True, nullable=False)
    name = Column(String(500), nullable=False)
    control_text = Column(Text, nullable=True)
    discussion = Column(Text, nullable=True)


class NistControlCci(Base):  # type: ignore[valid-type, misc]
    __tablename__ = "nist_control_ccis"
    __table_args__ = (UniqueConstraint("control_id", "cci", name="uq_control_cci"),)

    id = Column(Integer, primary_key=True, index=True)
    control_id = Column(String(50), ForeignKey("nist_controls.control_id"), nullable=False, index=True)
    cci = Column(String(20), nullable=False, index=True)
    definition = Column(Text, nullable=True)


# Package baseline tailoring
class PackageControlBaseline(Base):  # type: ignore[valid-type, misc]
    """Per-package baseline entry; soft-stated through flags, never deleted"""

    __tablename__ = "package_control_baselines"
    __table_args__ = (UniqueConstraint("package_id", "control_id", name="uq_package_control"),)

    id = Column(Integer, primary_key=True, index=True)
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=False, index=True)
    control_id = Column(String(50), nullable=False, index=True)
    include_in_baseline = Column(Boolean, default=True, nullable=False)
    baseline_source = Column(String(20), nullable=True)  # Low, Moderate, High
    tailoring_action = Column(String(50), nullable=True)
    tailoring_rationale = Column(Text, nullable=True)
    implementation_status = Column(String(50), nullable=True)
    implementation_notes = Column(Text, nullable=True)
    compliance_status = Column(String(20), nullable=True)
    compliance_notes = Column(Text, nullable=True)
    added_by = Column(Integer, nullable=True)
    updated_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class ControlPackageStatus(Base):  # type: ignore[valid-type, misc]
    """Explicit per-(control, package) compliance status set by assessors"""

    __tablename__ = "control_package_status"
    __table_args__ = (UniqueConstraint("package_id", "control_id", name="uq_control_package_status"),)

    id = Column(Integer, primary_key=True, index=True)
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=False, index=True)
    control_id = Column(String(50), nullable=False, index=True)
    status = Column(String(50), nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


def get_db() -> Generator[Session, None, None]:
    """
    Database session scoped to one unit of work.

    Yields:
        SQLAlchemy Session instance.

    Note:
        Session is closed when the caller is done with it.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_db_session() -> Session:
    """Get database session for scripts and the CLI"""
    return SessionLocal()


def create_tables() -> None:
    """Create database tables if they don't exist."""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Failed to create database tables: {e}")
        raise


def conflict_insert(db: Session, model: Type[Any]) -> Any:
    """
    INSERT statement supporting ON CONFLICT clauses for the session's dialect.

    Natural-key upserts and insert-skip-duplicates rely on the unique
    constraints declared on the models above.

    Raises:
        NotImplementedError: For dialects without ON CONFLICT support.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"ON CONFLICT inserts are not supported for dialect {dialect}")

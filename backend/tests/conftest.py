"""
Pytest configuration and fixtures for RMFWatch backend tests.

Service tests run against an in-memory SQLite database shared through a
StaticPool, created fresh for every test.
"""

from typing import Dict, Iterator, List

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from rmfwatch.config import get_settings
from rmfwatch.database import Base, NistControl, NistControlCci, Package, System, SystemGroup


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Iterator[None]:
    """Settings are re-read from the environment for every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_engine():
    """In-memory SQLite engine with working SAVEPOINT support."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite emits its own BEGIN; hand transaction control to SQLAlchemy
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(test_engine) -> Iterator[Session]:
    """Provide database session for tests with automatic rollback"""
    SessionLocal = sessionmaker(bind=test_engine, autoflush=False)
    session = SessionLocal()

    yield session

    session.rollback()
    session.close()


# =============================================================================
# Domain fixtures
# =============================================================================

CATALOG_CONTROLS = {
    "AC-2": ("Account Management", ["CCI-000015", "CCI-000016"]),
    "AC-3": ("Access Enforcement", ["CCI-000213"]),
    "AU-2": ("Event Logging", ["CCI-000130"]),
    "CM-6": ("Configuration Settings", ["CCI-000366"]),
    "IA-2": ("Identification and Authentication (Organizational Users)", ["CCI-000764"]),
    "SC-7": ("Boundary Protection", ["CCI-001097"]),
}


@pytest.fixture
def catalog(db_session: Session) -> Dict[str, NistControl]:
    """A small NIST catalog with CCI mappings."""
    controls = {}
    for control_id, (name, ccis) in CATALOG_CONTROLS.items():
        control = NistControl(control_id=control_id, name=name)
        db_session.add(control)
        for cci in ccis:
            db_session.add(NistControlCci(control_id=control_id, cci=cci))
        controls[control_id] = control
    db_session.commit()
    return controls


@pytest.fixture
def package(db_session: Session) -> Package:
    pkg = Package(name="Enclave A")
    db_session.add(pkg)
    db_session.commit()
    return pkg


@pytest.fixture
def systems(db_session: Session, package: Package) -> List[System]:
    """Two grouped systems and one ungrouped system in the package."""
    servers = SystemGroup(package_id=package.id, name="Servers")
    db_session.add(servers)
    db_session.flush()

    web = System(package_id=package.id, group_id=servers.id, name="web01", hostname="web01.example.mil")
    db = System(package_id=package.id, group_id=servers.id, name="db01", hostname="db01.example.mil")
    loose = System(package_id=package.id, group_id=None, name="kiosk")
    db_session.add_all([web, db, loose])
    db_session.commit()
    return [web, db, loose]


@pytest.fixture
def nessus_report_bytes() -> bytes:
    """Single-host Nessus report with items of severity 4 and 2."""
    return b"""<NessusClientData_v2>
  <Report name="Quarterly Scan">
    <ReportHost name="10.0.0.5">
      <HostProperties><tag name="host-ip">10.0.0.5</tag></HostProperties>
      <ReportItem port="443" protocol="tcp" severity="4" pluginID="156032" pluginName="Apache Log4j RCE"/>
      <ReportItem port="22" protocol="tcp" severity="2" pluginID="70658" pluginName="SSH CBC Ciphers"/>
    </ReportHost>
  </Report>
</NessusClientData_v2>"""

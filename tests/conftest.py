import os
import sys
from pathlib import Path

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import Session, sessionmaker

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

TEST_DATABASE_URL = "sqlite://"
TEST_ADMIN_TOKEN = "test-admin-token"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("ADMIN_API_TOKEN", TEST_ADMIN_TOKEN)

from riskhub.database import Base, get_db  # noqa: E402
from riskhub.main import app  # noqa: E402
from riskhub.models import Disease  # noqa: E402
from riskhub.services.fact_table_schema import FACT_COLUMN_SQL  # noqa: E402


def _create_testing_engine():
    return create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )


def _create_test_sessionmaker(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture(scope="session")
def engine():
    engine = _create_testing_engine()
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Session, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    connection = engine.connect()

    TestingSessionLocal = _create_test_sessionmaker(connection)
    session = TestingSessionLocal()

    # Registry rows most flows need.
    session.add_all(
        [
            Disease(code="D01", name_th="ไข้หวัดใหญ่", name_en="Influenza"),
            Disease(code="D02", name_th="ไข้เลือดออก", name_en="Dengue fever"),
        ]
    )
    session.commit()

    try:
        yield session
    finally:
        session.close()
        connection.close()


def create_sqlite_fact_table(session: Session, table_name: str) -> None:
    """Unpartitioned stand-in for a provisioned fact table."""
    columns = ",\n    ".join(f"{column} {definition}" for column, definition in FACT_COLUMN_SQL)
    session.execute(text(f'DROP TABLE IF EXISTS "{table_name}"'))
    session.execute(
        text(
            f'CREATE TABLE "{table_name}" (\n'
            "    id INTEGER,\n"
            f"    {columns},\n"
            "    PRIMARY KEY (onset_date_parsed, id)\n"
            ")"
        )
    )
    session.commit()


@pytest.fixture()
def fact_table(db_session: Session) -> Generator[str, None, None]:
    table_name = "d02_dengue"
    create_sqlite_fact_table(db_session, table_name)
    try:
        yield table_name
    finally:
        db_session.rollback()
        db_session.execute(text(f'DROP TABLE IF EXISTS "{table_name}"'))
        db_session.commit()


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {TEST_ADMIN_TOKEN}"}


class PrefixedTestClient(TestClient):
    api_prefix = "/api"

    def request(self, method: str, url: str, *args, **kwargs):  # type: ignore[override]
        if url.startswith("/") and not url.startswith("/health"):
            url = f"{self.api_prefix}{url}"
        return super().request(method, url, *args, **kwargs)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    client = PrefixedTestClient(app)
    try:
        yield client
    finally:
        app.dependency_overrides.pop(get_db, None)

"""
Pytest configuration and fixtures for nounish-ingest tests

This module provides shared fixtures for unit and integration tests.
"""
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import psycopg
import pytest
from testcontainers.postgres import PostgresContainer

from nounish_ingest.config import PipelineSettings
from nounish_ingest.core.models import Grant
from nounish_ingest.ingestion.object_lister import ObjectPage
from nounish_ingest.reference import ReferenceData
from nounish_ingest.warehouse.connection import DatabaseConnectionPool

ALICE_ADDRESS = "0x" + "a1" * 20
BOB_ADDRESS = "0x" + "b2" * 20
CAROL_ADDRESS = "0x" + "c3" * 20
FLOW_ADDRESS = "0x" + "f0" * 20


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance with the pipeline schemas created
    """
    container = PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_pipeline",
        password="test_password",
        dbname="test_farcaster",
    )
    try:
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available: {e}")

    try:
        init_sql_path = Path(__file__).resolve().parent.parent / "sql" / "init-db.sql"
        conn_url = container.get_connection_url(driver=None)
        with psycopg.connect(conn_url) as conn:
            with conn.cursor() as cur:
                cur.execute(init_sql_path.read_text())
            conn.commit()

        yield container
    finally:
        container.stop()


@pytest.fixture(scope="function")
def db_pool(postgres_container) -> Generator[DatabaseConnectionPool, None, None]:
    """
    Open a pool on the test database with every pipeline table emptied

    Yields:
        Open DatabaseConnectionPool
    """
    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_farcaster",
        user="test_pipeline",
        password="test_password",
    )
    pool.open()

    for table in (
        "staging.farcaster_profile_with_addresses",
        "staging.farcaster_casts",
        "staging.farcaster_channel_members",
        "production.farcaster_profile",
        "production.farcaster_casts",
        "production.farcaster_channel_members",
        "pipeline.ingestion_watermark",
    ):
        pool.execute_command(f"TRUNCATE TABLE {table}")

    yield pool
    pool.close()


# =======================
# IN-MEMORY FAKES
# =======================

class FakePool:
    """
    Stand-in for DatabaseConnectionPool

    Query results are served from `results`, a list of row lists consumed
    in order (an exhausted list yields empty pages).
    """

    def __init__(self, results: list[list[dict]] | None = None):
        self.results = list(results or [])
        self.queries: list[tuple] = []
        self.commands: list[tuple] = []

    def execute_query(self, query, params=None) -> list[dict]:
        self.queries.append((query, params))
        if self.results:
            return self.results.pop(0)
        return []

    def execute_command(self, command, params=None) -> int:
        self.commands.append((command, params))
        return 0


class FakeCursor:
    def __init__(self, rowcount: int):
        self.rowcount = rowcount
        self.executed = []

    def execute(self, query, params=None):
        self.executed.append(query)


class TransactionPool(FakePool):
    """FakePool whose transaction() hands out a recording cursor"""

    def __init__(self, rowcount: int = 3, errors: list[Exception] | None = None, results=None):
        super().__init__(results)
        self.rowcount = rowcount
        self.errors = list(errors or [])
        self.cursors: list[FakeCursor] = []

    @contextmanager
    def transaction(self):
        if self.errors:
            raise self.errors.pop(0)
        cursor = FakeCursor(self.rowcount)
        self.cursors.append(cursor)
        yield cursor


class FakeLister:
    """Serves pre-built listing pages; raises `error` after the pages when set."""

    def __init__(self, pages: list[list[str]], error: Exception | None = None):
        self.pages = pages
        self.error = error

    def iter_pages(self, prefix: str):
        for index, keys in enumerate(self.pages):
            has_more = index < len(self.pages) - 1
            yield ObjectPage(keys=keys, next_token=str(index + 1) if has_more else None)
        if self.error is not None:
            raise self.error


class FakeQueue:
    """Records every batch posted, per endpoint."""

    def __init__(self, fail_with: Exception | None = None):
        self.fail_with = fail_with
        self.jobs: list[list] = []
        self.grant_updates: list[list] = []
        self.builder_profiles: list[list] = []

    def _record(self, target: list, payloads: list) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        target.append(list(payloads))

    def post_jobs(self, payloads):
        self._record(self.jobs, payloads)

    def post_grant_update_checks(self, payloads):
        self._record(self.grant_updates, payloads)

    def post_builder_profiles(self, jobs):
        self._record(self.builder_profiles, jobs)

    def close(self):
        pass


# =======================
# DOMAIN FIXTURES
# =======================

@pytest.fixture
def settings(tmp_path) -> PipelineSettings:
    """Default settings with watermarks and snapshots under tmp_path"""
    return PipelineSettings.model_validate({
        "watermark": {"backend": "file", "directory": str(tmp_path / "timestamps")},
        "snapshots": {"data_dir": str(tmp_path / "data")},
    })


@pytest.fixture
def reference() -> ReferenceData:
    """
    Small reference data set

    alice (fid 1) receives a grant under the flow at FLOW_ADDRESS,
    bob (fid 2) is a cohort member, carol (fid 3) has no handle.
    """
    flow = Grant(
        id="flow-1",
        recipient=FLOW_ADDRESS,
        parent_contract="",
        description="# Nouns Art\nA flow for **art**",
    )
    grant = Grant(
        id="grant-1",
        recipient=ALICE_ADDRESS.upper().replace("0X", "0x"),
        parent_contract=FLOW_ADDRESS,
        description="Weekly <b>drops</b>",
    )
    return ReferenceData.build(
        profiles={
            1: ("alice", [ALICE_ADDRESS]),
            2: ("bob", [BOB_ADDRESS]),
            3: ("", [CAROL_ADDRESS]),
        },
        grants=[flow, grant],
        cohort_fids={2},
    )


@pytest.fixture
def fake_queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture(autouse=True)
def _no_aws_credentials(monkeypatch):
    """Keep tests from picking up real cloud credentials"""
    for var in ("AWS_ACCESS_KEY", "AWS_SECRET_KEY", "PIPELINE_CONFIG"):
        monkeypatch.delenv(var, raising=False)

"""
Integration tests for the warehouse layer against a real PostgreSQL.

Rows are inserted straight into staging (the Parquet COPY needs an S3
capable server), then promoted, enriched and exported.
"""

import json

import pytest

from conftest import ALICE_ADDRESS, BOB_ADDRESS, FakeQueue
from nounish_ingest.config import PipelineSettings
from nounish_ingest.core.models import IngestionType
from nounish_ingest.enrichment import CastBackfill, CastEnrichmentEngine, ChannelMemberProcessor
from nounish_ingest.reference import ReferenceData, ReferenceDataLoader, SnapshotExporter
from nounish_ingest.warehouse.promotion import StagingPromoter
from nounish_ingest.warehouse.staging import StagingLoader
from nounish_ingest.warehouse.watermark import PostgresWatermarkStore

FLOWS_URL = "https://warpcast.com/~/channel/flows"


def stage_cast(pool, cast_id, fid, text, mentions=None, positions=None, parent_hash=None, root_parent_url=FLOWS_URL):
    pool.execute_command(
        """
        INSERT INTO staging.farcaster_casts
            (id, fid, hash, parent_hash, text, embeds, mentions, mentions_positions, root_parent_url, updated_at)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, now())
        """,
        (
            cast_id,
            fid,
            bytes([cast_id]) * 20,
            parent_hash,
            text,
            json.dumps([{"url": "https://nouns.wtf"}]),
            json.dumps(mentions or []),
            json.dumps(positions or []),
            root_parent_url,
        ),
    )


def stage_profile(pool, fid, fname, addresses):
    pool.execute_command(
        """
        INSERT INTO staging.farcaster_profile_with_addresses (fid, fname, verified_addresses, updated_at)
        VALUES (%s, %s, %s, now())
        """,
        (fid, fname, json.dumps(addresses)),
    )


def stage_member(pool, member_id, fid, channel_id):
    pool.execute_command(
        """
        INSERT INTO staging.farcaster_channel_members (id, fid, channel_id, updated_at)
        VALUES (%s, %s, %s, now())
        """,
        (member_id, fid, channel_id),
    )


def count(pool, table):
    return pool.execute_query(f"SELECT COUNT(*) AS n FROM {table}")[0]["n"]


@pytest.fixture
def settings(tmp_path):
    return PipelineSettings.model_validate({
        "watermark": {"backend": "postgres"},
        "snapshots": {"data_dir": str(tmp_path / "data")},
    })


@pytest.mark.integration
class TestPromotion:
    """Tests for StagingPromoter against production tables"""

    def test_profiles_promote_idempotently_with_native_arrays(self, db_pool, settings):
        stage_profile(db_pool, 1, "alice", [ALICE_ADDRESS])
        stage_profile(db_pool, 2, "bob", [])
        promoter = StagingPromoter(db_pool, settings)

        promoter.promote(IngestionType.PROFILES)
        promoter.promote(IngestionType.PROFILES)

        rows = db_pool.execute_query(
            "SELECT fid, fname, verified_addresses FROM production.farcaster_profile ORDER BY fid"
        )
        assert rows == [
            {"fid": 1, "fname": "alice", "verified_addresses": [ALICE_ADDRESS]},
            {"fid": 2, "fname": "bob", "verified_addresses": []},
        ]

    def test_casts_convert_mention_arrays(self, db_pool, settings):
        stage_cast(db_pool, 1, 1, "gm  frens", mentions=[2], positions=[3])
        StagingPromoter(db_pool, settings).promote(IngestionType.CASTS)

        row = db_pool.execute_query(
            "SELECT mentioned_fids, mentions_positions_array FROM production.farcaster_casts WHERE id = 1"
        )[0]
        assert row == {"mentioned_fids": [2], "mentions_positions_array": [3]}

    def test_non_array_json_promotes_as_empty(self, db_pool, settings):
        stage_cast(db_pool, 1, 1, "gm")
        db_pool.execute_command(
            "UPDATE staging.farcaster_casts SET mentions = 'null', mentions_positions = '{\"a\": 1}' WHERE id = 1"
        )
        stage_profile(db_pool, 3, "carol", None)
        promoter = StagingPromoter(db_pool, settings)

        promoter.promote(IngestionType.CASTS)
        promoter.promote(IngestionType.PROFILES)

        cast = db_pool.execute_query(
            "SELECT mentioned_fids, mentions_positions_array FROM production.farcaster_casts WHERE id = 1"
        )[0]
        assert cast == {"mentioned_fids": [], "mentions_positions_array": []}
        profile = db_pool.execute_query("SELECT verified_addresses FROM production.farcaster_profile WHERE fid = 3")
        assert profile == [{"verified_addresses": []}]

    def test_truncate_empties_staging(self, db_pool, settings):
        stage_member(db_pool, 10, 2, "nouns")
        StagingLoader(db_pool, settings).truncate(IngestionType.CHANNEL_MEMBERS)
        assert count(db_pool, "staging.farcaster_channel_members") == 0


@pytest.mark.integration
class TestPostgresWatermarkStore:
    """Tests for PostgresWatermarkStore"""

    def test_never_moves_backwards(self, db_pool):
        store = PostgresWatermarkStore(db_pool)
        assert store.get(IngestionType.CASTS) == 0

        store.set(IngestionType.CASTS, 2_000)
        store.set(IngestionType.CASTS, 1_000)

        assert store.get(IngestionType.CASTS) == 2_000
        assert store.get(IngestionType.PROFILES) == 0


MEMBER_ROWS = [(10, 1, "nouns"), (11, 2, "nouns"), (12, 3, "flows")]

INSERT_MEMBER = """
    INSERT INTO staging.farcaster_channel_members (id, fid, channel_id, updated_at)
    VALUES (%s, %s, %s, now())
"""


@pytest.mark.integration
class TestStagingTransactions:
    """Tests for loads interrupted before commit"""

    def test_failed_load_rolls_back_and_rerun_matches(self, db_pool):
        with pytest.raises(RuntimeError, match="interrupted"):
            with db_pool.transaction() as cur:
                cur.executemany(INSERT_MEMBER, MEMBER_ROWS)
                raise RuntimeError("interrupted before commit")

        assert count(db_pool, "staging.farcaster_channel_members") == 0

        with db_pool.transaction() as cur:
            cur.executemany(INSERT_MEMBER, MEMBER_ROWS)

        assert count(db_pool, "staging.farcaster_channel_members") == len(MEMBER_ROWS)


@pytest.mark.integration
class TestEnrichmentQueries:
    """Tests for the staging queries used by the processors"""

    def test_staged_casts_join_author_and_skip_replies(self, db_pool, settings):
        stage_profile(db_pool, 1, "alice", [ALICE_ADDRESS])
        stage_profile(db_pool, 2, "bob", [BOB_ADDRESS])
        StagingPromoter(db_pool, settings).promote(IngestionType.PROFILES)
        stage_cast(db_pool, 1, 1, "hey  there", mentions=[2], positions=[4])
        stage_cast(db_pool, 2, 1, "a reply", parent_hash=b"\x09" * 20)
        stage_cast(db_pool, 3, 2, "elsewhere", root_parent_url="https://warpcast.com/~/channel/other")

        # fid 1 has no cached handle, so the permalink handle comes from the profile join
        reference = ReferenceData.build(profiles={1: ("", [ALICE_ADDRESS]), 2: ("bob", [BOB_ADDRESS])})
        queue = FakeQueue()
        totals = CastEnrichmentEngine(reference, queue, settings).process_staging(db_pool)

        assert totals["rows"] == 2
        assert totals["eligible"] == 1
        [job] = queue.jobs[0]
        assert job.content == "hey @bob there"
        assert "/alice/" in job.external_url

    def test_new_members_anti_join(self, db_pool, settings):
        stage_member(db_pool, 10, 2, "nouns")
        StagingPromoter(db_pool, settings).promote(IngestionType.CHANNEL_MEMBERS)
        stage_member(db_pool, 11, 3, "nouns")
        stage_member(db_pool, 12, 4, "somewhere-else")

        reference = ReferenceData.build(profiles={}, cohort_fids={3})
        engine = CastEnrichmentEngine(reference, FakeQueue(), settings)
        processor = ChannelMemberProcessor(db_pool, reference, CastBackfill(db_pool, engine, settings), settings)

        # staging still holds member 10, which production already has
        assert [m.id for m in processor.new_members()] == [11]

    def test_backfill_reads_production_casts(self, db_pool, settings):
        for cast_id in (1, 2, 3):
            stage_cast(db_pool, cast_id, 3, f"cast {cast_id}", root_parent_url=None)
        StagingPromoter(db_pool, settings).promote(IngestionType.CASTS)

        settings.enrichment.backfill_page_size = 2
        queue = FakeQueue()
        engine = CastEnrichmentEngine(ReferenceData.build(profiles={}), queue, settings)

        assert CastBackfill(db_pool, engine, settings).run([3]) == 3
        assert [job.content for chunk in queue.jobs for job in chunk] == ["cast 1", "cast 2", "cast 3"]


@pytest.mark.integration
class TestSnapshotExport:
    """Tests for SnapshotExporter reading production tables"""

    @pytest.fixture
    def grants_table(self, db_pool):
        db_pool.execute_command(
            """
            CREATE TABLE IF NOT EXISTS "public"."Grant" (
                id TEXT PRIMARY KEY,
                recipient TEXT,
                description TEXT,
                "parentContract" TEXT
            )
            """
        )
        db_pool.execute_command('TRUNCATE TABLE "public"."Grant"')
        db_pool.execute_command(
            'INSERT INTO "public"."Grant" (id, recipient, description, "parentContract") VALUES (%s, %s, %s, %s)',
            ("g1", ALICE_ADDRESS, "Art, weekly", None),
        )
        return db_pool

    def test_export_then_load(self, db_pool, grants_table, settings):
        stage_profile(db_pool, 1, "alice", [ALICE_ADDRESS, BOB_ADDRESS])
        StagingPromoter(db_pool, settings).promote(IngestionType.PROFILES)
        stage_member(db_pool, 10, 1, "flows")
        stage_member(db_pool, 11, 1, "nouns")
        StagingPromoter(db_pool, settings).promote(IngestionType.CHANNEL_MEMBERS)

        exporter = SnapshotExporter(db_pool, settings, grants_pool=grants_table)
        counts = exporter.export_all()

        assert counts == {"profiles.csv": 1, "nounish-citizens.csv": 2, "grants.csv": 1}
        reference = ReferenceDataLoader(settings.snapshots.data_dir).load()
        assert reference.addresses(1) == [ALICE_ADDRESS, BOB_ADDRESS]
        assert reference.cohort_fids == {1}
        assert reference.grants[0].description == "Art, weekly"
        assert reference.fid_for_address(ALICE_ADDRESS) == 1

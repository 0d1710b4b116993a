"""
Unit tests for source key parsing.
"""

import pytest

from nounish_ingest.core.errors import SourceKeyError
from nounish_ingest.ingestion.source_keys import extract_timestamp, is_parquet_key, parse_source_key

PREFIX = "public-postgres/farcaster/v2/incremental/farcaster-casts"


@pytest.mark.unit
class TestParseSourceKey:
    """Tests for parse_source_key"""

    def test_parses_casts_key(self):
        parsed = parse_source_key(f"{PREFIX}/farcaster-casts-0-1716400000.parquet")
        assert parsed.record_tag == "casts"
        assert parsed.sequence == 0
        assert parsed.timestamp_ms == 1716400000 * 1000
        assert parsed.table_name == "farcaster_casts"

    def test_parses_tag_with_underscores(self):
        parsed = parse_source_key("x/farcaster-profile_with_addresses-12-1716400001.parquet")
        assert parsed.record_tag == "profile_with_addresses"
        assert parsed.sequence == 12
        assert parsed.table_name == "farcaster_profile_with_addresses"

    def test_tag_with_hyphen(self):
        parsed = parse_source_key("farcaster-channel-members-3-1716400002.parquet")
        assert parsed.record_tag == "channel-members"
        assert parsed.sequence == 3

    @pytest.mark.parametrize("key", [
        "farcaster-casts-1716400000.parquet",
        "farcaster-casts-0-abc.parquet",
        "casts-0-1716400000.parquet",
        "farcaster-casts-0-1716400000.csv",
        "",
    ])
    def test_rejects_unexpected_names(self, key):
        with pytest.raises(SourceKeyError):
            parse_source_key(key)


@pytest.mark.unit
class TestExtractTimestamp:
    """Tests for extract_timestamp"""

    def test_matching_key(self):
        assert extract_timestamp(f"{PREFIX}/farcaster-casts-0-999.parquet") == 999_000

    def test_unparseable_key_is_zero(self):
        assert extract_timestamp(f"{PREFIX}/farcaster-casts-latest.parquet") == 0

    def test_is_parquet_key(self):
        assert is_parquet_key("a/b.parquet")
        assert not is_parquet_key("a/b.parquet.tmp")
        assert not is_parquet_key("a/")

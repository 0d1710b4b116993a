"""
Unit tests for embed URL extraction and payload assembly.
"""

import json

import pytest

from conftest import ALICE_ADDRESS, BOB_ADDRESS
from nounish_ingest.core.models import JobPayload, StagingCast
from nounish_ingest.enrichment.embeds import build_permalink, decode_cast_hash, get_cast_embed_urls
from nounish_ingest.enrichment.payloads import (
    add_mention_tags,
    batched,
    create_base_payload,
    finalize_payload,
    is_empty_payload,
    push_user,
    unique_case_insensitive,
)

FLOWS_URL = "https://warpcast.com/~/channel/flows"


@pytest.mark.unit
class TestEmbedUrls:
    """Tests for get_cast_embed_urls"""

    def test_url_and_quoted_cast(self):
        embeds = json.dumps([
            {"url": "https://nouns.wtf"},
            {"castId": {"fid": 2, "hash": {"type": "Buffer", "data": [1, 2, 255]}}},
        ])
        assert get_cast_embed_urls(embeds, {2: "bob"}) == [
            "https://nouns.wtf",
            "https://warpcast.com/bob/0x0102ff",
        ]

    def test_quoted_cast_with_unknown_author_is_dropped(self):
        embeds = [{"castId": {"fid": 3, "hash": "0xabcd"}}, {"url": "https://a.xyz"}]
        assert get_cast_embed_urls(embeds, {2: "bob"}) == ["https://a.xyz"]

    def test_custom_host(self):
        embeds = [{"castId": {"fid": 2, "hash": "0xABCD"}}]
        assert get_cast_embed_urls(embeds, {2: "bob"}, host="example.org") == [
            "https://example.org/bob/0xabcd"
        ]

    @pytest.mark.parametrize("embeds", [None, "", "not json", '{"url": "x"}', "[1, 2]"])
    def test_malformed_embeds_yield_nothing(self, embeds):
        assert get_cast_embed_urls(embeds, {}) == []

    def test_decode_cast_hash_variants(self):
        assert decode_cast_hash({"data": [10, 11]}) == "0a0b"
        assert decode_cast_hash([10, 11]) == "0a0b"
        assert decode_cast_hash("0x0A0B") == "0a0b"
        assert decode_cast_hash("zz") is None
        assert decode_cast_hash([300]) is None
        assert decode_cast_hash(None) is None

    def test_build_permalink(self):
        assert build_permalink("alice", "0x0a") == "https://warpcast.com/alice/0x0a"
        assert build_permalink("alice", "0a") == "https://warpcast.com/alice/0x0a"


@pytest.mark.unit
class TestDeduplication:
    """Tests for case-insensitive deduplication helpers"""

    def test_unique_lowercases_by_default(self):
        assert unique_case_insensitive(["0xAB", "0xab", "x", "X"]) == ["0xab", "x"]

    def test_unique_keeps_first_spelling(self):
        urls = ["https://A.xyz/Path", "https://a.xyz/path", "https://b.xyz"]
        assert unique_case_insensitive(urls, lowercase=False) == ["https://A.xyz/Path", "https://b.xyz"]

    def test_push_user_skips_short_hex(self):
        users = []
        push_user(users, "0x1234")
        push_user(users, ALICE_ADDRESS)
        push_user(users, "42")
        assert users == [ALICE_ADDRESS, "42"]

    def test_finalize_payload(self):
        payload = JobPayload(
            type="cast",
            content="gm",
            external_id="0x01",
            users=["1", "1", ALICE_ADDRESS.upper().replace("0X", "0x"), ALICE_ADDRESS],
            groups=[FLOWS_URL, FLOWS_URL.upper()],
            tags=["2", BOB_ADDRESS, "2"],
            urls=["https://A.xyz", "https://a.xyz"],
        )
        finalize_payload(payload)
        assert payload.users == ["1", ALICE_ADDRESS]
        assert payload.groups == [FLOWS_URL]
        assert payload.tags == ["2", BOB_ADDRESS]
        assert payload.urls == ["https://A.xyz"]

    def test_batched(self):
        assert list(batched([1, 2, 3, 4, 5], 2)) == [(0, [1, 2]), (2, [3, 4]), (4, [5])]
        assert list(batched([], 3)) == []


@pytest.mark.unit
class TestBasePayload:
    """Tests for create_base_payload"""

    def _cast(self, **overrides) -> StagingCast:
        fields = {
            "id": 10,
            "fid": 1,
            "hash": bytes.fromhex("0a0b"),
            "text": "gm",
            "root_parent_url": FLOWS_URL,
            "parent_url": FLOWS_URL,
        }
        fields.update(overrides)
        return StagingCast(**fields)

    def test_identity_fields(self, reference):
        payload = create_base_payload(self._cast(), "gm", reference)
        assert payload.type == "cast"
        assert payload.external_id == "0x0a0b"
        assert payload.users == ["1", ALICE_ADDRESS]
        assert payload.groups == [FLOWS_URL, FLOWS_URL]
        assert payload.external_url == "https://warpcast.com/alice/0x0a0b"
        assert payload.hash_suffix == "1"

    def test_joined_author_fname_wins(self, reference):
        payload = create_base_payload(self._cast(author_fname="alice2"), "gm", reference)
        assert payload.external_url == "https://warpcast.com/alice2/0x0a0b"

    def test_no_permalink_without_fname(self, reference):
        payload = create_base_payload(self._cast(fid=3), "gm", reference)
        assert payload.external_url is None
        assert "externalUrl" not in payload.to_wire()

    def test_mention_tags_include_addresses(self, reference):
        payload = create_base_payload(self._cast(), "gm", reference)
        add_mention_tags(payload, [2, 99], reference)
        assert payload.tags == ["2", BOB_ADDRESS, "99"]

    def test_empty_payload(self, reference):
        payload = create_base_payload(self._cast(), "", reference)
        assert is_empty_payload(payload)
        payload.urls = ["https://nouns.wtf"]
        assert not is_empty_payload(payload)

    def test_wire_format_uses_camel_case(self, reference):
        wire = create_base_payload(self._cast(), "gm", reference).to_wire()
        assert wire["externalId"] == "0x0a0b"
        assert wire["hashSuffix"] == "1"
        assert "external_id" not in wire

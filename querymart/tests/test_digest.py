"""
Tests for query digests.
"""
from querymart.db.models import QueryAttribute, UserQuery
from querymart.services.digest import (
    attach_digest,
    digest_hash,
    digest_query,
    make_attribute,
    normalize_digest,
)

from conftest import make_query

SAMPLE_DIGEST = "SELECT `A`, `B`\nFROM `D`\nWHERE `C` = ?"
SAMPLE_HASH = "bbdd1e7260fdd5fc159a12248d059e4a1a294ecd52c8287ed2e71708908dd142"


class TestDigest:
    """Tests for digest and hash helpers."""

    def test_known_hash(self):
        assert digest_hash(SAMPLE_DIGEST) == SAMPLE_HASH

    def test_hash_is_hex_sha256(self):
        value = digest_hash("SELECT 1")
        assert len(value) == 64
        assert value.startswith("e004ebd5b553")
        assert value == value.lower()

    def test_digest_is_verbatim(self):
        """Test literals and whitespace are kept."""
        assert normalize_digest("SELECT  *  FROM t WHERE id = 5") == "SELECT  *  FROM t WHERE id = 5"
        assert digest_hash(normalize_digest("SELECT 1")) != digest_hash(normalize_digest("SELECT  1"))

    def test_bytes_are_decoded(self):
        assert normalize_digest(SAMPLE_DIGEST.encode("utf-8")) == SAMPLE_DIGEST

    def test_empty_input(self):
        assert normalize_digest(None) == ""
        assert normalize_digest(b"") == ""

    def test_digest_query(self):
        assert digest_query(SAMPLE_DIGEST) == (SAMPLE_DIGEST, SAMPLE_HASH)

    def test_make_attribute(self):
        attribute = make_attribute(SAMPLE_DIGEST)
        assert isinstance(attribute, QueryAttribute)
        assert attribute.digest == SAMPLE_DIGEST
        assert attribute.digest_hash == SAMPLE_HASH
        assert attribute.id is None


class TestAttachDigest:
    """Tests for linking stored queries to their digest."""

    def test_attach_digest(self, sink):
        with sink.handle() as session:
            query = make_query(query=SAMPLE_DIGEST)
            sink.insert_user_query(session, query)
            attribute_id = attach_digest(sink, session, query)

        assert attribute_id is not None
        assert query.digest_hash == SAMPLE_HASH
        with sink.handle() as session:
            assert session.get(QueryAttribute, attribute_id).digest == SAMPLE_DIGEST
            assert session.get(UserQuery, query.id).digest_hash == SAMPLE_HASH

    def test_attach_digest_to_unsaved_query(self, sink):
        with sink.handle() as session:
            assert attach_digest(sink, session, make_query()) is None

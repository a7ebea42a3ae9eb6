"""
Query digest utilities.

A digest is the textual form of a query used as the dedup key. Its content
hash is the storage key shared by every execution of the same query shape.
"""
import hashlib
from typing import Optional, Tuple, Union

from querymart.db.models import QueryAttribute


def normalize_digest(sql: Optional[Union[str, bytes]]) -> str:
    """
    Return the digest form of a query.

    The digest is kept verbatim: literals and whitespace are preserved, so
    only byte-identical texts share a digest.

    Args:
        sql: Query text (bytes from the MySQL driver are decoded as UTF-8)

    Returns:
        Digest text, empty string for missing input
    """
    # Handle bytes input from MySQL
    if isinstance(sql, bytes):
        sql = sql.decode('utf-8', errors='replace')

    if not sql:
        return ""

    return sql


def digest_hash(digest: str) -> str:
    """
    SHA-256 content hash of a digest.

    Args:
        digest: Digest text

    Returns:
        64 character lowercase hex digest
    """
    return hashlib.sha256(digest.encode('utf-8')).hexdigest()


def digest_query(sql: Optional[Union[str, bytes]]) -> Tuple[str, str]:
    """
    Generate both digest and hash for a SQL query.

    Example:
        >>> digest, sql_hash = digest_query("SELECT 1")
        >>> sql_hash[:12]
        'e004ebd5b553'
    """
    digest = normalize_digest(sql)
    return digest, digest_hash(digest)


def make_attribute(sql: Optional[Union[str, bytes]]) -> QueryAttribute:
    """Build an unsaved QueryAttribute row for the given query text."""
    digest, sql_hash = digest_query(sql)
    return QueryAttribute(digest=digest, digest_hash=sql_hash)


def attach_digest(sink, session, query) -> Optional[int]:
    """
    Store the digest of a persisted query and point the query at it.

    Args:
        sink: Sink owning the session
        session: Open sink session, the query must already be flushed
        query: UserQuery row

    Returns:
        QueryAttribute id, or None if the query row does not exist
    """
    return sink.set_query_attribute(session, query, make_attribute(query.query))


def store_digest(sink, session, sql: Optional[Union[str, bytes]]) -> str:
    """Make sure the digest row for `sql` exists and return its hash."""
    return sink.ensure_query_attribute(session, make_attribute(sql)).digest_hash

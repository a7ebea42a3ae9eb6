"""Sink database access.

The Sink owns the SQLAlchemy engine for the results database and exposes
insert, update and range-select operations per entity. Writes go through a
scoped handle that commits on success and rolls back on every other exit.
"""
from contextlib import contextmanager
from datetime import datetime
import logging
from typing import Iterable, Iterator, List, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from querymart.core.config import settings
from querymart.core.errors import NotFoundError, ReferentialIntegrityError, StorageError
from querymart.db.models import (
    BadQuery,
    Base,
    ConnectionSample,
    InnodbLockWait,
    LongTxn,
    QueryAttribute,
    Transaction,
    UserQuery,
)

logger = logging.getLogger(__name__)


def create_sink_engine(url: str) -> Engine:
    """Create an engine for the sink database.

    SQLite gets foreign key enforcement and real BEGIN/SAVEPOINT handling;
    in-memory SQLite shares one connection so every thread sees the same data.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself so savepoints behave
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def _require_zoned(*values: datetime) -> None:
    for value in values:
        if value.tzinfo is None or value.utcoffset() is None:
            raise ValueError(f"Window bound {value.isoformat()} must be timezone-aware")


class Sink:
    """Storage schema for mined queries, transactions and lock waits."""

    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None):
        self.engine = engine if engine is not None else create_sink_engine(url or settings.sink_url)
        self.session_factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )

    def initialize(self) -> None:
        """Create any missing tables."""
        Base.metadata.create_all(bind=self.engine)
        logger.info("Sink schema initialized")

    @contextmanager
    def handle(self) -> Iterator[Session]:
        """Yield a session; commit on success, roll back on any error."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def check_connection(self) -> bool:
        """Return True if the sink DB is reachable."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"Sink connection check failed: {e}")
            return False

    def close(self) -> None:
        self.engine.dispose()

    # User queries

    def insert_user_query(self, session: Session, query: UserQuery) -> int:
        session.add(query)
        session.flush()
        return query.id

    def find_user_query(self, session: Session, query: UserQuery) -> Optional[UserQuery]:
        """Stored execution with the same connection, log time and text."""
        return (
            session.query(UserQuery)
            .filter(
                UserQuery.connection_id == query.connection_id,
                UserQuery.log_time == query.log_time,
                UserQuery.query == query.query,
            )
            .first()
        )

    def select_user_query(self, query_id: int) -> Optional[UserQuery]:
        with self.handle() as session:
            return session.get(UserQuery, query_id)

    def select_user_queries(self, start: datetime, end: datetime) -> List[UserQuery]:
        """Queries logged in the window [start, end), oldest first."""
        _require_zoned(start, end)
        with self.handle() as session:
            return (
                session.query(UserQuery)
                .filter(UserQuery.log_time >= start, UserQuery.log_time < end)
                .order_by(UserQuery.log_time, UserQuery.id)
                .all()
            )

    def update_user_query(self, query: UserQuery) -> None:
        """Overwrite the stored row with the same id.

        Raises:
            NotFoundError: no row has this id
        """
        with self.handle() as session:
            row = session.get(UserQuery, query.id) if query.id is not None else None
            if row is None:
                raise NotFoundError(f"No user query with id {query.id}")
            for column in UserQuery.__table__.columns:
                if column.key != "id":
                    setattr(row, column.key, getattr(query, column.key))

    # Digests

    def get_query_attribute(self, session: Session, digest_hash: str) -> Optional[QueryAttribute]:
        return (
            session.query(QueryAttribute)
            .filter(QueryAttribute.digest_hash == digest_hash)
            .one_or_none()
        )

    def ensure_query_attribute(self, session: Session, attribute: QueryAttribute) -> QueryAttribute:
        """
        Stored digest row with attribute.digest_hash, inserting `attribute` if absent.

        The unique constraint on digest_hash settles concurrent writers: the
        loser of an insert race rolls back its savepoint and reuses the
        winner's row.
        """
        stored = self.get_query_attribute(session, attribute.digest_hash)
        if stored is not None:
            return stored

        savepoint = session.begin_nested()
        try:
            session.add(attribute)
            session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug(f"Digest {attribute.digest_hash} inserted concurrently, reusing it")
            stored = self.get_query_attribute(session, attribute.digest_hash)
            if stored is None:
                raise
            return stored
        savepoint.commit()
        return attribute

    def set_query_attribute(
        self, session: Session, query: UserQuery, attribute: QueryAttribute
    ) -> Optional[int]:
        """
        Link a stored query to its digest row, creating the row if needed.

        Returns:
            Id of the QueryAttribute row, or None if the query is not stored
        """
        row = session.get(UserQuery, query.id) if query.id is not None else None
        if row is None:
            logger.warning(f"Cannot attach digest, user query {query.id} not found")
            return None

        stored = self.ensure_query_attribute(session, attribute)
        row.digest_hash = stored.digest_hash
        query.digest_hash = stored.digest_hash
        session.flush()
        return stored.id

    # Transactions and locks

    def insert_transaction(self, session: Session, txn: Transaction) -> str:
        if txn.start_time is not None and txn.wait_start_time is not None:
            if txn.wait_start_time < txn.start_time:
                raise StorageError(
                    f"Transaction {txn.id} waits ({txn.wait_start_time}) before it starts ({txn.start_time})"
                )
        session.add(txn)
        session.flush()
        return txn.id

    def get_transaction(self, session: Session, txn_id: str) -> Optional[Transaction]:
        return session.get(Transaction, txn_id)

    def _require_transactions(self, session: Session, ids: Iterable[str], kind: str) -> None:
        missing = [txn_id for txn_id in ids if session.get(Transaction, txn_id) is None]
        if missing:
            raise ReferentialIntegrityError(
                f"Cannot insert {kind}: unknown transaction(s) {', '.join(map(str, missing))}"
            )

    def insert_lock_wait(self, session: Session, wait: InnodbLockWait) -> int:
        self._require_transactions(session, (wait.waiting_id, wait.blocking_id), "lock wait")
        session.add(wait)
        session.flush()
        return wait.id

    def insert_long_txn(self, session: Session, long_txn: LongTxn) -> int:
        self._require_transactions(session, (long_txn.transaction_id,), "long transaction")
        session.add(long_txn)
        session.flush()
        return long_txn.id

    # Flagged queries

    def insert_bad_query(self, session: Session, query: UserQuery, labels: Iterable[str]) -> int:
        bad_query = BadQuery(
            user_host=query.user_host,
            connection_id=query.connection_id,
            query=query.query,
            query_time=query.query_time,
            log_time=query.log_time,
            digest_hash=query.digest_hash,
            labels=",".join(sorted(labels)),
        )
        session.add(bad_query)
        session.flush()
        return bad_query.id

    def find_bad_query(self, session: Session, query: UserQuery) -> Optional[BadQuery]:
        return (
            session.query(BadQuery)
            .filter(
                BadQuery.connection_id == query.connection_id,
                BadQuery.log_time == query.log_time,
                BadQuery.query == query.query,
            )
            .first()
        )

    def select_bad_queries(self, start: datetime, end: datetime) -> List[BadQuery]:
        _require_zoned(start, end)
        with self.handle() as session:
            return (
                session.query(BadQuery)
                .filter(BadQuery.log_time >= start, BadQuery.log_time < end)
                .order_by(BadQuery.log_time, BadQuery.id)
                .all()
            )

    # Connection samples

    def insert_connection_sample(self, session: Session, sample: ConnectionSample) -> int:
        session.add(sample)
        session.flush()
        return sample.id

    def select_connection_samples(self, start: datetime, end: datetime) -> List[ConnectionSample]:
        _require_zoned(start, end)
        with self.handle() as session:
            return (
                session.query(ConnectionSample)
                .filter(ConnectionSample.log_time >= start, ConnectionSample.log_time < end)
                .order_by(ConnectionSample.log_time, ConnectionSample.id)
                .all()
            )

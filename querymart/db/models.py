"""SQLAlchemy models for the sink database.

user_queries keeps one row per sampled execution, query_attributes keeps
one row per distinct digest. Executions point at their digest through the
content hash, so recurring query shapes are stored once.
"""
from sqlalchemy import (
    BigInteger,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

from querymart.db.types import UTCDateTime

Base = declarative_base()


class QueryAttribute(Base):
    __tablename__ = "query_attributes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    digest = Column(Text, nullable=False)
    digest_hash = Column(String(64), nullable=False, unique=True, index=True)


class UserQuery(Base):
    __tablename__ = "user_queries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_host = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    connection_id = Column(String(64), nullable=True)
    query = Column(Text, nullable=True)
    query_time = Column(Float, nullable=True)
    lock_time = Column(Float, nullable=True)
    rows_sent = Column(BigInteger, nullable=True)
    rows_examined = Column(BigInteger, nullable=True)
    log_time = Column(UTCDateTime, nullable=False, index=True)
    digest_hash = Column(
        String(64), ForeignKey("query_attributes.digest_hash"), nullable=True, index=True
    )

    def __repr__(self) -> str:
        return f"<UserQuery id={self.id} connection_id={self.connection_id} log_time={self.log_time}>"


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(64), primary_key=True)
    thread = Column(String(64), nullable=True)
    query = Column(Text, nullable=True)
    start_time = Column(UTCDateTime, nullable=True)
    wait_start_time = Column(UTCDateTime, nullable=True)
    lock_mode = Column(String(32), nullable=True)
    lock_type = Column(String(32), nullable=True)
    lock_table = Column(String(255), nullable=True)
    lock_index = Column(String(255), nullable=True)
    lock_data = Column(String(255), nullable=True)


class InnodbLockWait(Base):
    __tablename__ = "lock_waits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    log_time = Column(UTCDateTime, nullable=False)
    waiting_id = Column(String(64), ForeignKey("transactions.id"), nullable=False)
    blocking_id = Column(String(64), ForeignKey("transactions.id"), nullable=False)


class LongTxn(Base):
    __tablename__ = "long_txns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    log_time = Column(UTCDateTime, nullable=False)
    transaction_id = Column(String(64), ForeignKey("transactions.id"), nullable=False)


class BadQuery(Base):
    """Queries flagged by the classifier."""

    __tablename__ = "bad_queries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_host = Column(String(255), nullable=True)
    connection_id = Column(String(64), nullable=True)
    query = Column(Text, nullable=True)
    query_time = Column(Float, nullable=True)
    log_time = Column(UTCDateTime, nullable=False, index=True)
    digest_hash = Column(String(64), nullable=True)
    labels = Column(String(255), nullable=False)

    @property
    def label_list(self) -> list:
        return [label for label in self.labels.split(",") if label]


class ConnectionSample(Base):
    __tablename__ = "connections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    log_time = Column(UTCDateTime, nullable=False, index=True)
    num_connections = Column(Integer, nullable=False)


__all__ = [
    "Base",
    "QueryAttribute",
    "UserQuery",
    "Transaction",
    "InnodbLockWait",
    "LongTxn",
    "BadQuery",
    "ConnectionSample",
]

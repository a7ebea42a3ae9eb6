"""
Pytest configuration and fixtures.
"""
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from querymart.core.errors import SourceFetchError
from querymart.core.metrics import MetricsContext
from querymart.db.models import InnodbLockWait, LongTxn, Transaction, UserQuery
from querymart.db.session import Sink
from querymart.services.catalog import Catalog
from querymart.services.source import SourceDb

# Use in-memory SQLite for testing
TEST_DATABASE_URL = "sqlite://"

IST = timezone(timedelta(hours=5, minutes=30))
T0 = datetime(2019, 3, 16, 23, 0, 35, tzinfo=timezone.utc)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeSource(SourceDb):
    """In-memory source; every call returns fresh, unsaved rows."""

    def __init__(self, records: Optional[List[Dict]] = None, connections: int = 7, catalog: Optional[Catalog] = None):
        self.records = list(records or [])
        self.connections = connections
        self.catalog = catalog
        self.windows: List[Tuple[datetime, datetime]] = []
        self.fail_next = 0
        self.catalog_error = False

    def add(self, **record) -> None:
        self.records.append(record)

    def get_queries(self, start: datetime, end: datetime) -> List[UserQuery]:
        self.windows.append((start, end))
        if self.fail_next:
            self.fail_next -= 1
            raise SourceFetchError("source unavailable")
        selected = [r for r in self.records if start <= r["log_time"] < end]
        selected.sort(key=lambda r: r["log_time"])
        return [UserQuery(**r) for r in selected]

    def get_connections(self) -> int:
        if self.fail_next:
            self.fail_next -= 1
            raise SourceFetchError("source unavailable")
        return self.connections

    def get_catalog(self) -> Catalog:
        if self.catalog_error or self.catalog is None:
            raise SourceFetchError("catalog unavailable")
        return self.catalog


def make_query(log_time: datetime = T0, query: str = "SELECT 1", connection_id: str = "311270893", **kwargs) -> UserQuery:
    fields = dict(
        user_host="dbadmin2[dbadmin2]",
        ip_address="172.16.2.208",
        connection_id=connection_id,
        query=query,
        query_time=0.000218,
        lock_time=0.000072,
        rows_sent=6,
        rows_examined=12,
        log_time=log_time,
    )
    fields.update(kwargs)
    return UserQuery(**fields)


def make_record(log_time: datetime, query: str = "SELECT 1", connection_id: str = "311270893", **kwargs) -> Dict:
    record = dict(
        user_host="dbadmin2[dbadmin2]",
        ip_address="172.16.2.208",
        connection_id=connection_id,
        query=query,
        query_time=0.5,
        lock_time=0.0,
        rows_sent=1,
        rows_examined=100,
        log_time=log_time,
    )
    record.update(kwargs)
    return record


def make_transaction(txn_id: str = "285543496076") -> Transaction:
    return Transaction(
        id=txn_id,
        thread="62265463",
        query="SELECT sequence_number FROM invoice WHERE id = 45 FOR UPDATE",
        start_time=datetime(2019, 3, 18, 2, 41, 1, tzinfo=timezone.utc),
        wait_start_time=datetime(2019, 3, 18, 2, 43, 1, tzinfo=timezone.utc),
        lock_mode="X",
        lock_type="RECORD",
        lock_table="`schema`.`table`",
        lock_index="PRIMARY",
        lock_data="45",
    )


def make_lock_wait(txn_id: str = "285543496076") -> InnodbLockWait:
    return InnodbLockWait(
        log_time=datetime(2019, 3, 13, 22, 2, 1, tzinfo=IST),
        waiting_id=txn_id,
        blocking_id=txn_id,
    )


def make_long_txn(txn_id: str = "285543496076") -> LongTxn:
    return LongTxn(
        log_time=datetime(2019, 3, 13, 22, 2, 1, tzinfo=IST),
        transaction_id=txn_id,
    )


TPCDS_TABLES = {
    "date_dim": {
        "columns": ["d_date_sk", "d_date_id", "d_date", "d_year", "d_moy"],
        "indexes": {"PRIMARY": ["d_date_sk"]},
    },
    "item": {
        "columns": ["i_item_sk", "i_item_id", "i_color", "i_brand", "i_category"],
        "indexes": {"PRIMARY": ["i_item_sk"], "i_item_id_idx": ["i_item_id"]},
    },
    "store_sales": {
        "columns": [
            "ss_sold_date_sk", "ss_item_sk", "ss_customer_sk", "ss_store_sk",
            "ss_promo_sk", "ss_quantity", "ss_net_paid",
        ],
        "indexes": {"PRIMARY": ["ss_item_sk", "ss_sold_date_sk"]},
    },
    "customer": {
        "columns": ["c_customer_sk", "c_first_name", "c_last_name"],
        "indexes": {"PRIMARY": ["c_customer_sk"]},
    },
    "store": {
        "columns": ["s_store_sk", "s_store_name", "s_city"],
        "indexes": {"PRIMARY": ["s_store_sk"]},
    },
    "promotion": {
        "columns": ["p_promo_sk", "p_promo_name"],
    },
}

# Five joins: above the TOO_MANY_JOINS threshold
SIX_TABLE_JOIN = (
    "SELECT i.i_item_id, c.c_last_name, s.s_store_name, p.p_promo_name "
    "FROM store_sales ss "
    "JOIN date_dim d ON ss.ss_sold_date_sk = d.d_date_sk "
    "JOIN item i ON ss.ss_item_sk = i.i_item_sk "
    "JOIN customer c ON ss.ss_customer_sk = c.c_customer_sk "
    "JOIN store s ON ss.ss_store_sk = s.s_store_sk "
    "JOIN promotion p ON ss.ss_promo_sk = p.p_promo_sk "
    "WHERE d.d_year = 2018"
)


@pytest.fixture(scope="function")
def sink():
    """Create a test sink with an initialized schema."""
    sink = Sink(TEST_DATABASE_URL)
    sink.initialize()
    yield sink
    sink.close()


@pytest.fixture(scope="function")
def metrics():
    return MetricsContext()


@pytest.fixture(scope="function")
def clock():
    return ManualClock()


@pytest.fixture(scope="function")
def catalog():
    """TPC-DS like schema catalog."""
    return Catalog.from_dict(TPCDS_TABLES)


@pytest.fixture(scope="function")
def source(catalog):
    return FakeSource(catalog=catalog)

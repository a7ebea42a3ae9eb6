"""
Concrete extraction jobs.

- QueryStatsJob: copies slow-log executions into user_queries and links
  each to its digest.
- BadQueriesJob: classifies every execution and keeps the flagged ones.
- ConnectionsJob: samples the number of open source connections.
"""
from datetime import datetime
from typing import Iterable, Optional

from querymart.core.errors import PlanError, ReferentialIntegrityError, SourceFetchError
from querymart.core.logger import get_logger
from querymart.db.models import ConnectionSample, UserQuery
from querymart.services.catalog import Catalog
from querymart.services.classifier import AntiPattern, Classifier
from querymart.services.cron import Cron, CronState
from querymart.services.digest import attach_digest, store_digest

logger = get_logger(__name__)

DEFAULT_FLAGGED = frozenset({AntiPattern.TOO_MANY_JOINS})


def _require_log_time(query: UserQuery) -> None:
    if query.log_time is None or query.log_time.tzinfo is None:
        raise ValueError(f"Query on connection {query.connection_id} has no timezone-aware log_time")


class QueryStatsJob(Cron):
    """Persist every execution of the window with its digest."""

    def __init__(self, sink, source, frequency_min: int, metrics=None, name: str = "query_stats_cron", **kwargs):
        super().__init__(name, sink, source, frequency_min, metrics, **kwargs)
        self.num_queries_stored = self.metrics.counter(f"{name}.num_queries_stored")
        self.num_duplicate_queries = self.metrics.counter(f"{name}.num_duplicate_queries")
        self.num_failed_records = self.metrics.counter(f"{name}.num_failed_records")

    def process_window(self, start: datetime, end: datetime) -> None:
        queries = self.source.get_queries(start, end)
        logger.info(f"{self.name}: {len(queries)} queries in [{start.isoformat()}, {end.isoformat()})")

        for query in queries:
            try:
                self.store(query)
            except (ReferentialIntegrityError, ValueError) as e:
                self.num_failed_records.inc()
                logger.warning(f"{self.name}: skipping query on connection {query.connection_id}: {e}")

    def store(self, query: UserQuery) -> bool:
        """
        Insert one execution and attach its digest in a single transaction.

        Returns:
            False when the same execution was stored by an earlier run
        """
        _require_log_time(query)
        with self.sink.handle() as session:
            if self.sink.find_user_query(session, query) is not None:
                self.num_duplicate_queries.inc()
                return False
            self.sink.insert_user_query(session, query)
            attach_digest(self.sink, session, query)
        self.num_queries_stored.inc()
        return True


class BadQueriesJob(Cron):
    """
    Classify each execution of the window and store the flagged ones.

    The schema catalog is loaded once, when the job is built. If the source
    cannot deliver it, a permissive catalog is used instead so that
    classification still runs without column checks.
    """

    def __init__(
        self,
        sink,
        source,
        frequency_min: int,
        metrics=None,
        name: str = "bad_queries_cron",
        catalog: Optional[Catalog] = None,
        dialect: Optional[str] = None,
        flagged: Iterable[AntiPattern] = DEFAULT_FLAGGED,
        **kwargs,
    ):
        super().__init__(name, sink, source, frequency_min, metrics, **kwargs)
        self.classifier = Classifier(catalog if catalog is not None else self._load_catalog(), dialect)
        self.flagged = frozenset(AntiPattern(label) for label in flagged)

        self.num_queries_processed = self.metrics.counter(f"{name}.num_queries_processed")
        self.num_bad_queries = self.metrics.counter(f"{name}.num_bad_queries")
        self.num_parse_exceptions = self.metrics.counter(f"{name}.num_parse_exceptions")
        self.num_failed_records = self.metrics.counter(f"{name}.num_failed_records")

    def _load_catalog(self) -> Catalog:
        try:
            catalog = self.source.get_catalog()
        except SourceFetchError as e:
            logger.warning(f"{self.name}: catalog unavailable, tables will not be validated: {e}")
            return Catalog.permissive()
        logger.info(f"{self.name}: loaded catalog with {len(catalog)} tables")
        return catalog

    def process_window(self, start: datetime, end: datetime) -> None:
        queries = self.source.get_queries(start, end)
        logger.info(f"{self.name}: classifying {len(queries)} queries")

        for query in queries:
            self.num_queries_processed.inc()
            try:
                _require_log_time(query)
                labels = self.classifier.classify(query.query)
            except PlanError as e:
                self.num_parse_exceptions.inc()
                logger.debug(f"{self.name}: cannot plan query on connection {query.connection_id}: {e}")
                continue
            except ValueError as e:
                self.num_failed_records.inc()
                logger.warning(f"{self.name}: skipping query: {e}")
                continue

            if not labels & self.flagged:
                continue
            self.num_bad_queries.inc()

            with self.sink.handle() as session:
                query.digest_hash = store_digest(self.sink, session, query.query)
                if self.sink.find_bad_query(session, query) is None:
                    self.sink.insert_bad_query(session, query, [label.value for label in labels])


class ConnectionsJob(Cron):
    """
    Record the number of open connections on the source.

    With frequency_min=0 the job is never scheduled and only samples when
    sample_now() is called from the request path.
    """

    def __init__(self, sink, source, frequency_min: int, metrics=None, name: Optional[str] = None, **kwargs):
        name = name or ("connections_cron" if frequency_min else "connections_on_demand")
        super().__init__(name, sink, source, frequency_min, metrics, **kwargs)
        self.num_samples = self.metrics.counter(f"{name}.num_samples")
        self.last_sample: Optional[ConnectionSample] = None

    @property
    def on_demand(self) -> bool:
        return self.frequency_min == 0

    def process_window(self, start: datetime, end: datetime) -> None:
        self.last_sample = None
        self.last_sample = self.sample(at=end)

    def sample(self, at: Optional[datetime] = None) -> ConnectionSample:
        """Read the connection count and store it with timestamp `at`."""
        sample = ConnectionSample(
            log_time=at if at is not None else self.clock(),
            num_connections=self.source.get_connections(),
        )
        with self.sink.handle() as session:
            self.sink.insert_connection_sample(session, sample)
        self.num_samples.inc()
        logger.debug(f"{self.name}: {sample.num_connections} connections at {sample.log_time.isoformat()}")
        return sample

    def sample_now(self) -> Optional[ConnectionSample]:
        """Run one iteration synchronously; None if it failed."""
        if self.run() is CronState.SUCCEEDED:
            return self.last_sample
        return None

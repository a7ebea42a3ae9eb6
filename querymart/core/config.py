"""
Configuration management for querymart.
Loads settings from environment variables.
"""
import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class Settings:
    """
    Application settings loaded from environment variables.
    Single point of configuration for the entire application.
    """

    # Sink database (where mined results are stored)
    sink_url: str = os.getenv("SINK_URL", "sqlite:///querymart.db")

    # MySQL source database to mine
    mysql_host: str = os.getenv("MYSQL_HOST", "localhost")
    mysql_port: int = int(os.getenv("MYSQL_PORT", "3306"))
    mysql_user: str = os.getenv("MYSQL_USER", "root")
    mysql_password: str = os.getenv("MYSQL_PASSWORD", "")
    mysql_db: str = os.getenv("MYSQL_DB", "")  # Empty = catalog covers all schemas

    # Dialect used to parse mined SQL text
    sql_dialect: str = os.getenv("SQL_DIALECT", "mysql")

    # Cron cadence in minutes. A frequency of 0 disables the scheduled job.
    query_stats_frequency_min: int = int(os.getenv("QUERY_STATS_FREQUENCY_MIN", "5"))
    query_stats_delay_min: int = int(os.getenv("QUERY_STATS_DELAY_MIN", "0"))
    bad_queries_frequency_min: int = int(os.getenv("BAD_QUERIES_FREQUENCY_MIN", "5"))
    bad_queries_delay_min: int = int(os.getenv("BAD_QUERIES_DELAY_MIN", "1"))
    connections_frequency_min: int = int(os.getenv("CONNECTIONS_FREQUENCY_MIN", "1"))
    connections_delay_min: int = int(os.getenv("CONNECTIONS_DELAY_MIN", "0"))

    # What happens to the cursor when a window fails: drop_on_failure | retry_window
    window_policy: str = os.getenv("WINDOW_POLICY", "drop_on_failure").lower()
    # Optional lookback for the first window after startup
    initial_lookback_min: int = int(os.getenv("INITIAL_LOOKBACK_MIN", "0"))

    # Scheduler and health
    enable_scheduler: bool = os.getenv("ENABLE_SCHEDULER", "true").lower() == "true"
    scheduler_pool_size: int = int(os.getenv("SCHEDULER_POOL_SIZE", "4"))
    health_max_failure_ratio: float = float(os.getenv("HEALTH_MAX_FAILURE_RATIO", "0.5"))

    # Application Settings
    api_port: int = int(os.getenv("API_PORT", "8000"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def get_mysql_dict(self, database: Optional[str] = None) -> dict:
        """Get MySQL connection parameters as dictionary."""
        params = {
            "host": self.mysql_host,
            "port": self.mysql_port,
            "user": self.mysql_user,
            "password": self.mysql_password,
        }
        # Only add database if specified
        db = database if database is not None else self.mysql_db
        if db:
            params["database"] = db
        return params


# Global settings instance
settings = Settings()

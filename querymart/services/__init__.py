"""
Business logic and service layer.

Contains the planner, classifier, extraction jobs and their scheduler.
"""
# NOTE: Imports are lazy so that importing one service does not pull in the
# MySQL driver or APScheduler (e.g., from querymart.services.digest import digest_query)

__all__ = [
    "catalog",
    "planner",
    "classifier",
    "digest",
    "cron",
    "jobs",
    "source",
    "health",
    "scheduler",
]

"""
Scheduler status API Routes.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from querymart.core.dependencies import get_scheduler
from querymart.services.scheduler import JobScheduler

router = APIRouter(prefix="/api/v1/scheduler", tags=["Scheduler"])


@router.get("/status")
def scheduler_status(scheduler: Optional[JobScheduler] = Depends(get_scheduler)) -> Dict[str, Any]:
    """
    Cursor and counters of every scheduled job.
    """
    if scheduler is None:
        return {"is_running": False, "pool_size": 0, "jobs": []}
    return scheduler.get_status()

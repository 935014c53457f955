from fastapi import APIRouter, Depends, HTTPException
import structlog

from cloudscope.services.scheduler import JOB_IDS
from cloudscope.shared.core.context import AppContext
from cloudscope.shared.core.dependencies import get_context, require_admin_key

router = APIRouter(tags=["Admin Utilities"], dependencies=[Depends(require_admin_key)])
logger = structlog.get_logger()


@router.post("/scheduler/{label}/trigger")
async def trigger_scheduled_scan(label: str, context: AppContext = Depends(get_context)):
    """Manually trigger a scheduled scan job (daily or weekly)."""
    if label not in JOB_IDS:
        raise HTTPException(status_code=404, detail=f"Unknown scheduler job: {label}")
    if context.scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler is disabled. Set SCHEDULER_ENABLED.")

    logger.info("manual_trigger_requested", job=JOB_IDS[label])
    status = context.scheduler.trigger(label)
    return {"status": status, "job": JOB_IDS[label]}

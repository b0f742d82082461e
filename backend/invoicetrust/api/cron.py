"""
Cron trigger for reminder dispatch.

WHAT: Runs the reminder dispatch worker on demand.

WHY: Deployments without a long-lived app process (or with the in-process
scheduler disabled) drive dispatch from an external cron. Running both is
safe: each reminder is claimed before it is delivered.

HOW: Bearer CRON_SECRET when configured. GET and POST both accepted since
cron services differ in which they send.
"""

import logging

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from invoicetrust.core.deps import verify_cron_secret
from invoicetrust.services.scheduler import run_reminder_dispatch_now


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


class CronDispatchResponse(BaseModel):
    sent: int
    failed: int
    skipped: int


@router.api_route(
    "/reminders",
    methods=["GET", "POST"],
    response_model=CronDispatchResponse,
    status_code=status.HTTP_200_OK,
    summary="Dispatch due reminders",
    dependencies=[Depends(verify_cron_secret)],
)
async def dispatch_reminders() -> CronDispatchResponse:
    logger.info("Reminder dispatch triggered via cron endpoint")
    summary = await run_reminder_dispatch_now()
    return CronDispatchResponse(
        sent=summary.sent,
        failed=summary.failed,
        skipped=summary.skipped,
    )

"""
Job Handlers

One handler per job category. Each handler maps every ``type`` its
category accepts to a coroutine; the mapping is checked against the
payload unions when the handler is built, so adding a variant without a
handler fails at startup.

Handlers signal outcomes with exceptions:
    - return value          -> job completed with that result
    - PermanentJobError     -> job failed, no retry
    - anything else         -> retryable failure

Bulk notifications treat every recipient as a unit. Units that were sent
or permanently rejected are stored on the job's progress as they happen,
so a retry only contacts the recipients that have not been handled yet.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from pydantic import BaseModel

from app.jobs.dispatcher import JobDispatcher
from app.jobs.errors import PermanentJobError, TransientJobError
from app.jobs.payloads import (
    CheckExpiringLotsJob,
    CheckLowStockJob,
    DeductStockJob,
    EmailJob,
    InventoryReportJob,
    JobCategory,
    ScheduledJob,
    SmsJob,
    StockMovementReportJob,
    variant_types,
)
from app.models import Job
from app.services.inventory import AppliedDeduction, InventoryDeductionEngine, InventoryScanner
from app.services.maintenance import MaintenanceService
from app.services.notifications import (
    BaseNotificationService,
    EmailRenderer,
    NotificationResult,
    is_valid_email,
    is_valid_phone,
    normalize_phone,
)
from app.services.reports import ReportFile, ReportWriter

logger = logging.getLogger(__name__)

UNIT_SENT = "sent"
UNIT_REJECTED = "rejected"


class JobContext:
    """The running job as its handler sees it: identity, attempt and unit progress."""

    def __init__(self, job: Job, dispatcher: JobDispatcher):
        self.job_id = job.id
        self.category = job.category
        self.attempt = job.attempt
        self.progress: Dict[str, dict] = dict(job.progress or {})
        self._dispatcher = dispatcher

    def is_done(self, unit: str) -> bool:
        return unit in self.progress

    @property
    def done_units(self) -> Set[str]:
        return set(self.progress)

    async def record(self, unit: str, outcome: dict) -> None:
        # A timeout cancelling the handler must not drop a write for work already done
        await asyncio.shield(self._dispatcher.record_progress(self.job_id, unit, outcome))
        self.progress[unit] = outcome


Route = Callable[[Any, JobContext], Awaitable[dict]]


class JobHandler:
    category: JobCategory

    def __init__(self):
        self._routes = self.routes()
        expected = variant_types(self.category)
        missing = expected - set(self._routes)
        unknown = set(self._routes) - expected
        if missing or unknown:
            raise RuntimeError(
                f"{type(self).__name__} routes do not match {self.category.value} variants: "
                f"missing={sorted(missing)} unknown={sorted(unknown)}"
            )

    def routes(self) -> Dict[str, Route]:
        raise NotImplementedError

    async def handle(self, payload: BaseModel, ctx: JobContext) -> dict:
        return await self._routes[payload.type](payload, ctx)


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class _DeliveryHandler(JobHandler):
    """Shared per-recipient bookkeeping for email and SMS."""

    async def _deliver_all(
        self,
        recipients: List[str],
        ctx: JobContext,
        validate: Callable[[str], Optional[str]],
        send: Callable[[str], Awaitable[NotificationResult]],
    ) -> dict:
        """
        ``validate`` returns the address to send to, or None when malformed.
        """
        units = list(dict.fromkeys(recipients))
        failures: Dict[str, str] = {}

        for unit in units:
            if ctx.is_done(unit):
                continue

            address = validate(unit)
            if address is None:
                logger.error(f"Job {ctx.job_id}: rejecting malformed recipient {unit!r}")
                await ctx.record(unit, {"status": UNIT_REJECTED, "error": "malformed recipient"})
                continue

            result = await send(address)
            if result.success:
                await ctx.record(unit, {"status": UNIT_SENT, "message_id": result.message_id})
            elif result.permanent:
                logger.error(f"Job {ctx.job_id}: {unit} rejected by {result.provider}: {result.error_message}")
                await ctx.record(unit, {"status": UNIT_REJECTED, "error": result.error_message})
            else:
                failures[unit] = result.error_message or "delivery failed"

        summary = {
            "sent": [u for u in units if ctx.progress.get(u, {}).get("status") == UNIT_SENT],
            "rejected": [u for u in units if ctx.progress.get(u, {}).get("status") == UNIT_REJECTED],
            "pending": sorted(failures),
        }

        if failures:
            detail = "; ".join(f"{u}: {e}" for u, e in failures.items())
            raise TransientJobError(f"{len(failures)} of {len(units)} deliveries failed ({detail})", result=summary)
        if not summary["sent"]:
            raise PermanentJobError("every recipient was rejected", result=summary)
        return summary


class EmailJobHandler(_DeliveryHandler):
    category = JobCategory.EMAIL

    def __init__(self, notifications: BaseNotificationService, renderer: EmailRenderer):
        self.notifications = notifications
        self.renderer = renderer
        super().__init__()

    def routes(self):
        return {t: self.send for t in variant_types(self.category)}

    async def send(self, job: EmailJob, ctx: JobContext) -> dict:
        rendered = self.renderer.render(job.template_name, job.subject, job.data)
        logger.info(f"📧 Processing email job {ctx.job_id}: {job.type} to {len(job.to)} recipient(s)")

        async def send_one(address: str) -> NotificationResult:
            return await self.notifications.send_email(address, job.subject, rendered.html, rendered.text)

        return await self._deliver_all(
            job.to,
            ctx,
            lambda a: a.strip() if is_valid_email(a) else None,
            send_one,
        )


class SmsJobHandler(_DeliveryHandler):
    category = JobCategory.SMS

    def __init__(self, notifications: BaseNotificationService, default_country_code: str = "+1"):
        self.notifications = notifications
        self.default_country_code = default_country_code
        super().__init__()

    def routes(self):
        return {t: self.send for t in variant_types(self.category)}

    def _normalize(self, phone: str) -> Optional[str]:
        formatted = normalize_phone(phone, self.default_country_code)
        return formatted if is_valid_phone(formatted) else None

    async def send(self, job: SmsJob, ctx: JobContext) -> dict:
        channel = "WhatsApp" if job.use_whatsapp else "SMS"
        logger.info(f"📱 Processing {channel} job {ctx.job_id}: {job.type} to {len(job.to)} recipient(s)")

        async def send_one(phone: str) -> NotificationResult:
            if job.use_whatsapp:
                return await self.notifications.send_whatsapp(phone, job.message)
            return await self.notifications.send_sms(phone, job.message)

        return await self._deliver_all(job.to, ctx, self._normalize, send_one)


# =============================================================================
# INVENTORY
# =============================================================================

class InventoryJobHandler(JobHandler):
    category = JobCategory.INVENTORY

    def __init__(self, engine: InventoryDeductionEngine, scanner: InventoryScanner):
        self.engine = engine
        self.scanner = scanner
        super().__init__()

    def routes(self):
        return {
            "deduct-stock": self.deduct_stock,
            "check-low-stock": self.check_low_stock,
            "check-expiring-lots": self.check_expiring_lots,
        }

    async def deduct_stock(self, job: DeductStockJob, ctx: JobContext) -> dict:
        async def remember(applied: AppliedDeduction) -> None:
            await ctx.record(applied.unit, {
                "status": "applied",
                "movement_number": applied.movement_number,
                "new_stock": str(applied.new_stock),
            })

        result = await self.engine.deduct(
            job.order_id,
            job.location_id,
            [item.model_dump() for item in job.items],
            skip_units=ctx.done_units,
            on_applied=remember,
        )
        return result.to_dict()

    async def check_low_stock(self, job: CheckLowStockJob, ctx: JobContext) -> dict:
        alerts = await self.scanner.scan_low_stock(location_id=job.location_id)
        return {"alerts": len(alerts)}

    async def check_expiring_lots(self, job: CheckExpiringLotsJob, ctx: JobContext) -> dict:
        alerts = await self.scanner.scan_expiring_lots(
            location_id=job.location_id,
            days_threshold=job.days_threshold,
        )
        return {"alerts": len(alerts)}


# =============================================================================
# REPORTS
# =============================================================================

class ReportsJobHandler(JobHandler):
    category = JobCategory.REPORTS

    def __init__(self, writer: ReportWriter, dispatcher: JobDispatcher):
        self.writer = writer
        self.dispatcher = dispatcher
        super().__init__()

    def routes(self):
        return {
            "inventory-report": self.inventory_report,
            "stock-movement-report": self.stock_movement_report,
        }

    async def _finish(self, report_type: str, report: ReportFile, email: Optional[str], ctx: JobContext,
                      extra: Optional[dict] = None) -> dict:
        result = report.to_dict()
        if email and not ctx.is_done("notify"):
            email_job_id = await self.dispatcher.enqueue(
                JobCategory.EMAIL,
                {
                    "type": "report-ready",
                    "to": email,
                    "subject": f"{report_type.replace('-', ' ').title()} Ready",
                    "data": {
                        "report_type": report_type,
                        "file_name": report.path.name,
                        "rows": report.rows,
                        **(extra or {}),
                    },
                },
            )
            await ctx.record("notify", {"email_job_id": email_job_id})
        if "notify" in ctx.progress:
            result["email_job_id"] = ctx.progress["notify"]["email_job_id"]
        return result

    async def inventory_report(self, job: InventoryReportJob, ctx: JobContext) -> dict:
        logger.info(f"📊 Generating inventory report for location {job.location_id or 'all'}")
        report = await self.writer.inventory_report(job.location_id, job.format)
        return await self._finish(job.type, report, job.email, ctx)

    async def stock_movement_report(self, job: StockMovementReportJob, ctx: JobContext) -> dict:
        logger.info(f"📊 Generating stock movement report {job.date_from} to {job.date_to}")
        report = await self.writer.stock_movement_report(job.location_id, job.date_from, job.date_to, job.format)
        return await self._finish(
            job.type,
            report,
            job.email,
            ctx,
            {"date_from": job.date_from.isoformat(), "date_to": job.date_to.isoformat()},
        )


# =============================================================================
# SCHEDULED
# =============================================================================

class ScheduledJobHandler(JobHandler):
    category = JobCategory.SCHEDULED

    def __init__(self, scanner: InventoryScanner, maintenance: MaintenanceService):
        self.scanner = scanner
        self.maintenance = maintenance
        super().__init__()

    def routes(self):
        return {
            "low-stock-check": self.low_stock_check,
            "expiry-check": self.expiry_check,
            "reservation-reminder": self.reservation_reminder,
            "cleanup": self.cleanup,
        }

    async def low_stock_check(self, job: ScheduledJob, ctx: JobContext) -> dict:
        alerts = await self.scanner.scan_low_stock(location_id=job.location_id)
        return {"alerts": len(alerts)}

    async def expiry_check(self, job: ScheduledJob, ctx: JobContext) -> dict:
        alerts = await self.scanner.scan_expiring_lots(location_id=job.location_id)
        return {"alerts": len(alerts)}

    async def reservation_reminder(self, job: ScheduledJob, ctx: JobContext) -> dict:
        return {"reminders": await self.maintenance.send_reservation_reminders()}

    async def cleanup(self, job: ScheduledJob, ctx: JobContext) -> dict:
        return {"purged": await self.maintenance.cleanup()}


def build_handlers(
    notifications: BaseNotificationService,
    renderer: EmailRenderer,
    default_country_code: str,
    engine: InventoryDeductionEngine,
    scanner: InventoryScanner,
    writer: ReportWriter,
    maintenance: MaintenanceService,
    dispatcher: JobDispatcher,
) -> Dict[JobCategory, JobHandler]:
    """Build one handler per category; every category must be covered."""
    handlers: Dict[JobCategory, JobHandler] = {
        JobCategory.EMAIL: EmailJobHandler(notifications, renderer),
        JobCategory.SMS: SmsJobHandler(notifications, default_country_code),
        JobCategory.INVENTORY: InventoryJobHandler(engine, scanner),
        JobCategory.REPORTS: ReportsJobHandler(writer, dispatcher),
        JobCategory.SCHEDULED: ScheduledJobHandler(scanner, maintenance),
    }
    uncovered = set(JobCategory) - set(handlers)
    if uncovered:
        raise RuntimeError(f"No handler for categories: {sorted(c.value for c in uncovered)}")
    return handlers
